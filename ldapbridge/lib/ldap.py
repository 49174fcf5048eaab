"""
Directory connections built from a DirectoryEnvironment.

The connector never talks to ldap3 directly. It hands an environment to
:func:`open_connection`, which instantiates the factory class named in the
environment and asks it for a bound connection. The default factory,
:class:`LdapConnectionFactory`, maps the environment onto ldap3:

- ``provider_url``: one or more space separated LDAP URLs; several URLs form
  a server pool tried in order
- ``referral``: ``follow`` enables automatic referral chasing
- ``authentication``: ``simple``, ``DIGEST-MD5`` or ``CRAM-MD5``; when absent,
  SASL GSSAPI is used if a Kerberos session is active, anonymous otherwise
- ``pooling``: bound connections are kept in the process-wide pool
"""

import importlib
from typing import Any, Dict, List, Optional, Union

import ldap3
from ldap3.core.results import RESULT_SUCCESS

from ldapbridge.lib.config import AuthenticationMode
from ldapbridge.lib.environment import FACTORY, SASL_REALM, DirectoryEnvironment
from ldapbridge.lib.errors import LdapConnectionError, describe_ldap_result
from ldapbridge.lib.kerberos import current_session
from ldapbridge.lib.logger import logging
from ldapbridge.lib.pool import (
    CONNECTION_POOL,
    ConnectionPool,
    PooledConnection,
    PoolLease,
    pool_key,
)
from ldapbridge.lib.sasl import cram_md5_bind, gssapi_bind


def resolve_factory(name: str) -> Any:
    """
    Import and instantiate the factory class at ``name``.

    Both ``package.module.Class`` and ``package.module:Class`` are accepted.

    Raises:
        LdapConnectionError: If the class cannot be loaded or instantiated
    """
    if ":" in name:
        module_name, _, attribute = name.partition(":")
    else:
        module_name, _, attribute = name.rpartition(".")

    try:
        module = importlib.import_module(module_name)
        factory_class = getattr(module, attribute)
    except (ImportError, AttributeError, ValueError) as e:
        raise LdapConnectionError(
            f"Unable to load LDAP connection factory {name!r}: {e}", e
        ) from e

    try:
        return factory_class()
    except Exception as e:
        raise LdapConnectionError(
            f"Unable to create LDAP connection factory {name!r}: {e}", e
        ) from e


def open_connection(environment: DirectoryEnvironment) -> Any:
    """
    Open a bound connection described by ``environment``.

    Raises:
        LdapConnectionError: On any failure, chained to the original exception
    """
    factory = resolve_factory(environment[FACTORY])
    try:
        return factory.get_connection(environment)
    except LdapConnectionError:
        raise
    except Exception as e:
        raise LdapConnectionError(
            f"Unable to open LDAP connection to {environment.provider_url}: {e}", e
        ) from e


class LdapConnectionFactory:
    """
    Default connection factory, built on ldap3.
    """

    connect_timeout = 10
    receive_timeout = 30
    client_strategy = ldap3.SYNC

    def __init__(self, pool: Optional[ConnectionPool] = None) -> None:
        self.pool = pool if pool is not None else CONNECTION_POOL

    def get_connection(
        self, environment: DirectoryEnvironment
    ) -> Union[PooledConnection, PoolLease]:
        """
        Return a bound connection, reusing a pooled one when pooling is on.

        Pooled connections come wrapped in a PoolLease; unbinding the lease
        returns the connection to the pool.

        Raises:
            LdapConnectionError: If the server rejects the bind
            LDAPException: On network or protocol errors
        """
        key = pool_key(environment) if environment.pooling else None
        if key is not None:
            pooled = self.pool.acquire(key)
            if pooled is not None:
                return pooled

        connection = self.create_connection(environment)
        try:
            connection.open()
            self.bind(connection, environment)
        except BaseException:
            connection.discard()
            raise

        logging.debug(f"Bound to {connection.server}")
        if key is not None:
            return self.pool.adopt(connection, key)
        return connection

    def get_server(
        self, environment: DirectoryEnvironment
    ) -> Union[ldap3.Server, ldap3.ServerPool]:
        urls = environment.provider_url.split()
        if not urls:
            raise LdapConnectionError("No LDAP server URL configured")

        servers: List[ldap3.Server] = [
            ldap3.Server(url, get_info=ldap3.NONE, connect_timeout=self.connect_timeout)
            for url in urls
        ]
        if len(servers) == 1:
            return servers[0]

        # Each server is tried once, in the configured order
        return ldap3.ServerPool(servers, ldap3.FIRST, active=1, exhaust=False)

    def create_connection(self, environment: DirectoryEnvironment) -> PooledConnection:
        """
        Create the (unopened) ldap3 connection matching the authentication mode.
        """
        kwargs: Dict[str, Any] = {
            "auto_referrals": environment.follow_referrals,
            "receive_timeout": self.receive_timeout,
            "client_strategy": self.client_strategy,
            "raise_exceptions": False,
        }

        mode = environment.authentication
        principal = environment.principal

        if mode == AuthenticationMode.SIMPLE.value and principal is not None:
            kwargs.update(
                authentication=ldap3.SIMPLE,
                user=principal,
                password=environment.credentials,
            )
        elif mode == AuthenticationMode.DIGEST_MD5.value:
            kwargs.update(
                authentication=ldap3.SASL,
                sasl_mechanism=ldap3.DIGEST_MD5,
                sasl_credentials=(
                    environment.get(SASL_REALM),
                    principal,
                    environment.credentials,
                    None,
                ),
            )
        elif mode in (
            None,
            AuthenticationMode.SIMPLE.value,
            AuthenticationMode.CRAM_MD5.value,
        ):
            # Anonymous here; CRAM-MD5 and GSSAPI binds are driven by bind()
            kwargs.update(authentication=ldap3.ANONYMOUS)
        else:
            raise LdapConnectionError(f"Unsupported LDAP authentication {mode!r}")

        return PooledConnection(self.get_server(environment), **kwargs)

    def bind(self, connection: ldap3.Connection, environment: DirectoryEnvironment) -> None:
        """
        Authenticate ``connection``.

        Raises:
            LdapConnectionError: If the server rejects the bind
        """
        mode = environment.authentication
        session = current_session()

        if mode == AuthenticationMode.CRAM_MD5.value:
            result = cram_md5_bind(
                connection, environment.principal or "", environment.credentials or ""
            )
            who = environment.principal
        elif mode is None and session is not None:
            result = gssapi_bind(connection, session, connection.server.host)
            who = session.principal
        else:
            if connection.bind():
                return
            result = connection.result
            who = environment.principal or "anonymous"

        if result["result"] != RESULT_SUCCESS:
            raise LdapConnectionError(
                f"LDAP bind as {who!r} on {environment.provider_url} failed: "
                f"{describe_ldap_result(result)}"
            )
