"""
LDAP connector: authenticated directory connections from a ConnectorConfig.

The connector opens two kinds of connections:

- bind connections, authenticated as the configured bind identity and
  pooled, for the long-lived work of searching the directory
- user connections, authenticated as an end user and never pooled; opening
  one successfully is how a user's password is verified

With GSSAPI the bind connection is authenticated with a Kerberos ticket
obtained for the bind identity just for that attempt.
"""

from typing import Any, Optional

from ldapbridge.lib.config import AuthenticationMode, ConnectorConfig
from ldapbridge.lib.environment import (
    AUTHENTICATION,
    CREDENTIALS,
    DEFAULT_REFERRAL,
    FACTORY,
    POOLING,
    PRINCIPAL,
    PROVIDER_URL,
    REFERRAL,
    SASL_REALM,
    DirectoryEnvironment,
)
from ldapbridge.lib.errors import ConfigurationError, LdapConnectionError
from ldapbridge.lib.kerberos import KerberosLogin, KerberosLoginConfiguration
from ldapbridge.lib.ldap import open_connection
from ldapbridge.lib.logger import logging
from ldapbridge.lib.secret import Secret


class LdapConnector:
    """
    Opens directory connections for one configured server.

    Construction does no I/O; every ``open_*`` call is a single, blocking
    connection attempt that either returns a bound connection or raises
    :class:`LdapConnectionError`. Retrying is up to the caller.
    """

    def __init__(self, config: ConnectorConfig) -> None:
        self.config = config

    @property
    def provider_url(self) -> str:
        return self.config.provider_url

    @property
    def authentication(self) -> AuthenticationMode:
        return self.config.authentication

    @property
    def factory(self) -> str:
        return self.config.context_factory_class_name

    def open_bind_connection(self) -> Any:
        """
        Open a connection authenticated as the bind identity.

        Pooling is enabled for these connections.

        Raises:
            LdapConnectionError: If the connection cannot be established
        """
        if self.is_gssapi():
            return self.open_gssapi_connection(
                self.config.bind_principal, self.config.bind_credentials
            )
        return open_connection(
            self.build_environment(
                self.config.bind_principal, self.config.bind_credentials, True
            )
        )

    def open_user_connection(self, principal: str, credentials: Any) -> Any:
        """
        Open a connection authenticated as an end user.

        The connection is never pooled. A successful return means the
        directory accepted the user's credentials. With GSSAPI the user is
        logged in to Kerberos with the password first.

        Raises:
            LdapConnectionError: If the bind is rejected or the server is unreachable
        """
        if self.is_gssapi():
            return self.open_gssapi_connection(principal, credentials)
        return open_connection(self.build_environment(principal, credentials, False))

    def open_gssapi_connection(self, principal: Optional[str], credentials: Any) -> Any:
        """
        Log ``principal`` in to Kerberos with its password and open a
        connection authenticated by SASL GSSAPI with the resulting ticket.

        The login is scoped to this call and logged out before returning.

        Raises:
            LdapConnectionError: If the login or the connection fails
        """
        factory = self.factory
        provider_url = self.provider_url

        def connect() -> Any:
            environment = DirectoryEnvironment()
            environment[FACTORY] = factory
            environment[PROVIDER_URL] = provider_url
            environment[REFERRAL] = DEFAULT_REFERRAL
            logging.debug(f"Initializing LDAP context {environment!r}")
            return open_connection(environment)

        try:
            configuration = KerberosLoginConfiguration.for_principal(
                principal, credentials, self.config.sasl_realm, self.config.kdc_host
            )
            with KerberosLogin(configuration) as session:
                return session.run(connect)
        except LdapConnectionError:
            raise
        except Exception as e:
            raise LdapConnectionError(str(e) or e.__class__.__name__, e) from e

    def build_environment(
        self, principal: Optional[str], credentials: Any, pooling: bool
    ) -> DirectoryEnvironment:
        """
        Assemble the properties of one connection attempt.

        The environment is logged before the credentials are added, so the
        logged snapshot never contains them.
        """
        environment = DirectoryEnvironment()
        environment[AUTHENTICATION] = self.authentication.value
        if self.config.sasl_realm is not None:
            environment[SASL_REALM] = self.config.sasl_realm
        if pooling:
            environment[POOLING] = True
        environment[FACTORY] = self.factory
        environment[PROVIDER_URL] = self.provider_url
        environment[REFERRAL] = DEFAULT_REFERRAL
        if principal is not None:
            environment[PRINCIPAL] = principal

        logging.debug(f"Initializing LDAP context {environment!r}")

        if credentials is not None:
            environment[CREDENTIALS] = Secret.wrap(credentials)
        return environment

    def is_sasl(self) -> bool:
        return self.authentication.is_sasl

    def is_gssapi(self) -> bool:
        return self.authentication is AuthenticationMode.GSSAPI

    def test_connection(self) -> None:
        """
        Check that a bind connection can be opened.

        Raises:
            ConfigurationError: If a SASL mechanism is used without a bind identity
            LdapConnectionError: If the connection cannot be opened
        """
        if self.is_sasl() and not (self.config.bind_principal or "").strip():
            raise ConfigurationError(
                "When using SASL - property ldap.bindDn is required"
            )

        try:
            connection = self.open_bind_connection()
        except LdapConnectionError as e:
            logging.info("Test LDAP connection: FAIL")
            raise LdapConnectionError("Unable to open LDAP connection", e) from e

        logging.info(f"Test LDAP connection on {self.provider_url}: OK")
        release(connection)

    def __str__(self) -> str:
        return (
            f"LdapConnector{{url={self.provider_url}, "
            f"authentication={self.authentication.value}, "
            f"factory={self.factory}, "
            f"bindDn={self.config.bind_principal}, "
            f"realm={self.config.sasl_realm}}}"
        )

    def __repr__(self) -> str:
        return f"<{self}>"


def release(connection: Any) -> None:
    """
    Hand a connection back: pooled connections return to their pool, others
    are closed.
    """
    unbind = getattr(connection, "unbind", None)
    if unbind is not None:
        unbind()
