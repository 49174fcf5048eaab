"""
Idle connection pool for bind-user connections.

Connections are pooled per identity: the key covers the provider URL, the
mechanism, the realm, the principal and a digest of the credentials, so a
connection is only ever handed back to a caller that would have bound it the
same way.

An idle connection is checked with a cheap root DSE search before it is lent
again, which costs one round trip per reuse (bounded by the factory receive
timeout when the server has gone away).
"""

import hashlib
import threading
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

import ldap3
from ldap3.core.exceptions import LDAPException

from ldapbridge.lib.environment import SASL_REALM, DirectoryEnvironment
from ldapbridge.lib.errors import LdapConnectionError
from ldapbridge.lib.logger import logging

PoolKey = Tuple[str, Optional[str], Optional[str], Optional[str], str]

DEFAULT_MAX_IDLE = 8

# RFC 4511 "no attributes" selector
NO_ATTRIBUTES = "1.1"


def pool_key(environment: DirectoryEnvironment) -> PoolKey:
    credentials = environment.credentials or ""
    digest = hashlib.sha256(credentials.encode("utf-8")).hexdigest()
    return (
        environment.provider_url,
        environment.authentication,
        environment.get(SASL_REALM),
        environment.principal,
        digest,
    )


class PooledConnection(ldap3.Connection):
    """
    ldap3 connection that can be parked in a :class:`ConnectionPool`.

    Borrowers never hold a pooled connection directly; they get a
    :class:`PoolLease` around it.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.idle_key: Optional[PoolKey] = None

    def is_alive(self) -> bool:
        """
        Check that the server still answers on this connection.

        A base search of the root DSE asking for no attributes is sent; any
        answer, even an error result, proves the session is usable. Socket
        errors, or a server that has dropped the idle session, mean it is not.
        """
        if not self.bound or self.closed:
            return False
        try:
            self.search(
                "", "(objectClass=*)", search_scope=ldap3.BASE, attributes=[NO_ATTRIBUTES]
            )
        except LDAPException as e:
            logging.debug(f"Pooled LDAP connection to {self.server} is stale: {e}")
            return False
        return self.result is not None and not self.closed

    def discard(self) -> None:
        """Close the connection for good."""
        if not self.closed:
            self.unbind()


class PoolLease:
    """
    One borrower's handle on a pooled connection.

    Attribute access is delegated to the connection. ``unbind()`` hands the
    connection back to the pool exactly once; afterwards the lease is spent
    and further ``unbind()`` calls do nothing, so a borrower can never
    release a connection that has since been lent to someone else.
    """

    def __init__(self, connection: PooledConnection, pool: "ConnectionPool") -> None:
        self._connection: Optional[PooledConnection] = connection
        self._pool = pool

    @property
    def connection(self) -> Optional[PooledConnection]:
        """The leased connection, or None once released."""
        return self._connection

    @property
    def released(self) -> bool:
        return self._connection is None

    def unbind(self, controls: Any = None) -> bool:
        connection, self._connection = self._connection, None
        if connection is not None:
            self._pool.release(connection)
        return True

    def __getattr__(self, name: str) -> Any:
        connection = self.__dict__.get("_connection")
        if connection is None:
            raise LdapConnectionError(
                f"Pooled LDAP connection already released (accessing {name!r})"
            )
        return getattr(connection, name)

    def __repr__(self) -> str:
        state = "released" if self.released else repr(self._connection)
        return f"<PoolLease {state}>"


class ConnectionPool:
    """
    Thread-safe store of idle connections, keyed by :func:`pool_key`.
    """

    def __init__(self, max_idle: int = DEFAULT_MAX_IDLE) -> None:
        self.max_idle = max_idle
        self._lock = threading.Lock()
        self._idle: Dict[PoolKey, Deque[PooledConnection]] = {}

    def acquire(self, key: PoolKey) -> Optional[PoolLease]:
        """
        Lease an idle connection for ``key`` that still answers, if there is one.
        Idle connections that fail the liveness check are closed.
        """
        while True:
            with self._lock:
                idle = self._idle.get(key)
                if not idle:
                    return None
                connection = idle.popleft()

            if connection.is_alive():
                logging.debug(f"Reusing pooled LDAP connection to {key[0]}")
                return PoolLease(connection, self)

            connection.discard()

    def adopt(self, connection: PooledConnection, key: PoolKey) -> PoolLease:
        """Lease a freshly bound connection that returns to this pool when released."""
        connection.idle_key = key
        return PoolLease(connection, self)

    def release(self, connection: PooledConnection) -> None:
        key = connection.idle_key
        if key is None or not connection.bound or connection.closed:
            connection.discard()
            return

        with self._lock:
            idle = self._idle.setdefault(key, deque())
            if len(idle) < self.max_idle:
                idle.append(connection)
                return

        connection.discard()

    def size(self, key: Optional[PoolKey] = None) -> int:
        with self._lock:
            if key is not None:
                return len(self._idle.get(key, ()))
            return sum(len(idle) for idle in self._idle.values())

    def clear(self) -> None:
        """Close every idle connection."""
        with self._lock:
            connections = [c for idle in self._idle.values() for c in idle]
            self._idle.clear()

        for connection in connections:
            connection.discard()


CONNECTION_POOL = ConnectionPool()
