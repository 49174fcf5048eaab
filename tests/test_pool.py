from unittest import mock

import pytest
from ldap3.core.exceptions import LDAPSocketReceiveError

from ldapbridge.lib.environment import (
    AUTHENTICATION,
    CREDENTIALS,
    PRINCIPAL,
    PROVIDER_URL,
    DirectoryEnvironment,
)
from ldapbridge.lib.errors import LdapConnectionError
from ldapbridge.lib.pool import ConnectionPool, PooledConnection, PoolLease, pool_key


class IdleConnection:
    def __init__(self):
        self.bound = True
        self.closed = False
        self.alive = True
        self.idle_key = None
        self.discarded = False

    def is_alive(self):
        return self.alive

    def discard(self):
        self.discarded = True
        self.bound = False
        self.closed = True


def environment(password="secret", **extra):
    environment = DirectoryEnvironment()
    environment[AUTHENTICATION] = "simple"
    environment[PROVIDER_URL] = "ldap://example.org"
    environment[PRINCIPAL] = "cn=admin"
    environment[CREDENTIALS] = password
    environment.update(extra)
    return environment


def park(pool, connection, key=None):
    pool.adopt(connection, key or pool_key(environment())).unbind()


def test_key_depends_on_credentials():
    assert pool_key(environment()) == pool_key(environment())
    assert pool_key(environment()) != pool_key(environment("other"))
    assert "secret" not in repr(pool_key(environment()))


def test_release_and_acquire():
    pool = ConnectionPool()
    key = pool_key(environment())
    connection = IdleConnection()

    lease = pool.adopt(connection, key)
    assert isinstance(lease, PoolLease)
    assert lease.bound is True
    lease.unbind()

    assert lease.released
    assert pool.size(key) == 1
    again = pool.acquire(key)
    assert again.connection is connection
    assert pool.size() == 0
    assert pool.acquire(key) is None


def test_double_unbind_does_not_release_a_borrowed_connection():
    pool = ConnectionPool()
    key = pool_key(environment())
    connection = IdleConnection()

    first = pool.adopt(connection, key)
    first.unbind()
    second = pool.acquire(key)

    first.unbind()

    assert pool.size(key) == 0
    assert pool.acquire(key) is None
    assert second.connection is connection


def test_released_lease_refuses_use():
    pool = ConnectionPool()
    lease = pool.adopt(IdleConnection(), pool_key(environment()))
    lease.unbind()

    with pytest.raises(LdapConnectionError, match="already released"):
        lease.search

    assert "released" in repr(lease)


def test_dead_connections_are_discarded():
    pool = ConnectionPool()
    key = pool_key(environment())
    stale = IdleConnection()
    park(pool, stale, key)
    stale.alive = False

    assert pool.acquire(key) is None
    assert stale.discarded


def test_unbound_connection_is_not_parked():
    pool = ConnectionPool()
    connection = IdleConnection()
    lease = pool.adopt(connection, pool_key(environment()))
    connection.bound = False

    lease.unbind()

    assert connection.discarded
    assert pool.size() == 0


def test_max_idle():
    pool = ConnectionPool(max_idle=1)
    key = pool_key(environment())
    first, second = IdleConnection(), IdleConnection()
    park(pool, first, key)
    park(pool, second, key)

    assert pool.size(key) == 1
    assert not first.discarded
    assert second.discarded


def test_release_without_key_discards():
    pool = ConnectionPool()
    connection = IdleConnection()

    pool.release(connection)

    assert connection.discarded
    assert pool.size() == 0


def test_clear():
    pool = ConnectionPool()
    connection = IdleConnection()
    park(pool, connection)

    pool.clear()

    assert pool.size() == 0
    assert connection.discarded


class TestLiveness:
    def connection(self, bound=True, closed=False):
        connection = mock.Mock(bound=bound, closed=closed, result={"result": 32})
        connection.server = "ldap://example.org"
        return connection

    def test_server_answer_means_alive(self):
        connection = self.connection()

        assert PooledConnection.is_alive(connection) is True
        connection.search.assert_called_once()

    def test_socket_error_means_dead(self):
        connection = self.connection()
        connection.search.side_effect = LDAPSocketReceiveError("connection reset")

        assert PooledConnection.is_alive(connection) is False

    def test_unbound_is_dead_without_io(self):
        connection = self.connection(bound=False)

        assert PooledConnection.is_alive(connection) is False
        connection.search.assert_not_called()
