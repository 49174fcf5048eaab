import logging

import pytest

from ldapbridge.lib import logger
from ldapbridge.lib.errors import (
    ConfigurationError,
    LdapBridgeError,
    LdapConnectionError,
    describe_ldap_result,
    handle_error,
)


def test_hierarchy():
    assert issubclass(ConfigurationError, LdapBridgeError)
    assert issubclass(LdapConnectionError, LdapBridgeError)
    assert not issubclass(LdapConnectionError, ConnectionError)


def test_connection_error_cause():
    cause = OSError("refused")
    error = LdapConnectionError("Unable to open LDAP connection", cause)

    assert error.cause is cause
    assert str(error) == "Unable to open LDAP connection"
    assert LdapConnectionError("no cause").cause is None


def test_describe_ldap_result():
    assert describe_ldap_result(None) == "no result from server"
    assert describe_ldap_result({"result": 49, "message": ""}) == "invalidCredentials (49)"
    assert describe_ldap_result(
        {"result": 49, "description": "invalidCredentials", "message": "80090308: LdapErr "}
    ) == "invalidCredentials (49): 80090308: LdapErr"


def test_handle_error_hint(caplog):
    caplog.set_level(logging.WARNING, logger="ldapbridge")

    handle_error(True)

    assert caplog.records[-1].levelno == logging.WARNING
    assert "Use -debug" in caplog.text


def test_handle_error_verbose(capsys):
    logger.set_verbose(True)
    try:
        try:
            raise ValueError("boom")
        except ValueError:
            handle_error()
    finally:
        logger.set_verbose(False)

    assert "ValueError: boom" in capsys.readouterr().err


def test_bullet_formatter():
    formatter = logger.Formatter()
    record = logging.LogRecord("ldapbridge", logging.WARNING, __file__, 1, "careful", None, None)

    assert formatter.format(record) == "[!] careful"


@pytest.mark.parametrize(
    "argv, remaining, debug",
    [
        (["test", "-debug"], ["test"], True),
        (["--debug", "auth", "-u", "alice"], ["auth", "-u", "alice"], True),
        (["test", "-set", "ldap.url=ldap://x"], ["test", "-set", "ldap.url=ldap://x"], False),
    ],
)
def test_pop_debug_flag(argv, remaining, debug):
    assert logger.pop_debug_flag(argv) == (remaining, debug)


def test_set_debug_routes_ldap3_events():
    library_logger = logging.getLogger("ldap3")
    logger.init()
    try:
        logger.set_debug(True)
        logger.set_debug(True)

        ours = [h for h in library_logger.handlers if isinstance(h.formatter, logger.Formatter)]
        assert len(ours) == 1
        assert library_logger.isEnabledFor(logging.DEBUG)
        assert logger.is_verbose() is True
    finally:
        logger.set_debug(False)

    assert not [h for h in library_logger.handlers if isinstance(h.formatter, logger.Formatter)]
    assert logger.is_verbose() is False
    assert logger.logging.level == logging.INFO
