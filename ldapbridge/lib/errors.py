"""
Exception types and error reporting helpers for ldapbridge.

Two failure classes reach callers:

- ConfigurationError: a misconfiguration that is detected without talking
  to the directory server
- LdapConnectionError: anything that goes wrong while establishing or
  authenticating a directory connection, chained to the original cause
"""

import traceback
from typing import Any, Dict, Optional

from ldap3.core.results import RESULT_CODES

from ldapbridge.lib.logger import is_verbose, logging


class LdapBridgeError(Exception):
    """Base class for all errors raised by ldapbridge."""


class ConfigurationError(LdapBridgeError):
    """Raised when the configuration is unusable. Never retried."""


class LdapConnectionError(LdapBridgeError):
    """
    Raised when a directory connection cannot be established or authenticated.

    The original exception, when there is one, is available as ``cause``
    and is also set as ``__cause__`` by the code raising this error.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


def describe_ldap_result(result: Optional[Dict[str, Any]]) -> str:
    """
    Render an ldap3 result dictionary as a short human readable string.

    Args:
        result: The ``connection.result`` dictionary of a failed operation

    Returns:
        Text such as ``invalidCredentials (49): 80090308: LdapErr...``

    Example:
        >>> describe_ldap_result({"result": 49, "message": ""})
        'invalidCredentials (49)'
    """
    if not result:
        return "no result from server"

    code = result.get("result")
    description = result.get("description") or RESULT_CODES.get(code, "unknown")
    text = f"{description} ({code})"

    message = (result.get("message") or "").strip()
    if message:
        text = f"{text}: {message}"

    return text


def handle_error(is_warning: bool = False) -> None:
    """
    Print the current traceback in verbose mode, otherwise a hint on how to get it.
    """
    if is_verbose():
        traceback.print_exc()
    else:
        msg = "Use -debug to print a stacktrace"
        if is_warning:
            logging.warning(msg)
        else:
            logging.error(msg)
