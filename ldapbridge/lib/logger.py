"""
Logging configuration for ldapbridge.

Every module logs through the shared ``ldapbridge`` logger exported here as
``logging``. The command line front end calls :func:`init` once and
:func:`set_debug` for ``-debug``, which also routes ldap3 protocol events
through the same handler. Library users can attach their own handlers to
the ``ldapbridge`` logger instead.
"""

import logging as _logging
import sys
from typing import Dict, List, Tuple

from ldap3.utils.log import (
    BASIC,
    OFF,
    set_library_log_detail_level,
    set_library_log_hide_sensitive_data,
)

_IS_VERBOSE = False


def set_verbose(is_verbose: bool) -> None:
    """
    Set the verbosity level for error reporting.

    Args:
        is_verbose: Whether stack traces should be printed on errors
    """
    global _IS_VERBOSE
    _IS_VERBOSE = is_verbose  # type: ignore


def is_verbose() -> bool:
    return _IS_VERBOSE


BULLET_POINTS: Dict[int, str] = {
    _logging.INFO: "[*]",
    _logging.DEBUG: "[+]",
    _logging.WARNING: "[!]",
    _logging.ERROR: "[-]",
    _logging.CRITICAL: "[-]",
}


class Formatter(_logging.Formatter):
    """
    Formatter that prefixes each message with a bullet for its level:

    - INFO:    [*]
    - DEBUG:   [+]
    - WARNING: [!]
    - ERROR:   [-]
    """

    def __init__(self) -> None:
        super().__init__("%(bullet)s %(message)s")

    def format(self, record: _logging.LogRecord) -> str:
        record.bullet = BULLET_POINTS.get(record.levelno, "[-]")
        return super().format(record)


def init(
    level: int = _logging.INFO, logger_name: str = "ldapbridge", propagate: bool = False
) -> None:
    """
    Attach a stdout handler with the bullet formatter to the ldapbridge logger.

    Calling it again replaces the previous handler instead of stacking a
    second one.

    Args:
        level: Log level to set (default: INFO)
        logger_name: Name of the logger to configure
        propagate: Whether records also reach parent loggers
    """
    handler = _logging.StreamHandler(sys.stdout)
    handler.setFormatter(Formatter())

    logger = _logging.getLogger(logger_name)
    if logger.handlers:
        logger.handlers.clear()

    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


logging = _logging.getLogger("ldapbridge")


DEBUG_FLAGS = ("-debug", "--debug")


def set_debug(enabled: bool) -> None:
    """
    Switch debug output on or off.

    With debug on, errors print a stack trace and ldap3 protocol events are
    written through the ldapbridge handler, with passwords hidden.

    Args:
        enabled: Whether debug output is wanted
    """
    logging.setLevel(_logging.DEBUG if enabled else _logging.INFO)
    set_verbose(enabled)

    library_logger = _logging.getLogger("ldap3")
    library_logger.handlers = [
        h for h in library_logger.handlers if not isinstance(h.formatter, Formatter)
    ]
    if enabled:
        set_library_log_hide_sensitive_data(True)
        set_library_log_detail_level(BASIC)
        library_logger.setLevel(_logging.DEBUG)
        for handler in logging.handlers:
            library_logger.addHandler(handler)
    else:
        set_library_log_detail_level(OFF)
        library_logger.setLevel(_logging.NOTSET)


def pop_debug_flag(argv: List[str]) -> Tuple[List[str], bool]:
    """
    Remove the debug flags from a command line.

    Returns:
        The remaining arguments and whether a debug flag was present
    """
    remaining = [arg for arg in argv if arg not in DEBUG_FLAGS]
    return remaining, len(remaining) != len(argv)
