# PYTHON_ARGCOMPLETE_OK
"""
Command line front end: ``ldapbridge [-debug] <action> ...``.
"""

import argparse
import sys
from typing import Callable, Dict, List, Optional, Tuple

import argcomplete

from ldapbridge import version
from ldapbridge.commands.parsers import ENTRY_PARSERS
from ldapbridge.lib import logger
from ldapbridge.lib.errors import LdapBridgeError, LdapConnectionError, handle_error

VERSION_FLAGS = ("--version", "-v", "-version")


def build_parser() -> Tuple[argparse.ArgumentParser, Dict[str, Callable]]:
    """
    Build the top level parser with one subcommand per entry parser.

    Returns:
        The parser and a mapping of action name to its entry function
    """
    parser = argparse.ArgumentParser(
        prog="ldapbridge",
        add_help=False,
        description="Test and use LDAP directory connections",
        epilog="Add -debug anywhere on the command line to trace the LDAP exchange",
    )

    _ = parser.add_argument(
        "-v",
        "--version",
        action="store_true",
        help="Show the version number and exit",
        default=argparse.SUPPRESS,
    )
    _ = parser.add_argument(
        "-h",
        "--help",
        action="help",
        default=argparse.SUPPRESS,
        help="Show this help message and exit",
    )

    subparsers = parser.add_subparsers(help="Action", dest="action", required=True)

    actions: Dict[str, Callable] = {}
    for entry_parser in ENTRY_PARSERS:
        action, entry = entry_parser.add_subparser(subparsers)
        actions[action] = entry

    return parser, actions


def report(error: LdapBridgeError) -> None:
    """
    Log an ldapbridge error and the chain of causes behind it.
    """
    logger.logging.error(str(error))

    cause = error.cause if isinstance(error, LdapConnectionError) else None
    while cause is not None:
        logger.logging.error(f"Caused by {cause.__class__.__name__}: {cause}")
        cause = getattr(cause, "cause", None)

    handle_error(is_warning=True)


def main(argv: Optional[List[str]] = None) -> None:
    """
    Run the command line, exiting with status 1 when the action fails.

    Args:
        argv: Arguments without the program name (default: ``sys.argv[1:]``)
    """
    logger.init()

    print(version.BANNER, file=sys.stderr)

    args, debug = logger.pop_debug_flag(list(sys.argv[1:] if argv is None else argv))
    logger.set_debug(debug)

    if any(arg.lower() in VERSION_FLAGS for arg in args):
        return

    parser, actions = build_parser()

    argcomplete.autocomplete(parser, always_complete_options=False)

    if not args:
        parser.print_help()
        sys.exit(1)

    options = parser.parse_args(args)

    try:
        actions[options.action](options)
    except LdapBridgeError as e:
        report(e)
        sys.exit(1)
    except Exception as e:
        logger.logging.error(f"Got error: {e}")
        handle_error()
        sys.exit(1)


if __name__ == "__main__":
    main()
