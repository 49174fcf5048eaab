"""
Parser for the connection self-test command.
"""

import argparse
from typing import Callable, Tuple

from . import settings

NAME = "test"


def entry(options: argparse.Namespace) -> None:
    from ldapbridge.commands import test

    test.entry(options)


def add_subparser(subparsers: argparse._SubParsersAction) -> Tuple[str, Callable]:  # type: ignore
    """
    Add the ``test`` subparser.

    Returns:
        Tuple of (command_name, entry_function) for command registration
    """
    subparser = subparsers.add_parser(
        NAME,
        help="Test the connection to the configured LDAP servers",
        description=(
            "Open a bind connection to every configured LDAP server and report "
            "whether it succeeded."
        ),
    )
    _ = subparser.add_argument("-debug", action="store_true", help="Turn debug output on")

    group = subparser.add_argument_group("test options")
    _ = group.add_argument(
        "-server",
        action="store",
        metavar="key",
        help="Only test this server (a key of ldap.servers, or 'default')",
    )

    settings.add_argument_group(subparser)

    return NAME, entry
