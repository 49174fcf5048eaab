"""
Parser for the user authentication command.
"""

import argparse
from typing import Callable, Tuple

from . import settings

NAME = "auth"


def entry(options: argparse.Namespace) -> None:
    from ldapbridge.commands import auth

    auth.entry(options)


def add_subparser(subparsers: argparse._SubParsersAction) -> Tuple[str, Callable]:  # type: ignore
    """
    Add the ``auth`` subparser.

    Returns:
        Tuple of (command_name, entry_function) for command registration
    """
    subparser = subparsers.add_parser(
        NAME,
        help="Check a user's credentials against the LDAP servers",
        description=(
            "Bind as the given user on each configured LDAP server, in order, "
            "until one accepts the credentials."
        ),
    )
    _ = subparser.add_argument("-debug", action="store_true", help="Turn debug output on")

    group = subparser.add_argument_group("authentication options")
    _ = group.add_argument(
        "-u",
        "-username",
        metavar="dn or principal",
        dest="username",
        action="store",
        required=True,
        help="User to bind as (a DN for simple binds, a SASL user name otherwise)",
    )
    _ = group.add_argument(
        "-p",
        "-password",
        metavar="password",
        dest="password",
        action="store",
        help="Password of the user. Prompted for when omitted",
    )
    _ = group.add_argument(
        "-server",
        action="store",
        metavar="key",
        help="Only try this server (a key of ldap.servers, or 'default')",
    )

    settings.add_argument_group(subparser)

    return NAME, entry
