"""
Settings options shared by every command.

Settings come from a properties file (``-config``) and can be overridden or
completed on the command line with ``-set key=value``.
"""

import argparse


def add_argument_group(parser: argparse.ArgumentParser) -> None:
    """
    Add the settings and DNS options to a command parser.
    """
    group = parser.add_argument_group("settings options")
    _ = group.add_argument(
        "-config",
        action="store",
        metavar="properties file",
        help="Properties file holding the ldap.* settings",
    )
    _ = group.add_argument(
        "-set",
        action="append",
        metavar="key=value",
        dest="overrides",
        default=[],
        help="Set or override a single property, e.g. -set ldap.url=ldap://dc1. May be repeated",
    )

    dns_group = parser.add_argument_group("dns options")
    _ = dns_group.add_argument(
        "-ns",
        action="store",
        metavar="ip address",
        help="Nameserver for LDAP server discovery (used when only ldap.realm is set)",
    )
    _ = dns_group.add_argument(
        "-dns-tcp", action="store_true", help="Use TCP instead of UDP for DNS queries"
    )
