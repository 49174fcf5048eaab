"""
Helpers shared by the commands that act on the configured servers.
"""

import argparse
from collections import OrderedDict

from ldapbridge.connector import LdapConnector
from ldapbridge.lib.autodiscovery import LdapAutodiscovery
from ldapbridge.lib.errors import ConfigurationError
from ldapbridge.lib.settings import Settings
from ldapbridge.servers import get_connectors


def connectors_from_options(
    options: argparse.Namespace,
) -> "OrderedDict[str, LdapConnector]":
    """
    Build the connectors selected by the command line options.

    Raises:
        ConfigurationError: If the settings are invalid or ``-server`` names an unknown key
    """
    settings = Settings.from_options(options)
    autodiscovery = LdapAutodiscovery(
        nameserver=getattr(options, "ns", None),
        use_tcp=getattr(options, "dns_tcp", False),
    )
    connectors = get_connectors(settings, autodiscovery)

    server = getattr(options, "server", None)
    if server is None:
        return connectors

    if server not in connectors:
        raise ConfigurationError(
            f"Unknown server {server!r}, expected one of: {', '.join(connectors)}"
        )
    return OrderedDict([(server, connectors[server])])
