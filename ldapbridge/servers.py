"""
Build connectors for every LDAP server declared in the settings.
"""

from collections import OrderedDict
from typing import Optional

from ldapbridge.connector import LdapConnector
from ldapbridge.lib.autodiscovery import LdapAutodiscovery
from ldapbridge.lib.config import ConnectorConfig
from ldapbridge.lib.errors import ConfigurationError
from ldapbridge.lib.logger import logging
from ldapbridge.lib.settings import DEFAULT_LDAP_PREFIX, Settings, get_server_prefixes


def get_provider_url(
    settings: Settings,
    prefix: str,
    autodiscovery: Optional[LdapAutodiscovery] = None,
) -> str:
    """
    Resolve the provider URL of the server under ``prefix``.

    ``<prefix>.url`` wins. Only the single-server ``ldap`` prefix may fall
    back to DNS discovery from ``ldap.realm``.

    Raises:
        ConfigurationError: If no URL is configured and none can be discovered
    """
    url = settings.get_string(f"{prefix}.url")
    if url is not None:
        return " ".join(url.split())

    realm = settings.get_string(f"{prefix}.realm")
    if prefix == DEFAULT_LDAP_PREFIX and realm is not None:
        logging.debug(f"No {prefix}.url configured, discovering servers of {realm!r}")
        return (autodiscovery or LdapAutodiscovery()).get_provider_url(realm)

    raise ConfigurationError(f"The property '{prefix}.url' is required")


def get_connectors(
    settings: Settings, autodiscovery: Optional[LdapAutodiscovery] = None
) -> "OrderedDict[str, LdapConnector]":
    """
    Create one connector per configured server, in declaration order.

    Args:
        settings: Settings provider
        autodiscovery: DNS discovery used when only a realm is configured

    Returns:
        Mapping of server key (``default`` for a single server) to connector
    """
    connectors: "OrderedDict[str, LdapConnector]" = OrderedDict()
    for key, prefix in get_server_prefixes(settings).items():
        url = get_provider_url(settings, prefix, autodiscovery)
        connector = LdapConnector(ConnectorConfig.from_settings(settings, prefix, url))
        logging.debug(f"Configured LDAP server {key!r}: {connector}")
        connectors[key] = connector

    return connectors
