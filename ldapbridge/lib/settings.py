"""
Settings provider for ldapbridge.

Settings are flat string properties addressed by dotted keys such as
``ldap.url`` or ``ldap.server1.bindDn``. They are usually read from a
properties file in the ``key=value`` format::

    # single server
    ldap.url=ldap://ldap.example.org
    ldap.bindDn=cn=admin,dc=example,dc=org
    ldap.bindPassword=secret

or, for several servers::

    ldap.servers=server1,server2
    ldap.server1.url=ldap://ldap1.example.org
    ldap.server2.url=ldap://ldap2.example.org
"""

import argparse
from collections import OrderedDict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ldapbridge.lib.errors import ConfigurationError
from ldapbridge.lib.logger import logging

DEFAULT_LDAP_PREFIX = "ldap"
SERVERS_PROPERTY = "ldap.servers"


class Settings:
    """
    Read-only key/value lookup.
    """

    def __init__(self, properties: Optional[Mapping[str, str]] = None) -> None:
        self._properties: Dict[str, str] = dict(properties or {})

    @staticmethod
    def from_file(path: str) -> "Settings":
        """
        Load settings from a properties file.

        Lines starting with ``#`` or ``!`` are comments. Keys and values are
        separated by the first ``=`` or ``:``; surrounding whitespace is
        stripped.

        Args:
            path: Path of the properties file

        Raises:
            ConfigurationError: If the file cannot be read or a line has no separator
        """
        logging.debug(f"Loading settings from {path!r}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Settings(parse_properties(f))
        except OSError as e:
            raise ConfigurationError(f"Unable to read settings file {path!r}: {e}") from e

    @staticmethod
    def from_options(options: argparse.Namespace) -> "Settings":
        """
        Create Settings from command line options: the ``-config`` file, if
        any, completed by the ``-set key=value`` overrides.
        """
        config = options.config if hasattr(options, "config") else None
        overrides = options.overrides if hasattr(options, "overrides") else []

        properties: Dict[str, str] = {}
        if config:
            properties.update(Settings.from_file(config)._properties)
        properties.update(parse_overrides(overrides))

        if not properties:
            raise ConfigurationError(
                "No settings given. Use -config <file> or -set key=value"
            )
        return Settings(properties)

    def get_string(self, key: str) -> Optional[str]:
        """
        Return the value of ``key``, or None when it is unset or blank.
        """
        value = self._properties.get(key)
        if value is None:
            return None
        value = value.strip()
        return value or None


def parse_properties(lines: Iterable[str]) -> Dict[str, str]:
    """
    Parse ``key=value`` lines into a dictionary.
    """
    properties: Dict[str, str] = {}
    for number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line[0] in "#!":
            continue

        key, value = _split_property(line)
        if not key:
            raise ConfigurationError(f"Invalid property on line {number}: {line!r}")
        properties[key] = value

    return properties


def _split_property(line: str) -> Tuple[str, str]:
    positions = [p for p in (line.find("="), line.find(":")) if p != -1]
    if not positions:
        return "", ""
    index = min(positions)
    return line[:index].strip(), line[index + 1 :].strip()


def get_server_prefixes(settings: Settings) -> "OrderedDict[str, str]":
    """
    Map each configured server key to its settings prefix.

    With ``ldap.servers=a,b`` this returns ``{"a": "ldap.a", "b": "ldap.b"}``;
    without it the single ``{"default": "ldap"}`` entry.

    Raises:
        ConfigurationError: If ``ldap.servers`` lists no usable key
    """
    prefixes: "OrderedDict[str, str]" = OrderedDict()

    servers = settings.get_string(SERVERS_PROPERTY)
    if servers is None:
        prefixes["default"] = DEFAULT_LDAP_PREFIX
        return prefixes

    for key in servers.split(","):
        key = key.strip()
        if key:
            prefixes[key] = f"{DEFAULT_LDAP_PREFIX}.{key}"

    if not prefixes:
        raise ConfigurationError(f"The property '{SERVERS_PROPERTY}' is empty")

    return prefixes


def parse_overrides(overrides: Optional[List[str]]) -> Dict[str, str]:
    """
    Turn ``key=value`` strings into a dictionary.

    Raises:
        ConfigurationError: If an entry has no ``=``
    """
    properties: Dict[str, str] = {}
    for override in overrides or []:
        key, sep, value = override.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"Invalid property {override!r}, expected key=value")
        properties[key.strip()] = value.strip()
    return properties
