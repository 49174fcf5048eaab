import argparse

import pytest

from ldapbridge.lib.errors import ConfigurationError
from ldapbridge.lib.settings import (
    Settings,
    get_server_prefixes,
    parse_overrides,
    parse_properties,
)

PROPERTIES = """
# Directory settings
! also a comment
ldap.url = ldap://dc1.example.org
ldap.bindDn=cn=admin,dc=example,dc=org
ldap.bindPassword: s3cr=t
ldap.realm =
"""


def test_parse_properties():
    properties = parse_properties(PROPERTIES.splitlines())

    assert properties == {
        "ldap.url": "ldap://dc1.example.org",
        "ldap.bindDn": "cn=admin,dc=example,dc=org",
        "ldap.bindPassword": "s3cr=t",
        "ldap.realm": "",
    }


def test_parse_properties_invalid_line():
    with pytest.raises(ConfigurationError, match="line 2"):
        parse_properties(["ldap.url=ldap://dc1", "garbage"])


def test_get_string_blank_is_none():
    settings = Settings({"a": "  value ", "b": "   "})

    assert settings.get_string("a") == "value"
    assert settings.get_string("b") is None
    assert settings.get_string("c") is None


def test_from_file(tmp_path):
    path = tmp_path / "ldap.properties"
    path.write_text(PROPERTIES, encoding="utf-8")

    settings = Settings.from_file(str(path))

    assert settings.get_string("ldap.bindPassword") == "s3cr=t"


def test_from_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Unable to read"):
        Settings.from_file(str(tmp_path / "missing.properties"))


def test_from_options(tmp_path):
    path = tmp_path / "ldap.properties"
    path.write_text(PROPERTIES, encoding="utf-8")
    options = argparse.Namespace(
        config=str(path), overrides=["ldap.url=ldap://dc2.example.org"]
    )

    settings = Settings.from_options(options)

    assert settings.get_string("ldap.url") == "ldap://dc2.example.org"
    assert settings.get_string("ldap.bindDn") == "cn=admin,dc=example,dc=org"


def test_from_options_without_settings():
    with pytest.raises(ConfigurationError, match="No settings"):
        Settings.from_options(argparse.Namespace(config=None, overrides=[]))


def test_parse_overrides():
    assert parse_overrides(["a=1", " b = x=y "]) == {"a": "1", "b": "x=y"}
    assert parse_overrides(None) == {}

    with pytest.raises(ConfigurationError):
        parse_overrides(["novalue"])


def test_single_server_prefix():
    assert list(get_server_prefixes(Settings({})).items()) == [("default", "ldap")]


def test_multiple_server_prefixes():
    settings = Settings({"ldap.servers": "server1, server2,,"})

    assert list(get_server_prefixes(settings).items()) == [
        ("server1", "ldap.server1"),
        ("server2", "ldap.server2"),
    ]


def test_empty_server_list():
    with pytest.raises(ConfigurationError):
        get_server_prefixes(Settings({"ldap.servers": " , "}))
