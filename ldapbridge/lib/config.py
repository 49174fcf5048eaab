"""
Connector configuration.

A ConnectorConfig is built once from the settings under a server prefix and
is never modified afterwards.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from ldapbridge.lib.errors import ConfigurationError
from ldapbridge.lib.secret import Secret
from ldapbridge.lib.settings import Settings

DEFAULT_FACTORY = "ldapbridge.lib.ldap.LdapConnectionFactory"


class AuthenticationMode(str, enum.Enum):
    """
    Bind mechanisms. Values are the names used on the wire.
    """

    SIMPLE = "simple"
    DIGEST_MD5 = "DIGEST-MD5"
    CRAM_MD5 = "CRAM-MD5"
    GSSAPI = "GSSAPI"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AuthenticationMode":
        """
        Parse a configured mode, case-insensitively. None means SIMPLE.

        Raises:
            ConfigurationError: If the value names no known mechanism
        """
        if value is None or not value.strip():
            return cls.SIMPLE

        wanted = value.strip().upper()
        for mode in cls:
            if mode.value.upper() == wanted:
                return mode

        choices = ", ".join(mode.value for mode in cls)
        raise ConfigurationError(
            f"Unsupported LDAP authentication {value!r}. Supported values: {choices}"
        )

    @property
    def is_sasl(self) -> bool:
        return self is not AuthenticationMode.SIMPLE

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ConnectorConfig:
    """
    Everything needed to open connections to one directory server (or one
    list of equivalent servers).

    Attributes:
        provider_url: One or more LDAP URLs separated by spaces
        authentication: Bind mechanism
        context_factory_class_name: Dotted path of the connection factory class
        bind_principal: Identity used for the bind connection
        bind_credentials: Password of the bind identity
        sasl_realm: SASL realm (DIGEST-MD5) or Kerberos realm (GSSAPI)
        kdc_host: Kerberos KDC; defaults to the realm name
    """

    provider_url: str
    authentication: AuthenticationMode = AuthenticationMode.SIMPLE
    context_factory_class_name: str = DEFAULT_FACTORY
    bind_principal: Optional[str] = None
    bind_credentials: Optional[Secret] = None
    sasl_realm: Optional[str] = None
    kdc_host: Optional[str] = None

    def __post_init__(self) -> None:
        # Accept plain strings for convenience; store normalized values
        if not isinstance(self.authentication, AuthenticationMode):
            object.__setattr__(
                self, "authentication", AuthenticationMode.parse(self.authentication)
            )
        if not self.context_factory_class_name:
            object.__setattr__(self, "context_factory_class_name", DEFAULT_FACTORY)
        object.__setattr__(self, "bind_credentials", Secret.wrap(self.bind_credentials))

    @staticmethod
    def from_settings(
        settings: Settings, prefix: str, provider_url: str
    ) -> "ConnectorConfig":
        """
        Read the configuration of the server under ``prefix``.

        Args:
            settings: Settings provider
            prefix: Key prefix, e.g. ``ldap`` or ``ldap.server1``
            provider_url: Already resolved provider URL

        Returns:
            The connector configuration
        """
        factory = settings.get_string(f"{prefix}.contextFactoryClass")
        if factory is None:
            factory = settings.get_string(f"{prefix}.contextFactoryClassName")

        return ConnectorConfig(
            provider_url=provider_url,
            authentication=AuthenticationMode.parse(
                settings.get_string(f"{prefix}.authentication")
            ),
            context_factory_class_name=factory or DEFAULT_FACTORY,
            bind_principal=settings.get_string(f"{prefix}.bindDn"),
            bind_credentials=Secret.wrap(settings.get_string(f"{prefix}.bindPassword")),
            sasl_realm=settings.get_string(f"{prefix}.realm"),
            kdc_host=settings.get_string(f"{prefix}.kdcHost"),
        )
