"""
Per-attempt directory environment.

A DirectoryEnvironment is the set of properties handed to a connection
factory for one connection attempt. A new one is built for every attempt and
it is never stored.
"""

from typing import Any, Dict, Optional

from ldapbridge.lib.secret import Secret

# Property names
AUTHENTICATION = "authentication"
SASL_REALM = "sasl_realm"
POOLING = "pooling"
FACTORY = "factory"
PROVIDER_URL = "provider_url"
REFERRAL = "referral"
PRINCIPAL = "principal"
CREDENTIALS = "credentials"

DEFAULT_REFERRAL = "follow"


class DirectoryEnvironment(Dict[str, Any]):
    """
    Ordered property mapping with accessors for the well-known keys.

    The credentials property is always held as a :class:`Secret`, so neither
    ``repr()`` of the environment nor any of its values expose it.
    """

    def __setitem__(self, key: str, value: Any) -> None:
        if key == CREDENTIALS:
            value = Secret.wrap(value)
        super().__setitem__(key, value)

    def snapshot(self) -> Dict[str, Any]:
        """Return a plain copy without the credentials property."""
        return {k: v for k, v in self.items() if k != CREDENTIALS}

    @property
    def authentication(self) -> Optional[str]:
        value = self.get(AUTHENTICATION)
        return None if value is None else str(value)

    @property
    def provider_url(self) -> str:
        return self.get(PROVIDER_URL) or ""

    @property
    def principal(self) -> Optional[str]:
        return self.get(PRINCIPAL)

    @property
    def credentials(self) -> Optional[str]:
        return Secret.reveal(self.get(CREDENTIALS))

    @property
    def pooling(self) -> bool:
        return bool(self.get(POOLING, False))

    @property
    def follow_referrals(self) -> bool:
        return self.get(REFERRAL) == DEFAULT_REFERRAL

    def __repr__(self) -> str:
        return f"DirectoryEnvironment({super().__repr__()})"
