"""
LDAP server discovery through DNS SRV records.

When only a realm is configured, the directory servers of that realm are
looked up under ``_ldap._tcp.<realm>`` (RFC 2782) and turned into a space
separated provider URL, best server first.
"""

from typing import List, NamedTuple, Optional

import dns.exception
from dns.resolver import Resolver

from ldapbridge.lib.errors import ConfigurationError
from ldapbridge.lib.logger import logging


class SrvRecord(NamedTuple):
    priority: int
    weight: int
    port: int
    target: str

    @property
    def url(self) -> str:
        return f"ldap://{self.target}:{self.port}"


def sort_srv_records(records: List[SrvRecord]) -> List[SrvRecord]:
    """
    Order records by ascending priority, then by descending weight.
    """
    return sorted(records, key=lambda r: (r.priority, -r.weight))


class LdapAutodiscovery:
    """
    Resolves the LDAP servers of a DNS domain.
    """

    def __init__(
        self,
        resolver: Optional[Resolver] = None,
        nameserver: Optional[str] = None,
        use_tcp: bool = False,
    ) -> None:
        self.resolver: Resolver = resolver or Resolver()
        self.use_tcp = use_tcp

        # A single nameserver only; the resolver fails if any listed one fails
        if nameserver is not None:
            self.resolver.nameservers = [nameserver]

    def get_ldap_servers(self, domain: str) -> List[SrvRecord]:
        """
        Query the SRV records advertising LDAP for ``domain``.

        Args:
            domain: DNS domain, e.g. ``example.org``

        Returns:
            The records sorted best first; empty when none are published
        """
        query = f"_ldap._tcp.{domain.strip().strip('.').lower()}"
        logging.debug(f"Looking up LDAP servers with SRV query {query!r}")

        try:
            answers = self.resolver.resolve(query, "SRV", tcp=self.use_tcp)
        except dns.exception.DNSException as e:
            logging.warning(f"Unable to resolve {query!r}: {e}")
            return []

        records = [
            SrvRecord(
                priority=int(answer.priority),
                weight=int(answer.weight),
                port=int(answer.port),
                target=str(answer.target).rstrip("."),
            )
            for answer in answers
        ]
        records = sort_srv_records(records)

        for record in records:
            logging.debug(
                f"Found LDAP server {record.url} (priority {record.priority}, weight {record.weight})"
            )

        return records

    def get_provider_url(self, domain: str) -> str:
        """
        Build the provider URL for ``domain``.

        Raises:
            ConfigurationError: If no LDAP server is advertised for the domain
        """
        records = self.get_ldap_servers(domain)
        if not records:
            raise ConfigurationError(
                f"The LDAP server URL is not set and no LDAP server was found for realm {domain!r}"
            )

        url = " ".join(record.url for record in records)
        logging.info(f"Discovered LDAP servers for realm {domain!r}: {url}")
        return url
