import argparse
import sys
from collections import OrderedDict
from typing import Optional

from ldapbridge.commands._servers import connectors_from_options
from ldapbridge.connector import LdapConnector, release
from ldapbridge.lib.errors import LdapConnectionError, handle_error
from ldapbridge.lib.logger import logging


class Authenticate:
    def __init__(
        self,
        connectors: "OrderedDict[str, LdapConnector]",
        username: str,
        password: Optional[str] = None,
    ):
        self.connectors = connectors
        self.username = username
        self.password = password

    def authenticate(self) -> Optional[str]:
        """
        Bind as the user on each server in order until one succeeds.

        Returns:
            Key of the server that accepted the credentials, or None
        """
        for key, connector in self.connectors.items():
            logging.debug(f"Trying {self.username!r} on {connector.provider_url}")
            try:
                connection = connector.open_user_connection(
                    self.username, self.password
                )
            except LdapConnectionError as e:
                logging.warning(f"{key}: {e}")
                handle_error(True)
                continue

            release(connection)
            logging.info(f"Authenticated {self.username!r} on server {key!r}")
            return key

        logging.error(f"Authentication of {self.username!r} failed on every server")
        return None


def entry(options: argparse.Namespace) -> None:
    """
    Entry point for the 'auth' command.

    Args:
        options: Command-line arguments
    """
    password = options.password
    if password is None:
        from getpass import getpass

        password = getpass("Password:")

    authenticate = Authenticate(
        connectors_from_options(options), options.username, password
    )
    if authenticate.authenticate() is None:
        sys.exit(1)
