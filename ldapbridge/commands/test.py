import argparse
import sys
from collections import OrderedDict

from ldapbridge.commands._servers import connectors_from_options
from ldapbridge.connector import LdapConnector
from ldapbridge.lib.errors import LdapBridgeError, handle_error
from ldapbridge.lib.logger import logging


class Test:
    def __init__(self, connectors: "OrderedDict[str, LdapConnector]"):
        self.connectors = connectors

    def run(self) -> bool:
        """
        Test every connector, continuing past failures.

        Returns:
            True if all servers accepted the bind connection
        """
        failed = []
        for key, connector in self.connectors.items():
            logging.info(f"Testing LDAP server {key!r}")
            try:
                connector.test_connection()
            except LdapBridgeError as e:
                cause = getattr(e, "cause", None)
                if cause is not None:
                    logging.error(f"{key}: {e}: {cause}")
                else:
                    logging.error(f"{key}: {e}")
                handle_error(True)
                failed.append(key)

        if failed:
            logging.error(f"Failed servers: {', '.join(failed)}")
            return False

        logging.info(f"All {len(self.connectors)} server(s) OK")
        return True


def entry(options: argparse.Namespace) -> None:
    """
    Entry point for the 'test' command.

    Args:
        options: Command-line arguments
    """
    test = Test(connectors_from_options(options))
    if not test.run():
        sys.exit(1)
