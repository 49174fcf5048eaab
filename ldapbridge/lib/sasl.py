"""
SASL bind exchanges that ldap3 does not run by itself.

- CRAM-MD5 (RFC 2195): the challenge is answered with
  ``<user> <hex HMAC-MD5(password, challenge)>``
- GSSAPI (RFC 4752) with a ticket from a KerberosLoginSession rather than
  the system credential cache, followed by the security layer negotiation.
  Only the "no security layer" option is ever selected; confidentiality is
  left to TLS (``ldaps://``).

DIGEST-MD5 is handled natively by ldap3 and does not appear here.
"""

from typing import Any, Dict, Optional

import ldap3
from Cryptodome.Hash import HMAC, MD5
from ldap3.core.results import RESULT_SASL_BIND_IN_PROGRESS, RESULT_SUCCESS
from ldap3.operation.bind import bind_operation

from ldapbridge.lib.errors import LdapConnectionError
from ldapbridge.lib.kerberos import (
    KerberosLoginSession,
    initiate_security_context,
    is_wrap_token,
)
from ldapbridge.lib.logger import logging

CRAM_MD5 = "CRAM-MD5"
GSSAPI = "GSSAPI"

# RFC 4752 security layer bit masks
SECURITY_LAYER_NONE = 0x01
SECURITY_LAYER_INTEGRITY = 0x02
SECURITY_LAYER_CONFIDENTIALITY = 0x04

MAX_GSSAPI_ROUNDS = 4


def send_sasl_bind(
    connection: ldap3.Connection, mechanism: str, credentials: Optional[bytes]
) -> Dict[str, Any]:
    """
    Send one SASL bind request and return the decoded bind response.

    Args:
        connection: Open (not yet bound) ldap3 connection
        mechanism: SASL mechanism name
        credentials: Client credentials for this step, None to omit them

    Returns:
        The bind response as a dictionary (``result``, ``message``, ``saslCreds``...)
    """
    request = bind_operation(
        connection.version, ldap3.SASL, "", None, mechanism, credentials
    )

    with connection.connection_lock:
        connection.sasl_in_progress = True
        try:
            response = connection.strategy.post_send_single_response(
                connection.strategy.send("bindRequest", request, None)
            )
        finally:
            connection.sasl_in_progress = False

    return response[0]


def cram_md5_response(username: str, password: str, challenge: bytes) -> bytes:
    """
    Compute the CRAM-MD5 answer to ``challenge``.

    Example:
        >>> cram_md5_response("tim", "tanstaaftanstaaf",
        ...     b"<1896.697170952@postoffice.reston.mci.net>")
        b'tim b913a602c7eda7a495b4e6e7334d3890'
    """
    digest = HMAC.new(password.encode("utf-8"), challenge, MD5).hexdigest()
    return f"{username} {digest}".encode("utf-8")


def cram_md5_bind(
    connection: ldap3.Connection, username: str, password: str
) -> Dict[str, Any]:
    """
    Run the two step CRAM-MD5 exchange.

    Returns:
        The final bind response
    """
    logging.debug(f"Starting SASL {CRAM_MD5} bind as {username!r}")
    result = send_sasl_bind(connection, CRAM_MD5, None)
    if result["result"] != RESULT_SASL_BIND_IN_PROGRESS:
        return result

    challenge = result.get("saslCreds") or b""
    result = send_sasl_bind(
        connection, CRAM_MD5, cram_md5_response(username, password, challenge)
    )
    if result["result"] == RESULT_SUCCESS:
        connection.bound = True
    return result


def select_security_layer(offer: bytes, authorization_id: str = "") -> bytes:
    """
    Build the client reply to the server's security layer offer.

    Args:
        offer: The unwrapped 4 byte offer (layer bit mask, max buffer size)
        authorization_id: Optional identity to act as

    Raises:
        LdapConnectionError: If the server does not allow running without a layer
    """
    if len(offer) < 4:
        raise LdapConnectionError(
            f"Invalid SASL GSSAPI security layer offer of {len(offer)} bytes"
        )

    if not offer[0] & SECURITY_LAYER_NONE:
        raise LdapConnectionError(
            "The directory server requires a SASL security layer (integrity or "
            "confidentiality); use ldaps:// instead"
        )

    return bytes([SECURITY_LAYER_NONE, 0, 0, 0]) + authorization_id.encode("utf-8")


def gssapi_bind(
    connection: ldap3.Connection,
    session: KerberosLoginSession,
    hostname: str,
    authorization_id: str = "",
) -> Dict[str, Any]:
    """
    Run the SASL GSSAPI exchange using the ticket of ``session``.

    Args:
        connection: Open (not yet bound) ldap3 connection
        session: Logged in Kerberos session
        hostname: Directory server host name, for the ``ldap/<hostname>`` ticket
        authorization_id: Optional identity to act as

    Returns:
        The final bind response
    """
    logging.debug(f"Starting SASL {GSSAPI} bind as {session.principal!r} to {hostname!r}")
    token, context = initiate_security_context(session, hostname)
    result = send_sasl_bind(connection, GSSAPI, token)

    rounds = 0
    while result["result"] == RESULT_SASL_BIND_IN_PROGRESS:
        rounds += 1
        if rounds > MAX_GSSAPI_ROUNDS:
            raise LdapConnectionError("SASL GSSAPI negotiation did not complete")

        server_token = result.get("saslCreds") or b""
        if server_token and is_wrap_token(server_token):
            reply = select_security_layer(
                context.unwrap(server_token), authorization_id
            )
            result = send_sasl_bind(connection, GSSAPI, context.wrap(reply))
        else:
            # Final context token of the server; the client answers empty
            result = send_sasl_bind(connection, GSSAPI, b"")

    if result["result"] == RESULT_SUCCESS:
        logging.debug(f"SASL {GSSAPI} bind as {session.principal!r} successful")
        connection.bound = True
    return result
