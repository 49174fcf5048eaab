"""
Kerberos support for SASL GSSAPI binds.

This module provides:
- KerberosLoginConfiguration: how to log in one principal with a password
- KerberosLogin / KerberosLoginSession: password based TGT acquisition with
  explicit logout, scoped to a single connection attempt
- run-as semantics: the active session is held in a context variable while
  an action runs, so concurrent attempts never share login state
- GSS-API token helpers: the initial AP-REQ token for ``ldap/<host>`` and
  wrap/unwrap of the messages exchanged during security layer negotiation
"""

import contextvars
import datetime
import struct
from typing import Any, Callable, Optional, Tuple, TypeVar

from Cryptodome.Cipher import ARC4
from Cryptodome.Hash import HMAC, MD5
from Cryptodome.Random import get_random_bytes
from impacket.krb5 import constants
from impacket.krb5.asn1 import AP_REQ, TGS_REP, Authenticator, seq_set
from impacket.krb5.crypto import Key
from impacket.krb5.gssapi import GSS_C_REPLAY_FLAG, GSS_C_SEQUENCE_FLAG, GSS_HMAC, GSS_RC4
from impacket.krb5.gssapi import GSSAPI as create_gss_mechanism  # noqa: N811
from impacket.krb5.gssapi import (
    GSSAPI_RC4,
    KG_USAGE_ACCEPTOR_SEAL,
    KG_USAGE_INITIATOR_SEAL,
    CheckSumField,
)
from impacket.krb5.kerberosv5 import KerberosError, getKerberosTGS, getKerberosTGT
from impacket.krb5.types import KerberosTime, Principal, Ticket
from impacket.ntlm import compute_lmhash, compute_nthash
from pyasn1.codec.ber import decoder, encoder
from pyasn1.type.univ import noValue

from ldapbridge.lib.errors import LdapBridgeError
from ldapbridge.lib.logger import logging
from ldapbridge.lib.secret import Secret

T = TypeVar("T")

KRB_OID = b"\x06\t*\x86H\x86\xf7\x12\x01\x02\x02"  # 1.2.840.113554.1.2.2
TOK_ID_AP_REQ = b"\x01\x00"
TOK_ID_WRAP_RC4 = b"\x02\x01"
TOK_ID_WRAP_AES = b"\x05\x04"

# RFC 4121 wrap token flags
FLAG_SEALED = 0x02

LDAP_SERVICE = "ldap"

_ACTIVE_SESSION: "contextvars.ContextVar[Optional[KerberosLoginSession]]" = (
    contextvars.ContextVar("ldapbridge_kerberos_session", default=None)
)


class KerberosLoginError(LdapBridgeError):
    """Raised when a Kerberos login cannot be performed."""


def current_session() -> Optional["KerberosLoginSession"]:
    """
    Return the Kerberos session installed by :meth:`KerberosLoginSession.run`
    in the current context, if any.
    """
    return _ACTIVE_SESSION.get()


class KerberosLoginConfiguration:
    """
    Password based login parameters for one principal. No keytab or
    credential cache is consulted.
    """

    def __init__(
        self,
        username: str,
        password: Optional[Secret],
        realm: str,
        kdc_host: Optional[str] = None,
    ) -> None:
        self.username = username
        self.password = password
        self.realm = realm.upper()
        self.kdc_host = kdc_host

    @staticmethod
    def for_principal(
        principal: Optional[str],
        password: Optional[Any],
        default_realm: Optional[str] = None,
        kdc_host: Optional[str] = None,
    ) -> "KerberosLoginConfiguration":
        """
        Build the configuration for ``user@REALM`` or ``user`` plus a default realm.

        Raises:
            KerberosLoginError: If no principal or no realm can be determined
        """
        if not principal or not principal.strip():
            raise KerberosLoginError("A Kerberos principal is required for GSSAPI")

        username, _, realm = principal.strip().rpartition("@")
        if not username:
            username, realm = realm, ""
        realm = realm or (default_realm or "")
        if not realm:
            raise KerberosLoginError(
                f"Unable to determine the Kerberos realm of {principal!r}. "
                "Use user@REALM or configure the realm"
            )

        return KerberosLoginConfiguration(
            username, Secret.wrap(password), realm, kdc_host
        )

    @property
    def principal(self) -> str:
        return f"{self.username}@{self.realm}"

    def __repr__(self) -> str:
        return f"<KerberosLoginConfiguration principal={self.principal!r} kdc={self.kdc_host!r}>"


class KerberosLoginSession:
    """
    A logged-in principal: its TGT and session key.
    """

    def __init__(
        self,
        configuration: KerberosLoginConfiguration,
        tgt: bytes,
        cipher: type,
        session_key: Key,
    ) -> None:
        self.configuration = configuration
        self._tgt: Optional[bytes] = tgt
        self._cipher: Optional[type] = cipher
        self._session_key: Optional[Key] = session_key

    @property
    def active(self) -> bool:
        return self._tgt is not None

    @property
    def principal(self) -> str:
        return self.configuration.principal

    def run(self, action: Callable[[], T]) -> T:
        """
        Run ``action`` with this session as the active Kerberos identity.

        Raises:
            KerberosLoginError: If the session has been logged out
        """
        if not self.active:
            raise KerberosLoginError(f"Kerberos session of {self.principal!r} is closed")

        token = _ACTIVE_SESSION.set(self)
        try:
            return action()
        finally:
            _ACTIVE_SESSION.reset(token)

    def get_service_ticket(
        self, hostname: str, service: str = LDAP_SERVICE
    ) -> Tuple[bytes, type, Key]:
        """
        Request a service ticket for ``<service>/<hostname>`` with the TGT.
        """
        if self._tgt is None:
            raise KerberosLoginError(f"Kerberos session of {self.principal!r} is closed")

        spn = f"{service}/{hostname}"
        server_principal = Principal(
            spn, type=constants.PrincipalNameType.NT_SRV_INST.value
        )
        logging.debug(f"Getting TGS for {spn!r}")
        tgs, cipher, _, session_key = getKerberosTGS(
            server_principal,
            self.configuration.realm,
            self.configuration.kdc_host,
            self._tgt,
            self._cipher,
            self._session_key,
        )
        logging.debug(f"Got TGS for {spn!r}")
        return tgs, cipher, session_key

    def logout(self) -> None:
        """Forget the TGT and session key."""
        if self.active:
            logging.debug(f"Logging out Kerberos principal {self.principal!r}")
        self._tgt = None
        self._cipher = None
        self._session_key = None


class KerberosLogin:
    """
    Context manager performing the login on entry and the logout on exit::

        with KerberosLogin(configuration) as session:
            connection = session.run(connect)
    """

    def __init__(self, configuration: KerberosLoginConfiguration) -> None:
        self.configuration = configuration
        self.session: Optional[KerberosLoginSession] = None

    def __enter__(self) -> KerberosLoginSession:
        self.session = login(self.configuration)
        return self.session

    def __exit__(self, *exc_info: Any) -> None:
        if self.session is not None:
            self.session.logout()
            self.session = None


def login(configuration: KerberosLoginConfiguration) -> KerberosLoginSession:
    """
    Acquire a TGT for the configured principal with its password.

    If the KDC does not support the default (AES) encryption types, the
    request is retried once with RC4 keys derived from the password.

    Raises:
        KerberosLoginError: If no password is configured
        KerberosError: If the KDC rejects the request
    """
    password = Secret.reveal(configuration.password)
    if not password:
        raise KerberosLoginError(
            f"A password is required to log in {configuration.principal!r}"
        )

    user = Principal(
        configuration.username, type=constants.PrincipalNameType.NT_PRINCIPAL.value
    )
    lmhash = b""
    nthash = b""

    logging.debug(f"Getting TGT for {configuration.principal!r}")
    while True:
        try:
            tgt, cipher, _, session_key = getKerberosTGT(
                user,
                password,
                configuration.realm,
                lmhash,
                nthash,
                b"",
                configuration.kdc_host,
            )
            break
        except KerberosError as e:
            if (
                e.getErrorCode() == constants.ErrorCodes.KDC_ERR_ETYPE_NOSUPP.value
                and not nthash
            ):
                logging.warning("AES encryption not supported by KDC, falling back to RC4")
                lmhash = compute_lmhash(password)
                nthash = compute_nthash(password)
                continue
            logging.debug(f"Kerberos login of {configuration.principal!r} failed: {e}")
            raise

    logging.debug(f"Got TGT for {configuration.principal!r}")
    return KerberosLoginSession(configuration, tgt, cipher, session_key)


class MechIndepToken:
    """
    RFC 2743 framing: ``0x60 <length> <mechanism OID> <inner token>``.
    """

    def __init__(self, data: bytes, oid: bytes = KRB_OID) -> None:
        self.data = data
        self.oid = oid

    @staticmethod
    def from_bytes(data: bytes) -> "MechIndepToken":
        if data[0:1] != b"\x60":
            raise ValueError("Incorrect token data format (expected 0x60)")

        length, rest = _decode_length(data[1:])
        body = rest[:length]
        if body[0:1] != b"\x06":
            raise ValueError("Incorrect OID tag in token data")

        oid_length = body[1]
        return MechIndepToken(body[oid_length + 2 :], body[: oid_length + 2])

    def to_bytes(self) -> bytes:
        body = self.oid + self.data
        return b"\x60" + _encode_length(len(body)) + body


def _decode_length(data: bytes) -> Tuple[int, bytes]:
    if data[0] < 128:
        return data[0], data[1:]
    count = data[0] - 128
    return int.from_bytes(data[1 : 1 + count], "big"), data[1 + count :]


def _encode_length(length: int) -> bytes:
    if length < 128:
        return bytes([length])
    encoded = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([128 + len(encoded)]) + encoded


class GssContext:
    """
    Client side GSS-API security context for one SASL GSSAPI exchange.
    """

    def __init__(self, cipher: type, session_key: Key) -> None:
        self.mechanism = create_gss_mechanism(cipher)
        self.session_key = session_key
        self.sequence_number = 0

    def wrap(self, data: bytes) -> bytes:
        """Seal ``data`` into a wrap token sent by the initiator."""
        if isinstance(self.mechanism, GSSAPI_RC4):
            token = self._wrap_rc4(data)
        else:
            token = self._wrap_aes(data)
        self.sequence_number += 1
        return token

    def unwrap(self, token: bytes) -> bytes:
        """
        Extract the payload of a wrap token sent by the acceptor.

        The integrity checksum of unsealed tokens is not verified.
        """
        if token[0:2] == TOK_ID_WRAP_AES:
            return self._unwrap_aes(token)
        return self._unwrap_rc4(token)

    def _wrap_aes(self, data: bytes) -> bytes:
        header = self.mechanism.WRAP()
        header["Flags"] = FLAG_SEALED
        header["EC"] = 0
        header["RRC"] = 0
        header["SND_SEQ"] = struct.pack(">Q", self.sequence_number)

        cipher_text = self.mechanism.cipherType.encrypt(
            self.session_key, KG_USAGE_INITIATOR_SEAL, data + header.getData(), None
        )

        header["RRC"] = 28
        cipher_text = self.mechanism.rotate(cipher_text, header["RRC"] + header["EC"])
        return header.getData() + cipher_text

    def _unwrap_aes(self, token: bytes) -> bytes:
        header = self.mechanism.WRAP(token[:16])

        if header["Flags"] & FLAG_SEALED:
            # Sealed tokens are rotated over the filler too
            payload = self.mechanism.unrotate(token[16:], header["RRC"] + header["EC"])
            plain = self.mechanism.cipherType().decrypt(
                self.session_key, KG_USAGE_ACCEPTOR_SEAL, payload
            )
            # Drops filler and the encrypted copy of the header
            return plain[: -(header["EC"] + 16)]

        # Unsealed: plaintext followed by an EC byte checksum
        payload = self.mechanism.unrotate(token[16:], header["RRC"])
        return payload[: len(payload) - header["EC"]]

    def _wrap_rc4(self, data: bytes) -> bytes:
        padded = data + b"\x01"

        header = self.mechanism.WRAP()
        header["SGN_ALG"] = GSS_HMAC
        header["SEAL_ALG"] = GSS_RC4
        header["SND_SEQ"] = struct.pack(">L", self.sequence_number) + b"\x00" * 4
        header["Confounder"] = get_random_bytes(8)

        key = self.session_key.contents
        k_sign = HMAC.new(key, b"signaturekey\0", MD5).digest()
        checksum = MD5.new(
            struct.pack("<L", 13) + header.getData()[:8] + header["Confounder"] + padded
        ).digest()
        header["SGN_CKSUM"] = HMAC.new(k_sign, checksum, MD5).digest()[:8]

        k_local = bytes(b ^ 0xF0 for b in key)
        k_crypt = HMAC.new(k_local, struct.pack("<L", 0), MD5).digest()
        k_crypt = HMAC.new(k_crypt, struct.pack(">L", self.sequence_number), MD5).digest()

        k_seq = HMAC.new(key, struct.pack("<L", 0), MD5).digest()
        k_seq = HMAC.new(k_seq, header["SGN_CKSUM"], MD5).digest()
        header["SND_SEQ"] = ARC4.new(k_seq).encrypt(header["SND_SEQ"])

        rc4 = ARC4.new(k_crypt)
        header["Confounder"] = rc4.encrypt(header["Confounder"])
        sealed = rc4.encrypt(padded)

        return MechIndepToken(header.getData() + sealed).to_bytes()

    def _unwrap_rc4(self, token: bytes) -> bytes:
        inner = MechIndepToken.from_bytes(token).data
        header = self.mechanism.WRAP(inner[:32])
        body = inner[32:]

        if header["SEAL_ALG"] == GSS_RC4:
            key = self.session_key.contents
            k_seq = HMAC.new(key, struct.pack("<L", 0), MD5).digest()
            k_seq = HMAC.new(k_seq, header["SGN_CKSUM"], MD5).digest()
            sequence = ARC4.new(k_seq).decrypt(header["SND_SEQ"])

            k_local = bytes(b ^ 0xF0 for b in key)
            k_crypt = HMAC.new(k_local, struct.pack("<L", 0), MD5).digest()
            k_crypt = HMAC.new(k_crypt, sequence[:4], MD5).digest()
            body = ARC4.new(k_crypt).decrypt(header["Confounder"] + body)[8:]

        # RFC 1964 padding: the last byte holds the padding length
        if body and 0 < body[-1] <= 8:
            body = body[: -body[-1]]
        return body


def is_wrap_token(token: bytes) -> bool:
    """Tell wrap tokens apart from context establishment tokens."""
    if token[0:2] == TOK_ID_WRAP_AES:
        return True
    try:
        return MechIndepToken.from_bytes(token).data[0:2] == TOK_ID_WRAP_RC4
    except (ValueError, IndexError):
        return False


def initiate_security_context(
    session: KerberosLoginSession, hostname: str
) -> Tuple[bytes, GssContext]:
    """
    Build the initial GSS-API token (an AP-REQ) for the LDAP service on ``hostname``.

    Args:
        session: Logged in Kerberos session
        hostname: Host name of the directory server, used for ``ldap/<hostname>``

    Returns:
        Tuple of (initial token, security context for the rest of the exchange)
    """
    tgs, cipher, session_key = session.get_service_ticket(hostname)

    tgs_rep = decoder.decode(tgs, asn1Spec=TGS_REP())[0]
    ticket = Ticket()
    _ = ticket.from_asn1(tgs_rep["ticket"])

    ap_req = AP_REQ()
    ap_req["pvno"] = 5
    ap_req["msg-type"] = constants.ApplicationTagNumbers.AP_REQ.value
    ap_req["ap-options"] = constants.encodeFlags([])
    seq_set(ap_req, "ticket", ticket.to_asn1)

    client = Principal(
        session.configuration.username,
        type=constants.PrincipalNameType.NT_PRINCIPAL.value,
    )
    authenticator = Authenticator()
    authenticator["authenticator-vno"] = 5
    authenticator["crealm"] = session.configuration.realm
    seq_set(authenticator, "cname", client.components_to_asn1)

    now = datetime.datetime.now(datetime.timezone.utc)
    authenticator["cusec"] = now.microsecond
    authenticator["ctime"] = KerberosTime.to_asn1(now)

    checksum = CheckSumField()
    checksum["Lgth"] = 16
    checksum["Flags"] = GSS_C_SEQUENCE_FLAG | GSS_C_REPLAY_FLAG

    authenticator["cksum"] = noValue
    authenticator["cksum"]["cksumtype"] = 0x8003
    authenticator["cksum"]["checksum"] = checksum.getData()

    encrypted = cipher.encrypt(session_key, 11, encoder.encode(authenticator), None)
    ap_req["authenticator"] = noValue
    ap_req["authenticator"]["etype"] = cipher.enctype
    ap_req["authenticator"]["cipher"] = encrypted

    token = MechIndepToken(TOK_ID_AP_REQ + encoder.encode(ap_req)).to_bytes()
    return token, GssContext(cipher, session_key)
