import struct
from unittest import mock

import pytest
from impacket.krb5 import constants
from impacket.krb5.crypto import Key, _AES256CTS, _RC4
from impacket.krb5.gssapi import KG_USAGE_ACCEPTOR_SEAL, KG_USAGE_INITIATOR_SEAL
from impacket.krb5.kerberosv5 import KerberosError

from ldapbridge.lib import kerberos
from ldapbridge.lib.kerberos import (
    GssContext,
    KerberosLogin,
    KerberosLoginConfiguration,
    KerberosLoginError,
    MechIndepToken,
    current_session,
    is_wrap_token,
    login,
)


def fake_tgt(*args, **kwargs):
    return b"tgt", mock.sentinel.cipher, None, mock.sentinel.session_key


def configuration(password="secret"):
    return KerberosLoginConfiguration.for_principal("svc@example.org", password)


class TestConfiguration:
    def test_principal_with_realm(self):
        config = KerberosLoginConfiguration.for_principal("svc@example.org", "pw", "OTHER")

        assert config.username == "svc"
        assert config.realm == "EXAMPLE.ORG"
        assert config.principal == "svc@EXAMPLE.ORG"
        assert config.password.get_secret_value() == "pw"

    def test_default_realm(self):
        config = KerberosLoginConfiguration.for_principal("svc", "pw", "example.org", "kdc1")

        assert config.principal == "svc@EXAMPLE.ORG"
        assert config.kdc_host == "kdc1"

    def test_no_realm(self):
        with pytest.raises(KerberosLoginError, match="realm"):
            KerberosLoginConfiguration.for_principal("svc", "pw")

    @pytest.mark.parametrize("principal", [None, "", "  "])
    def test_no_principal(self, principal):
        with pytest.raises(KerberosLoginError):
            KerberosLoginConfiguration.for_principal(principal, "pw", "EXAMPLE.ORG")

    def test_repr_has_no_password(self):
        assert "secret" not in repr(configuration())


class TestLogin:
    def test_login(self):
        with mock.patch.object(kerberos, "getKerberosTGT", side_effect=fake_tgt) as get_tgt:
            session = login(configuration())

        assert session.active
        assert session.principal == "svc@EXAMPLE.ORG"
        args = get_tgt.call_args[0]
        assert args[0].components == ["svc"]
        assert args[1:6] == ("secret", "EXAMPLE.ORG", b"", b"", b"")

    def test_rc4_fallback(self):
        error = KerberosError(error=constants.ErrorCodes.KDC_ERR_ETYPE_NOSUPP.value)

        with mock.patch.object(
            kerberos, "getKerberosTGT", side_effect=[error, fake_tgt()]
        ) as get_tgt:
            session = login(configuration())

        assert session.active
        assert get_tgt.call_count == 2
        assert get_tgt.call_args[0][4] != b""

    def test_rejected(self):
        error = KerberosError(error=constants.ErrorCodes.KDC_ERR_PREAUTH_FAILED.value)

        with mock.patch.object(kerberos, "getKerberosTGT", side_effect=error) as get_tgt:
            with pytest.raises(KerberosError):
                login(configuration())

        assert get_tgt.call_count == 1

    @pytest.mark.parametrize("password", [None, ""])
    def test_password_required(self, password):
        with mock.patch.object(kerberos, "getKerberosTGT") as get_tgt:
            with pytest.raises(KerberosLoginError, match="password"):
                login(configuration(password))

        get_tgt.assert_not_called()


class TestSession:
    def test_run_installs_session(self):
        with mock.patch.object(kerberos, "getKerberosTGT", side_effect=fake_tgt):
            session = login(configuration())

        assert current_session() is None
        assert session.run(current_session) is session
        assert current_session() is None

    def test_run_resets_on_error(self):
        with mock.patch.object(kerberos, "getKerberosTGT", side_effect=fake_tgt):
            session = login(configuration())

        def fail():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            session.run(fail)
        assert current_session() is None

    def test_login_context_logs_out(self):
        with mock.patch.object(kerberos, "getKerberosTGT", side_effect=fake_tgt):
            with pytest.raises(RuntimeError):
                with KerberosLogin(configuration()) as session:
                    assert session.active
                    raise RuntimeError("connect failed")

        assert not session.active
        with pytest.raises(KerberosLoginError, match="closed"):
            session.run(lambda: None)

    def test_service_ticket(self):
        with mock.patch.object(kerberos, "getKerberosTGT", side_effect=fake_tgt):
            session = login(configuration())

        tgs = (b"tgs", mock.sentinel.tgs_cipher, None, mock.sentinel.tgs_key)
        with mock.patch.object(kerberos, "getKerberosTGS", return_value=tgs) as get_tgs:
            ticket, cipher, key = session.get_service_ticket("dc1.example.org")

        assert (ticket, cipher, key) == (b"tgs", mock.sentinel.tgs_cipher, mock.sentinel.tgs_key)
        server, realm, kdc, tgt, tgt_cipher, session_key = get_tgs.call_args[0]
        assert server.components == ["ldap", "dc1.example.org"]
        assert realm == "EXAMPLE.ORG"
        assert tgt == b"tgt"
        assert session_key is mock.sentinel.session_key


class TestTokens:
    def test_mech_independent_framing(self):
        token = MechIndepToken(b"\x01\x00" + b"x" * 200).to_bytes()

        assert token[:1] == b"\x60"
        assert token[1] == 0x81
        parsed = MechIndepToken.from_bytes(token)
        assert parsed.oid == kerberos.KRB_OID
        assert parsed.data == b"\x01\x00" + b"x" * 200

    def test_invalid_framing(self):
        with pytest.raises(ValueError):
            MechIndepToken.from_bytes(b"\x30\x03abc")

    def test_is_wrap_token(self):
        assert is_wrap_token(b"\x05\x04" + b"\x00" * 30)
        assert not is_wrap_token(MechIndepToken(b"\x01\x00ap-req").to_bytes())
        assert not is_wrap_token(b"\x30\x00")

    def test_rc4_wrap(self):
        key = Key(constants.EncryptionTypes.rc4_hmac.value, b"k" * 16)
        sender = GssContext(_RC4, key)
        receiver = GssContext(_RC4, key)

        token = sender.wrap(b"\x01\x00\x00\x00")

        assert is_wrap_token(token)
        assert b"\x01\x00\x00\x00" not in MechIndepToken.from_bytes(token).data[32:]
        assert receiver.unwrap(token) == b"\x01\x00\x00\x00"
        assert sender.sequence_number == 1


class TestAesWrapTokens:
    SENT_BY_ACCEPTOR = 0x01

    def setup_method(self):
        self.key = Key(constants.EncryptionTypes.aes256_cts_hmac_sha1_96.value, b"k" * 32)
        self.context = GssContext(_AES256CTS, self.key)
        self.mechanism = self.context.mechanism

    def acceptor_token(self, data, sealed=True, rrc=28):
        header = self.mechanism.WRAP()
        header["Flags"] = self.SENT_BY_ACCEPTOR | (kerberos.FLAG_SEALED if sealed else 0)
        header["SND_SEQ"] = struct.pack(">Q", 0)

        if not sealed:
            header["EC"] = 12
            return header.getData() + data + b"c" * 12

        header["EC"] = 0
        header["RRC"] = 0
        sealed_data = _AES256CTS.encrypt(
            self.key, KG_USAGE_ACCEPTOR_SEAL, data + header.getData(), None
        )
        header["RRC"] = rrc
        return header.getData() + self.mechanism.rotate(sealed_data, rrc)

    def test_unwrap_sealed(self):
        token = self.acceptor_token(b"\x07\x00\x10\x00")

        assert is_wrap_token(token)
        assert self.context.unwrap(token) == b"\x07\x00\x10\x00"

    def test_unwrap_sealed_without_rotation(self):
        token = self.acceptor_token(b"\x01\xff\xff\xff", rrc=0)

        assert self.context.unwrap(token) == b"\x01\xff\xff\xff"

    def test_unwrap_unsealed(self):
        token = self.acceptor_token(b"\x01\x00\x04\x00", sealed=False)

        assert self.context.unwrap(token) == b"\x01\x00\x04\x00"

    def test_wrap(self):
        token = self.context.wrap(b"\x01\x00\x00\x00")

        header = self.mechanism.WRAP(token[:16])
        assert token[:2] == kerberos.TOK_ID_WRAP_AES
        assert header["Flags"] == kerberos.FLAG_SEALED
        assert header["RRC"] == 28

        sealed_data = self.mechanism.unrotate(token[16:], header["RRC"] + header["EC"])
        plain = _AES256CTS.decrypt(self.key, KG_USAGE_INITIATOR_SEAL, sealed_data)
        assert plain[:-16] == b"\x01\x00\x00\x00"
        assert self.context.sequence_number == 1
