"""
Test suite for payload_encryption module.

Tests AES-256-CBC + HMAC-SHA256 encryption with PBKDF2 key derivation.
"""
import pytest

from draftkeeper.Utils.payload_encryption import PayloadEncryption


SALT = b"\x05" * PayloadEncryption.SALT_SIZE


class TestPayloadEncryption:
    """Test suite for PayloadEncryption class."""

    @pytest.fixture
    def encryptor(self):
        return PayloadEncryption("test_password_123!@#", salt=SALT, iterations=1000)

    def test_encrypt_decrypt_roundtrip(self, encryptor):
        plaintext = "Hello, World!".encode("utf-8")

        encrypted = encryptor.encrypt(plaintext)
        assert encrypted != plaintext
        assert encryptor.decrypt(encrypted) == plaintext

    def test_encrypt_empty_bytes(self, encryptor):
        assert encryptor.decrypt(encryptor.encrypt(b"")) == b""

    def test_encrypt_unicode(self, encryptor):
        plaintext = "Hello 世界! 🌍 émojis".encode("utf-8")
        assert encryptor.decrypt(encryptor.encrypt(plaintext)) == plaintext

    def test_random_iv_per_message(self, encryptor):
        assert encryptor.encrypt(b"same") != encryptor.encrypt(b"same")

    def test_format_layout(self, encryptor):
        encrypted = encryptor.encrypt(b"x" * 20)

        assert encrypted[0] == PayloadEncryption.VERSION
        # version + IV + two padded blocks + MAC
        assert len(encrypted) == 1 + 16 + 32 + PayloadEncryption.MAC_SIZE

    def test_same_passphrase_and_salt_interoperate(self, encryptor):
        other = PayloadEncryption("test_password_123!@#", salt=SALT, iterations=1000)
        assert other.decrypt(encryptor.encrypt(b"shared")) == b"shared"

    def test_wrong_passphrase_fails(self, encryptor):
        other = PayloadEncryption("wrong_password", salt=SALT, iterations=1000)
        with pytest.raises(ValueError, match="HMAC"):
            other.decrypt(encryptor.encrypt(b"secret"))

    def test_wrong_salt_fails(self, encryptor):
        other = PayloadEncryption("test_password_123!@#", salt=b"\x06" * 32, iterations=1000)
        with pytest.raises(ValueError):
            other.decrypt(encryptor.encrypt(b"secret"))

    def test_tampered_ciphertext_fails(self, encryptor):
        encrypted = bytearray(encryptor.encrypt(b"secret data"))
        encrypted[20] ^= 0x01

        with pytest.raises(ValueError, match="HMAC"):
            encryptor.decrypt(bytes(encrypted))

    def test_truncated_data_fails(self, encryptor):
        with pytest.raises(ValueError, match="length"):
            encryptor.decrypt(b"\x02" + b"\x00" * 10)

    def test_empty_passphrase_rejected(self):
        with pytest.raises(ValueError):
            PayloadEncryption("")

    def test_generated_salt(self):
        salt = PayloadEncryption.generate_salt()
        assert len(salt) == PayloadEncryption.SALT_SIZE
        assert salt != PayloadEncryption.generate_salt()

    def test_default_salt_is_random(self):
        a = PayloadEncryption("pw", iterations=1000)
        b = PayloadEncryption("pw", iterations=1000)
        assert a.salt != b.salt
