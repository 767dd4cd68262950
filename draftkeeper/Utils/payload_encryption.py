"""
Payload encryption for auto-saved drafts.

Uses AES-256-CBC encryption with HMAC-SHA256 authentication and PBKDF2 key derivation.
Keys are derived once per passphrase/salt pair, since drafts are encrypted on every
debounced write and PBKDF2 is deliberately slow.
"""
import hashlib
import hmac
import time
from typing import Optional, Tuple

from Cryptodome.Cipher import AES
from Cryptodome.Hash import SHA256
from Cryptodome.Protocol.KDF import PBKDF2
from Cryptodome.Random import get_random_bytes
from Cryptodome.Util.Padding import pad, unpad
from loguru import logger


class PayloadEncryption:
    """Authenticated encryption of byte payloads with pre-derived keys."""

    SALT_SIZE = 32  # 256 bits
    KEY_SIZE = 32   # 256 bits for AES-256
    HMAC_KEY_SIZE = 32  # 256 bits for HMAC-SHA256
    MAC_SIZE = 32
    BLOCK_SIZE = 16  # AES block size
    ITERATIONS = 100000  # PBKDF2 iterations
    VERSION = 2  # Encryption format version

    def __init__(self, passphrase: str, salt: Optional[bytes] = None, iterations: Optional[int] = None):
        if not passphrase:
            raise ValueError("A non-empty passphrase is required for payload encryption")
        self.salt = salt if salt is not None else self.generate_salt()
        self.iterations = iterations or self.ITERATIONS
        self._encryption_key, self._hmac_key = self.derive_keys(passphrase, self.salt)

    @classmethod
    def generate_salt(cls) -> bytes:
        """Generate a new random salt for key derivation."""
        return get_random_bytes(cls.SALT_SIZE)

    def derive_keys(self, passphrase: str, salt: bytes) -> Tuple[bytes, bytes]:
        """Derive encryption and HMAC keys from passphrase and salt using PBKDF2."""
        start_time = time.time()

        # Derive a master key, then split it for encryption and HMAC
        master_key = PBKDF2(
            passphrase.encode('utf-8'),
            salt,
            dkLen=self.KEY_SIZE + self.HMAC_KEY_SIZE,  # 64 bytes total
            count=self.iterations,
            hmac_hash_module=SHA256
        )

        logger.debug(f"Derived payload encryption keys in {time.time() - start_time:.3f}s")
        return master_key[:self.KEY_SIZE], master_key[self.KEY_SIZE:]

    def encrypt(self, data: bytes) -> bytes:
        """
        Encrypt bytes using AES-256-CBC with HMAC-SHA256 authentication.

        Format: VERSION || IV || ENCRYPTED_DATA || HMAC
        """
        iv = get_random_bytes(self.BLOCK_SIZE)
        cipher = AES.new(self._encryption_key, AES.MODE_CBC, iv)
        encrypted_data = cipher.encrypt(pad(data, self.BLOCK_SIZE))

        message = bytes([self.VERSION]) + iv + encrypted_data
        mac = hmac.new(self._hmac_key, message, hashlib.sha256).digest()
        return message + mac

    def decrypt(self, combined: bytes) -> bytes:
        """
        Decrypt bytes produced by `encrypt`, verifying the HMAC first.

        Raises:
            ValueError: If the data is truncated, tampered with, or was encrypted with another key
        """
        # version + IV + at least 1 block + HMAC
        min_length = 1 + self.BLOCK_SIZE + self.BLOCK_SIZE + self.MAC_SIZE
        if len(combined) < min_length:
            raise ValueError("Invalid encrypted data length")

        stored_mac = combined[-self.MAC_SIZE:]
        message = combined[:-self.MAC_SIZE]

        expected_mac = hmac.new(self._hmac_key, message, hashlib.sha256).digest()
        # Constant-time comparison to prevent timing attacks
        if not hmac.compare_digest(stored_mac, expected_mac):
            raise ValueError("HMAC verification failed")

        if message[0] != self.VERSION:
            raise ValueError(f"Unsupported encryption format version: {message[0]}")

        iv = message[1:1 + self.BLOCK_SIZE]
        encrypted_data = message[1 + self.BLOCK_SIZE:]
        cipher = AES.new(self._encryption_key, AES.MODE_CBC, iv)
        try:
            return unpad(cipher.decrypt(encrypted_data), self.BLOCK_SIZE)
        except ValueError as e:
            raise ValueError(f"Failed to decrypt payload: {e}") from e
