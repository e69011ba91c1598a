"""
Envelope encryption for custody private keys.

The custody store only depends on the KeyEncryptor protocol; FernetKeyEncryptor is the
default collaborator, keyed from CRYPTO_ENCRYPTION_KEY (32 bytes, 64 hex chars).
"""
import base64
import binascii
import logging
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from paychannel.core.errors import ConfigurationError

logger = logging.getLogger("paychannel.keys.encryption")


class KeyEncryptor(Protocol):
    def encrypt(self, plaintext: bytes) -> bytes: ...

    def decrypt(self, ciphertext: bytes) -> bytes: ...


class FernetKeyEncryptor:
    def __init__(self, key_hex: str):
        try:
            raw = bytes.fromhex((key_hex or "").strip())
        except (ValueError, binascii.Error):
            raise ConfigurationError("CRYPTO_ENCRYPTION_KEY must be hex encoded") from None
        if len(raw) != 32:
            raise ConfigurationError("CRYPTO_ENCRYPTION_KEY must be 32 bytes (64 hex characters)")
        self._fernet = Fernet(base64.urlsafe_b64encode(raw))

    @classmethod
    def from_settings(cls, settings) -> "FernetKeyEncryptor":
        key_hex = getattr(settings, "CRYPTO_ENCRYPTION_KEY", None)
        if not key_hex:
            raise ConfigurationError("CRYPTO_ENCRYPTION_KEY is not configured")
        return cls(key_hex)

    def encrypt(self, plaintext: bytes) -> bytes:
        return self._fernet.encrypt(plaintext)

    def decrypt(self, ciphertext: bytes) -> bytes:
        try:
            return self._fernet.decrypt(bytes(ciphertext))
        except InvalidToken:
            # wrong key or tampered row; never include the ciphertext in the message
            raise ConfigurationError("Failed to decrypt private key: invalid token for configured key") from None


def self_test(encryptor: KeyEncryptor) -> None:
    """Round-trip a dummy key at startup; raise ConfigurationError on mismatch."""
    probe = b"a" * 64
    if encryptor.decrypt(encryptor.encrypt(probe)) != probe:
        raise ConfigurationError("Encryption self-test failed")
    logger.info("Encryption self-test passed")
