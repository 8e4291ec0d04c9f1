"""Seal/open helpers for credentials and tokens stored at rest."""

from __future__ import annotations

import os
from typing import Final, Protocol

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from url_indexing_pipeline.config import Settings

AES_KEY_BYTES: Final[int] = 32
AES_BLOCK_BITS: Final[int] = 128
IV_BYTES: Final[int] = 16
SEALED_VALUE_SEPARATOR: Final[str] = ":"


class SecretBoxError(Exception):
    """Raised when a value cannot be sealed or opened."""


class SecretBox(Protocol):
    """Opaque seal/open capability for secrets persisted in the database."""

    def seal(self, plaintext: str) -> str: ...

    def open(self, ciphertext: str) -> str: ...


class AesCbcSecretBox:
    """AES-256-CBC secret box producing ``<iv hex>:<ciphertext hex>`` blobs."""

    def __init__(self, key: str | bytes) -> None:
        key_bytes = key.encode("utf-8") if isinstance(key, str) else key
        if len(key_bytes) != AES_KEY_BYTES:
            raise SecretBoxError(
                f"Encryption key must be exactly {AES_KEY_BYTES} bytes long"
            )
        self._key = key_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> AesCbcSecretBox:
        return cls(settings.ENCRYPTION_KEY.get_secret_value())

    def seal(self, plaintext: str) -> str:
        iv = os.urandom(IV_BYTES)
        padder = padding.PKCS7(AES_BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}{SEALED_VALUE_SEPARATOR}{ciphertext.hex()}"

    def open(self, ciphertext: str) -> str:
        iv_hex, separator, payload_hex = ciphertext.partition(SEALED_VALUE_SEPARATOR)
        if not separator or not iv_hex or not payload_hex:
            raise SecretBoxError("Sealed value is not in '<iv>:<ciphertext>' format")

        try:
            iv = bytes.fromhex(iv_hex)
            payload = bytes.fromhex(payload_hex)
        except ValueError as error:
            raise SecretBoxError("Sealed value contains invalid hex") from error

        if len(iv) != IV_BYTES:
            raise SecretBoxError("Sealed value has an invalid initialization vector")

        try:
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(payload) + decryptor.finalize()
            unpadder = padding.PKCS7(AES_BLOCK_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as error:
            raise SecretBoxError("Unable to open sealed value") from error


__all__ = ["AesCbcSecretBox", "SecretBox", "SecretBoxError"]
