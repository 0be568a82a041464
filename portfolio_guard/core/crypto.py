"""
Symmetric payload codec and digest helpers.

Payloads (session data, download tokens, stored secrets) are sealed with
AES-256-GCM. The encoded form is hex(nonce) + hex(tag) + hex(ciphertext).
"""
import hashlib
import hmac
import json
import logging
import os
import secrets
from functools import lru_cache
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from portfolio_guard.core.config import settings
from portfolio_guard.core.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16


class PayloadCodec:
    """Authenticated encryption of text payloads under a single key."""

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise ConfigurationError(f"Encryption key must be exactly {KEY_LENGTH} bytes")
        self._aead = AESGCM(bytes(key))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        A fresh random nonce is drawn for every call; nonces are never derived
        from the plaintext or a counter.

        Args:
            plaintext: Text to seal

        Returns:
            Hex string: nonce + tag + ciphertext
        """
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return nonce.hex() + tag.hex() + ciphertext.hex()

    def decrypt(self, token: str) -> str:
        """
        Decrypt a string produced by encrypt().

        Args:
            token: Hex string from encrypt()

        Returns:
            Original plaintext

        Raises:
            DecryptionError: If the token is malformed, tampered with, or sealed under another key
        """
        header_len = (NONCE_LENGTH + TAG_LENGTH) * 2
        if not isinstance(token, str) or len(token) < header_len:
            raise DecryptionError("Malformed ciphertext")

        try:
            nonce = bytes.fromhex(token[: NONCE_LENGTH * 2])
            tag = bytes.fromhex(token[NONCE_LENGTH * 2 : header_len])
            ciphertext = bytes.fromhex(token[header_len:])
        except ValueError:
            raise DecryptionError("Malformed ciphertext")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise DecryptionError("Authentication tag mismatch")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted payload is not valid UTF-8")

    def encrypt_json(self, payload: Any) -> str:
        return self.encrypt(json.dumps(payload, separators=(",", ":")))

    def decrypt_json(self, token: str) -> Any:
        """Decrypt and parse a JSON payload; a parse failure counts as a decryption failure."""
        plaintext = self.decrypt(token)
        try:
            return json.loads(plaintext)
        except json.JSONDecodeError:
            raise DecryptionError("Decrypted payload is not valid JSON")


@lru_cache
def get_codec() -> PayloadCodec:
    """Get the process-wide codec built from ENCRYPTION_KEY."""
    return PayloadCodec(settings.encryption_key_bytes)


def generate_secure_key(length: int = 32) -> str:
    """Generate a random key of `length` bytes, hex encoded."""
    return secrets.token_hex(length)


def hash_value(value: str) -> str:
    """SHA-256 hex digest, used for equality checks on high-entropy secrets."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def digests_match(a: str, b: str) -> bool:
    """Constant-time comparison of two digests."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def obfuscate_key(key: str, visible_chars: int = 4) -> str:
    """Show only the first and last few characters of a key."""
    if len(key) <= visible_chars * 2:
        return "*" * len(key)
    return f"{key[:visible_chars]}...{key[-visible_chars:]}"
