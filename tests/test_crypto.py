"""
Tests for the payload codec and digest helpers.
"""
import pytest

from portfolio_guard.core.crypto import (
    NONCE_LENGTH,
    TAG_LENGTH,
    PayloadCodec,
    digests_match,
    generate_secure_key,
    hash_value,
    obfuscate_key,
)
from portfolio_guard.core.errors import ConfigurationError, DecryptionError

KEY = bytes(range(32))
OTHER_KEY = bytes(reversed(range(32)))


@pytest.fixture
def codec():
    return PayloadCodec(KEY)


def test_round_trip(codec):
    payload = '{"user":{"id":"1","username":"admin","role":"admin"},"expiresAt":"2030-01-01T00:00:00Z"}'
    assert codec.decrypt(codec.encrypt(payload)) == payload


def test_round_trip_unicode_and_empty(codec):
    assert codec.decrypt(codec.encrypt("")) == ""
    assert codec.decrypt(codec.encrypt("résumé ✓")) == "résumé ✓"


def test_encoded_layout(codec):
    """Output is hex(nonce) + hex(tag) + hex(ciphertext)."""
    token = codec.encrypt("hello")
    assert len(token) == (NONCE_LENGTH + TAG_LENGTH + len("hello")) * 2
    bytes.fromhex(token)


def test_fresh_nonce_per_call(codec):
    """Encrypting the same plaintext twice never reuses a nonce."""
    tokens = [codec.encrypt("same plaintext") for _ in range(50)]
    nonces = {t[: NONCE_LENGTH * 2] for t in tokens}
    assert len(nonces) == len(tokens)
    assert len(set(tokens)) == len(tokens)


@pytest.mark.parametrize("position", [0, NONCE_LENGTH * 2 + 1, (NONCE_LENGTH + TAG_LENGTH) * 2 + 3])
def test_single_bit_flip_is_rejected(codec, position):
    """Flipping one bit in the nonce, tag or ciphertext fails authentication."""
    token = codec.encrypt("sensitive payload")
    raw = bytearray.fromhex(token)
    raw[position // 2] ^= 0x01
    with pytest.raises(DecryptionError):
        codec.decrypt(raw.hex())


def test_wrong_key_is_rejected(codec):
    token = codec.encrypt("secret")
    with pytest.raises(DecryptionError):
        PayloadCodec(OTHER_KEY).decrypt(token)


@pytest.mark.parametrize("token", ["", "abc", "zz" * 40, None])
def test_malformed_input_is_rejected(codec, token):
    with pytest.raises(DecryptionError):
        codec.decrypt(token)


@pytest.mark.parametrize("length", [0, 16, 31, 33, 64])
def test_key_must_be_exactly_32_bytes(length):
    with pytest.raises(ConfigurationError):
        PayloadCodec(b"k" * length)


def test_json_helpers(codec):
    payload = {"exp": 123, "url": "https://example.com/file.pdf"}
    assert codec.decrypt_json(codec.encrypt_json(payload)) == payload


def test_decrypt_json_rejects_non_json(codec):
    with pytest.raises(DecryptionError):
        codec.decrypt_json(codec.encrypt("not json"))


def test_digest_helpers():
    key = generate_secure_key()
    assert len(key) == 64
    assert generate_secure_key() != key
    assert hash_value(key) == hash_value(key)
    assert digests_match(hash_value(key), hash_value(key))
    assert not digests_match(hash_value(key), hash_value(key + "x"))


def test_obfuscate_key():
    assert obfuscate_key("abcdefghijkl") == "abcd...ijkl"
    assert obfuscate_key("short") == "*****"
