import base64

from pydantic import SecretStr

from bookbeauty.core.crypto import (
    STORAGE_MODE_BASE64,
    STORAGE_MODE_EMPTY,
    STORAGE_MODE_ENCRYPTED,
    TokenCodec,
    resolve_token_key,
)

KEY = bytes(range(32))


def test_encrypted_round_trip():
    codec = TokenCodec(KEY)

    stored, mode = codec.encode("access_abc123")

    assert mode == STORAGE_MODE_ENCRYPTED
    assert stored.startswith("v1:")
    assert len(stored.split(":")) == 4
    assert "access_abc123" not in stored
    assert codec.decode(stored) == "access_abc123"


def test_each_encryption_uses_a_fresh_nonce():
    codec = TokenCodec(KEY)

    first, _ = codec.encode("same")
    second, _ = codec.encode("same")

    assert first != second


def test_wrong_key_decodes_to_empty_string():
    stored, _ = TokenCodec(KEY).encode("secret")

    other = TokenCodec(bytes(reversed(KEY)))

    assert other.decode(stored) == ""


def test_tampered_ciphertext_decodes_to_empty_string():
    codec = TokenCodec(KEY)
    stored, _ = codec.encode("secret")
    prefix, nonce, tag, ciphertext = stored.split(":")
    flipped = ("A" if ciphertext[0] != "A" else "B") + ciphertext[1:]

    assert codec.decode(":".join([prefix, nonce, tag, flipped])) == ""


def test_encrypted_value_without_key_decodes_to_empty_string():
    stored, _ = TokenCodec(KEY).encode("secret")

    assert TokenCodec(None).decode(stored) == ""


def test_without_key_tokens_are_base64_encoded():
    codec = TokenCodec(None)

    stored, mode = codec.encode("refresh_xyz")

    assert mode == STORAGE_MODE_BASE64
    assert stored == "b64:" + base64.b64encode(b"refresh_xyz").decode("ascii")
    assert codec.decode(stored) == "refresh_xyz"
    assert codec.encryption_enabled is False


def test_empty_and_legacy_values():
    codec = TokenCodec(KEY)

    assert codec.encode("   ") == ("", STORAGE_MODE_EMPTY)
    assert codec.decode(None) == ""
    assert codec.decode("plain_legacy_token") == "plain_legacy_token"


def test_resolve_token_key_accepts_base64_hex_and_raw():
    assert resolve_token_key(base64.b64encode(KEY).decode("ascii")) == KEY
    assert resolve_token_key(base64.urlsafe_b64encode(KEY).decode("ascii").rstrip("=")) == KEY
    assert resolve_token_key(KEY.hex()) == KEY
    assert resolve_token_key(SecretStr("k" * 32)) == b"k" * 32


def test_resolve_token_key_rejects_wrong_length():
    assert resolve_token_key("") is None
    assert resolve_token_key(None) is None
    assert resolve_token_key("too-short") is None
