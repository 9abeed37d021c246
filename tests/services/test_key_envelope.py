import json

import pytest

from chat_escrow.core.errors import (
    AuthenticationTagError,
    BadRequestError,
    ConfigurationError,
    KeyUnwrapError,
)
from chat_escrow.core.settings import Settings
from chat_escrow.services.crypto import CryptoService
from chat_escrow.services.key_envelope import (
    KeyEnvelope,
    KeyStore,
    MessageCipher,
    load_key_store,
    requires_decryption,
    resolve_escrow_key,
)


def _settings(**values) -> Settings:
    return Settings(SECRET_KEY="test", **values)


def test_envelope_requires_admin_members():
    with pytest.raises(BadRequestError):
        KeyEnvelope.from_mapping({"sender_wrapped_key": "abc", "admin_key_id": "k1"})
    with pytest.raises(BadRequestError):
        KeyEnvelope.from_mapping({"admin_wrapped_key": "abc"})


def test_envelope_allows_pending_recipient():
    envelope = KeyEnvelope.from_mapping(
        {
            "sender_wrapped_key": "s",
            "admin_wrapped_key": "a",
            "admin_key_id": "k1",
            "pending_recipient": True,
        }
    )

    assert envelope.pending_recipient is True
    assert envelope.recipient_wrapped_key is None


@pytest.mark.parametrize(
    "overrides",
    [{"algorithm": "AES-128-CBC"}, {"key_wrap_algorithm": "RSA-PKCS1"}],
)
def test_envelope_rejects_unsupported_algorithms(overrides):
    data = {"admin_wrapped_key": "a", "admin_key_id": "k1", **overrides}

    with pytest.raises(BadRequestError):
        KeyEnvelope.from_mapping(data)


def test_key_store_prefers_keyed_entry_and_falls_back_to_legacy(escrow_private_key, other_private_key):
    store = KeyStore(keys={"k1": escrow_private_key}, legacy_key=other_private_key)

    assert store.get("k1") is escrow_private_key
    assert store.get("unknown") is other_private_key
    assert resolve_escrow_key(None, store) is other_private_key


def test_resolve_escrow_key_without_match_is_configuration_error(escrow_private_key):
    store = KeyStore(keys={"k1": escrow_private_key})

    with pytest.raises(ConfigurationError):
        resolve_escrow_key("k2", store)


def test_load_key_store_skips_malformed_entries(escrow_private_key):
    jwk = CryptoService.private_key_to_jwk(escrow_private_key)
    config = _settings(
        ADMIN_KEYS_JSON=json.dumps({"k1": jwk, "broken": {"kty": "RSA"}}),
        ADMIN_PRIVATE_KEY_JWK="not a key",
    )

    store = load_key_store(config)

    assert set(store.keys) == {"k1"}
    assert store.legacy_key is None


def test_load_key_store_accepts_legacy_key(escrow_private_key):
    config = _settings(ADMIN_PRIVATE_KEY_JWK=json.dumps(CryptoService.private_key_to_jwk(escrow_private_key)))

    store = load_key_store(config)

    assert not store.keys
    assert store.get("anything") is not None


def test_load_key_store_tolerates_invalid_json():
    store = load_key_store(_settings(ADMIN_KEYS_JSON="{oops"))

    assert not store


def test_cipher_decrypts_text_and_media_with_one_unwrap(make_v2_message, key_store, media_store, mocker):
    message = make_v2_message("hello", media=b"\x89PNG-bytes")
    unwrap = mocker.spy(CryptoService, "unwrap_key")
    cipher = MessageCipher(message, key_store)

    assert cipher.decrypt_text() == "hello"
    assert cipher.decrypt_bytes(media_store.blobs[message.media_path]) == b"\x89PNG-bytes"
    assert unwrap.call_count == 1


def test_cipher_requires_metadata(make_v2_message, key_store, db_session):
    message = make_v2_message("hello")
    message.keys_metadata = None
    db_session.commit()

    with pytest.raises(BadRequestError):
        MessageCipher(message, key_store).ensure_metadata()


def test_cipher_requires_iv(make_v2_message, key_store, db_session):
    message = make_v2_message("hello")
    message.encryption_iv = None
    db_session.commit()

    with pytest.raises(BadRequestError):
        MessageCipher(message, key_store).decrypt_text()


def test_cipher_with_non_escrow_wrapping_fails_to_unwrap(make_v2_message, key_store, other_private_key):
    message = make_v2_message("hello", wrap_for=other_private_key)

    with pytest.raises(KeyUnwrapError):
        MessageCipher(message, key_store).decrypt_text()


def test_cipher_rejects_tampered_text(make_v2_message, key_store, db_session):
    message = make_v2_message("hello")
    content = bytearray(message.encrypted_content.encode())
    # flip a character in the middle of the base64 body
    content[4] = ord("A") if content[4] != ord("A") else ord("B")
    message.encrypted_content = content.decode()
    db_session.commit()

    with pytest.raises(AuthenticationTagError):
        MessageCipher(message, key_store).decrypt_text()


def test_requires_decryption(make_v2_message, make_plain_message):
    assert requires_decryption(make_v2_message("hello")) is True
    assert requires_decryption(make_v2_message(None, media=b"img")) is True
    assert requires_decryption(make_v2_message(None)) is False
    assert requires_decryption(make_plain_message("plain")) is False
