# src/chat_escrow/services/key_envelope.py
"""Key envelope parsing, escrow key lookup and per-message decryption."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from cryptography.hazmat.primitives.asymmetric import rsa

from chat_escrow.core.errors import AuthenticationTagError, BadRequestError, ConfigurationError
from chat_escrow.core.settings import Settings, settings
from chat_escrow.models import MESSAGE_VERSION_E2EE, Message
from chat_escrow.services.crypto import (
    KEY_WRAP_ALGORITHM,
    SYMMETRIC_ALGORITHM,
    CryptoService,
    b64decode,
)

logger = logging.getLogger(__name__)

ENCRYPTED_MEDIA_SUFFIX = ".enc"


@dataclass(frozen=True)
class KeyEnvelope:
    """Escrow record for one message key (the `keys_metadata` column)."""

    sender_wrapped_key: str
    admin_wrapped_key: str
    admin_key_id: str
    recipient_wrapped_key: str | None = None
    pending_recipient: bool = False
    algorithm: str = SYMMETRIC_ALGORITHM
    key_wrap_algorithm: str = KEY_WRAP_ALGORITHM

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> KeyEnvelope:
        """Parse a stored envelope.

        A missing `recipient_wrapped_key` is normal while `pending_recipient`
        is set; the admin-wrapped key and its id are always required.

        Raises:
            BadRequestError: If required members are missing or the recorded
                algorithms are not supported.
        """
        admin_wrapped_key = data.get("admin_wrapped_key")
        admin_key_id = data.get("admin_key_id")
        if not admin_wrapped_key or not admin_key_id:
            raise BadRequestError("Missing encryption metadata")

        envelope = cls(
            sender_wrapped_key=str(data.get("sender_wrapped_key") or ""),
            admin_wrapped_key=str(admin_wrapped_key),
            admin_key_id=str(admin_key_id),
            recipient_wrapped_key=data.get("recipient_wrapped_key") or None,
            pending_recipient=bool(data.get("pending_recipient", False)),
            algorithm=str(data.get("algorithm") or SYMMETRIC_ALGORITHM),
            key_wrap_algorithm=str(data.get("key_wrap_algorithm") or KEY_WRAP_ALGORITHM),
        )
        if envelope.algorithm != SYMMETRIC_ALGORITHM:
            raise BadRequestError(f"Unsupported content algorithm: {envelope.algorithm}")
        if envelope.key_wrap_algorithm != KEY_WRAP_ALGORITHM:
            raise BadRequestError(
                f"Unsupported key wrap algorithm: {envelope.key_wrap_algorithm}"
            )
        return envelope


@dataclass
class KeyStore:
    """Configured escrow private keys.

    Keys are addressed by the `admin_key_id` recorded in each envelope. A
    single legacy key, configured before key ids existed, answers any id the
    map does not know so that messages escrowed before rotation stay readable.
    """

    keys: dict[str, rsa.RSAPrivateKey] = field(default_factory=dict)
    legacy_key: rsa.RSAPrivateKey | None = None

    def get(self, key_id: str | None) -> rsa.RSAPrivateKey | None:
        if key_id and key_id in self.keys:
            return self.keys[key_id]
        return self.legacy_key

    def __bool__(self) -> bool:
        return bool(self.keys) or self.legacy_key is not None


def resolve_escrow_key(key_id: str | None, key_store: KeyStore) -> rsa.RSAPrivateKey:
    """Return the escrow private key for `key_id`.

    Raises:
        ConfigurationError: If neither the keyed map nor the legacy key applies.
    """
    private_key = key_store.get(key_id)
    if private_key is None:
        raise ConfigurationError(f"Admin key {key_id} not configured")
    return private_key


def has_encrypted_media(message: Message) -> bool:
    """True when the message's media blob is stored encrypted."""
    return bool(message.media_path) and message.media_path.endswith(ENCRYPTED_MEDIA_SUFFIX)


def requires_decryption(message: Message) -> bool:
    """True iff the message is v2 and has encrypted text or any media."""
    if message.version != MESSAGE_VERSION_E2EE:
        return False
    return bool(message.encrypted_content) or bool(message.media_path)


def load_key_store(config: Settings | None = None) -> KeyStore:
    """Build the key store from ADMIN_KEYS_JSON and ADMIN_PRIVATE_KEY_JWK.

    Unparseable entries are logged and skipped; lookups for them then fail
    with `ConfigurationError` at use time.
    """
    config = config or settings
    store = KeyStore()

    if config.admin_keys_json:
        try:
            raw_keys = json.loads(config.admin_keys_json)
        except json.JSONDecodeError:
            logger.error("Failed to parse ADMIN_KEYS_JSON")
            raw_keys = {}
        if not isinstance(raw_keys, dict):
            logger.error("ADMIN_KEYS_JSON must be an object mapping key ids to keys")
            raw_keys = {}
        for key_id, encoded in raw_keys.items():
            try:
                store.keys[str(key_id)] = CryptoService.load_private_key(encoded)
            except ValueError as err:
                logger.error("Ignoring escrow key %s: %s", key_id, err)

    if config.admin_private_key_jwk:
        try:
            store.legacy_key = CryptoService.load_private_key(config.admin_private_key_jwk)
        except ValueError as err:
            logger.error("Failed to parse ADMIN_PRIVATE_KEY_JWK: %s", err)

    return store


class MessageCipher:
    """Decrypts the text and media of one v2 message.

    The escrow key is resolved and the message key unwrapped at most once,
    on first use, and reused for both text and media.

    Known risk: text and media are sealed with the same key and the same IV.
    AES-GCM nonce reuse across two plaintexts under one key leaks their XOR
    and allows tag forgery. Existing rows depend on it, so decryption keeps
    this layout; moving to per-field nonces needs security sign-off and a
    client change.
    """

    def __init__(self, message: Message, key_store: KeyStore) -> None:
        self.message = message
        self.key_store = key_store
        self._envelope: KeyEnvelope | None = None
        self._raw_key: bytes | None = None
        self._iv: bytes | None = None

    @property
    def envelope(self) -> KeyEnvelope:
        if self._envelope is None:
            metadata = self.message.keys_metadata
            if not metadata or not self.message.encryption_iv:
                raise BadRequestError("Missing encryption metadata")
            self._envelope = KeyEnvelope.from_mapping(metadata)
        return self._envelope

    def ensure_metadata(self) -> None:
        """Fail fast when the row lacks its envelope or IV.

        Raises:
            BadRequestError: If `keys_metadata` or `encryption_iv` is absent.
        """
        _ = self.envelope

    def _key_and_iv(self) -> tuple[bytes, bytes]:
        envelope = self.envelope
        if self._raw_key is None:
            private_key = resolve_escrow_key(envelope.admin_key_id, self.key_store)
            self._raw_key = CryptoService.unwrap_key(envelope.admin_wrapped_key, private_key)
        if self._iv is None:
            try:
                self._iv = b64decode(self.message.encryption_iv or "")
            except ValueError as err:
                raise AuthenticationTagError() from err
        return self._raw_key, self._iv

    @property
    def key_unwrapped(self) -> bool:
        return self._raw_key is not None

    def decrypt_bytes(self, ciphertext: bytes) -> bytes:
        raw_key, iv = self._key_and_iv()
        return CryptoService.decrypt(ciphertext, raw_key, iv)

    def decrypt_text(self) -> str | None:
        """Return the decrypted text body, or None if the message has none."""
        if not self.message.encrypted_content:
            return None
        try:
            ciphertext = b64decode(self.message.encrypted_content)
        except ValueError as err:
            raise AuthenticationTagError() from err
        plaintext = self.decrypt_bytes(ciphertext)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise AuthenticationTagError() from err
