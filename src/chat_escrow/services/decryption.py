# src/chat_escrow/services/decryption.py
"""Escrowed decryption of individual messages for privileged operators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from chat_escrow.core.errors import BadRequestError, NotFoundError
from chat_escrow.models import MESSAGE_VERSION_E2EE, MESSAGE_VERSION_PLAINTEXT, Message
from chat_escrow.services.key_envelope import KeyStore, MessageCipher
from chat_escrow.services.media_store import MediaStore, content_type_for, normalize_media_path


@dataclass(frozen=True)
class DecryptedText:
    version: int
    content: str | None
    media_path: str | None
    media_type: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "content": self.content,
            "media_path": self.media_path,
            "media_type": self.media_type,
        }


@dataclass(frozen=True)
class DecryptedMedia:
    data: bytes
    content_type: str


def get_message(db: Session, message_id: str) -> Message:
    """Load a message by id.

    Raises:
        NotFoundError: If the row does not exist.
    """
    message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError("Message not found")
    return message


class DecryptionService:
    """Decrypts message text and media using the escrow key store."""

    def __init__(self, key_store: KeyStore) -> None:
        self.key_store = key_store

    def decrypt_text(self, message: Message) -> DecryptedText:
        """Return the message body, decrypting it when the row is v2.

        Legacy rows are passed through without any crypto.

        Raises:
            BadRequestError: If a v2 row lacks its envelope or IV.
            ConfigurationError: If no escrow key matches the envelope.
            CryptoError: If unwrap or authenticated decryption fails.
        """
        version = message.version or MESSAGE_VERSION_PLAINTEXT
        if version != MESSAGE_VERSION_E2EE:
            return DecryptedText(
                version=version,
                content=message.content,
                media_path=message.media_path,
                media_type=message.media_type,
            )

        cipher = MessageCipher(message, self.key_store)
        cipher.ensure_metadata()
        return DecryptedText(
            version=version,
            content=cipher.decrypt_text(),
            media_path=message.media_path,
            media_type=message.media_type,
        )

    async def decrypt_media(self, message: Message, media_store: MediaStore) -> DecryptedMedia:
        """Download the message's media and decrypt it when the row is v2.

        Raises:
            BadRequestError: If the message has no media, or a v2 row lacks
                its envelope or IV.
            StorageError: If the download fails.
            ConfigurationError: If no escrow key matches the envelope.
            CryptoError: If unwrap or authenticated decryption fails.
        """
        if not message.media_path:
            raise BadRequestError("Message has no media")

        blob = await media_store.download(normalize_media_path(message.media_path))

        output = blob
        if message.version == MESSAGE_VERSION_E2EE:
            cipher = MessageCipher(message, self.key_store)
            cipher.ensure_metadata()
            output = cipher.decrypt_bytes(blob)

        return DecryptedMedia(data=output, content_type=content_type_for(message.media_type))
