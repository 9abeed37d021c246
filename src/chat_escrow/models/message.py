# src/chat_escrow/models/message.py
"""Models describing chat messages between paired users."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from chat_escrow.db.session import Base
from chat_escrow.db.time import new_uuid, utcnow

MESSAGE_VERSION_PLAINTEXT = 1
MESSAGE_VERSION_E2EE = 2

MODERATION_STATUS_PENDING = "pending"
MODERATION_STATUS_SAFE = "safe"
MODERATION_STATUS_FLAGGED = "flagged"


class Message(Base):
    """A chat message, stored either as plaintext (v1) or encrypted with escrow (v2).

    Version 2 rows carry base64 `encrypted_content`, a base64 `encryption_iv`
    and a `keys_metadata` envelope holding the message key wrapped for the
    sender, the recipient and the escrow (admin) key. Media blobs of v2 rows
    live in the media store under a path ending in `.enc`.
    """

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    match_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=MESSAGE_VERSION_PLAINTEXT, index=True
    )
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    encrypted_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    encryption_iv: Mapped[str | None] = mapped_column(Text, nullable=True)
    keys_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Storage key or full URL; see services.media_store.normalize_media_path.
    media_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "image" | "video" | None
    media_type: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Written only by the moderation classifier (and manual overrides).
    moderation_status: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    flag_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    @property
    def is_encrypted(self) -> bool:
        return self.version == MESSAGE_VERSION_E2EE
