# src/chat_escrow/schemas/moderation.py
"""Moderation-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class FlaggedMessage(BaseModel):
    """Flagged message metadata. Never carries ciphertext or key material."""

    id: str
    user_id: str | None
    match_id: str | None
    version: int
    media_type: str | None
    moderation_status: str | None
    flag_reason: str | None
    category: str | None
    created_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class FlaggedMessageList(BaseModel):
    data: list[FlaggedMessage]
    count: int
