# src/chat_escrow/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .admin import DecryptedTextResponse, MessageIdRequest, MigrateRequest
from .moderation import FlaggedMessage, FlaggedMessageList

__all__ = [
    "DecryptedTextResponse", "MessageIdRequest", "MigrateRequest",
    "FlaggedMessage", "FlaggedMessageList",
]
