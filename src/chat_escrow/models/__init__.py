"""SQLAlchemy models for the chat escrow service."""

from .admin_user import ADMIN_ROLE_PACK_CREATOR, ADMIN_ROLE_SUPER_ADMIN, AdminUser
from .message import (
    MESSAGE_VERSION_E2EE,
    MESSAGE_VERSION_PLAINTEXT,
    MODERATION_STATUS_FLAGGED,
    MODERATION_STATUS_PENDING,
    MODERATION_STATUS_SAFE,
    Message,
)

__all__ = [
    "AdminUser", "ADMIN_ROLE_PACK_CREATOR", "ADMIN_ROLE_SUPER_ADMIN",
    "Message",
    "MESSAGE_VERSION_E2EE", "MESSAGE_VERSION_PLAINTEXT",
    "MODERATION_STATUS_FLAGGED", "MODERATION_STATUS_PENDING", "MODERATION_STATUS_SAFE",
]
