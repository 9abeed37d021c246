# src/chat_escrow/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .admin import router as admin_router
from .moderation import router as moderation_router

__all__ = [
    "admin_router",
    "moderation_router",
]
