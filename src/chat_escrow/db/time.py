# src/chat_escrow/db/time.py
"""Column default helpers for database models."""

import uuid
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def new_uuid() -> str:
    """Return a random UUID4 string for primary keys."""
    return str(uuid.uuid4())
