# src/chat_escrow/services/migration.py
"""Batch migration of encrypted (v2) messages back to plaintext (v1).

Each call migrates at most one batch, oldest messages first, and reports how
many v2 rows remain so the caller can invoke it again until none are left.

Messages are processed one at a time. A failure is recorded against that
message and the batch moves on; the row stays at v2 and the whole
per-message sequence is retried on the next call. Blob store and database
writes are not transactional together: media is uploaded to its plaintext
path, then the encrypted blob is deleted, then the row is updated. A crash
between steps leaves the row at v2 with the plaintext blob possibly already
in place, which the retry tolerates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chat_escrow.core.errors import BadRequestError, MediaNotFoundError, PerItemError
from chat_escrow.models import MESSAGE_VERSION_E2EE, MESSAGE_VERSION_PLAINTEXT, Message
from chat_escrow.services.key_envelope import (
    ENCRYPTED_MEDIA_SUFFIX,
    KeyStore,
    MessageCipher,
    has_encrypted_media,
)
from chat_escrow.services.media_store import MediaStore, content_type_for, normalize_media_path

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 100


@dataclass
class MigrationStats:
    total: int = 0
    text: int = 0
    media: int = 0
    errors: int = 0
    remaining: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "text": self.text,
            "media": self.media,
            "errors": self.errors,
            "remaining": self.remaining,
        }


@dataclass
class MigrationReport:
    dry_run: bool
    stats: MigrationStats = field(default_factory=MigrationStats)
    errors: list[PerItemError] = field(default_factory=list)

    @property
    def message(self) -> str:
        stats = self.stats
        if stats.total == 0:
            return "No v2 messages to migrate"
        migrated = stats.total - stats.errors
        if stats.remaining > 0:
            return (
                f"Migrated {migrated}/{stats.total} messages. "
                f"{stats.remaining} remaining - run again to continue."
            )
        return f"Migration complete. {migrated}/{stats.total} messages migrated."

    @property
    def needs_another_run(self) -> bool:
        return self.stats.remaining > 0

    def as_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": True,
            "dryRun": self.dry_run,
            "stats": self.stats.as_dict(),
            "message": self.message,
        }
        if self.errors:
            body["errors"] = [error.as_dict() for error in self.errors]
        return body


def clamp_batch_size(batch_size: int | None, default: int = DEFAULT_BATCH_SIZE, cap: int = MAX_BATCH_SIZE) -> int:
    """Apply the default and the hard cap; non-positive values mean default."""
    if not batch_size or batch_size <= 0:
        batch_size = default
    return min(batch_size, cap)


def plaintext_media_path(encrypted_path: str) -> str:
    """Strip the encryption suffix from a media path."""
    if encrypted_path.endswith(ENCRYPTED_MEDIA_SUFFIX):
        return encrypted_path[: -len(ENCRYPTED_MEDIA_SUFFIX)]
    return encrypted_path


@dataclass
class _ItemOutcome:
    content: str | None
    media_path: str | None
    text_decrypted: bool = False
    media_decrypted: bool = False


class MigrationEngine:
    """Permanently converts v2 messages to v1 plaintext rows."""

    def __init__(
        self,
        key_store: KeyStore,
        media_store: MediaStore,
        *,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        max_batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        self.key_store = key_store
        self.media_store = media_store
        self.default_batch_size = default_batch_size
        self.max_batch_size = max_batch_size

    def fetch_batch(self, db: Session, batch_size: int) -> list[Message]:
        return list(
            db.scalars(
                select(Message)
                .where(Message.version == MESSAGE_VERSION_E2EE)
                .order_by(Message.created_at.asc(), Message.id.asc())
                .limit(batch_size)
            ).all()
        )

    def count_remaining(self, db: Session) -> int:
        return int(
            db.scalar(
                select(func.count()).select_from(Message).where(
                    Message.version == MESSAGE_VERSION_E2EE
                )
            )
            or 0
        )

    async def run(self, db: Session, *, dry_run: bool = False, batch_size: int | None = None) -> MigrationReport:
        """Migrate one batch and return aggregate stats.

        Per-message failures are collected in the report and never raised.
        """
        size = clamp_batch_size(batch_size, self.default_batch_size, self.max_batch_size)
        logger.info("Starting E2EE migration (dry_run=%s, batch_size=%d)", dry_run, size)

        report = MigrationReport(dry_run=dry_run)
        messages = self.fetch_batch(db, size)
        if not messages:
            return report

        total_remaining = self.count_remaining(db)
        report.stats.total = len(messages)
        report.stats.remaining = max(total_remaining - len(messages), 0)

        for message in messages:
            message_id = message.id
            try:
                outcome = await self._migrate_one(db, message, dry_run=dry_run)
            except Exception as exc:
                db.rollback()
                error = PerItemError(message_id, exc)
                logger.error("Failed to migrate message %s: %s", message_id, error.detail)
                report.errors.append(error)
                report.stats.errors += 1
                continue

            if outcome.text_decrypted:
                report.stats.text += 1
            if outcome.media_decrypted:
                report.stats.media += 1
            logger.info(
                "%sMigrated message %s (text=%s, media=%s)",
                "[DRY RUN] " if dry_run else "",
                message_id,
                outcome.text_decrypted,
                outcome.media_decrypted,
            )

        logger.info("%sE2EE migration finished: %s", "[DRY RUN] " if dry_run else "", report.message)
        return report

    async def _migrate_one(self, db: Session, message: Message, *, dry_run: bool) -> _ItemOutcome:
        text_encrypted = bool(message.encrypted_content)
        media_encrypted = has_encrypted_media(message)
        outcome = _ItemOutcome(content=message.content, media_path=message.media_path)

        cipher = MessageCipher(message, self.key_store)
        if (text_encrypted or media_encrypted) and not message.keys_metadata:
            raise BadRequestError("Missing key envelope for encrypted message")
        if (text_encrypted or media_encrypted) and not message.encryption_iv:
            raise BadRequestError("Missing encryption_iv for encrypted message")

        if text_encrypted:
            outcome.content = cipher.decrypt_text()
            outcome.text_decrypted = True

        if media_encrypted:
            outcome.media_path = await self._migrate_media(message, cipher, outcome, dry_run=dry_run)

        if not dry_run:
            message.version = MESSAGE_VERSION_PLAINTEXT
            message.content = outcome.content
            message.media_path = outcome.media_path
            message.encrypted_content = None
            message.encryption_iv = None
            message.keys_metadata = None
            db.commit()

        return outcome

    async def _migrate_media(
        self,
        message: Message,
        cipher: MessageCipher,
        outcome: _ItemOutcome,
        *,
        dry_run: bool,
    ) -> str:
        """Decrypt and re-store one media blob; returns the new stored path.

        The plaintext blob is uploaded before the encrypted one is deleted.
        If the encrypted blob is gone but the plaintext one exists, an earlier
        attempt got past the delete and only the row update is left to do.
        """
        stored_path = message.media_path or ""
        old_key = normalize_media_path(stored_path)
        new_key = plaintext_media_path(old_key)
        new_stored_path = plaintext_media_path(stored_path)

        try:
            encrypted = await self.media_store.download(old_key)
        except MediaNotFoundError:
            if await self.media_store.exists(new_key):
                logger.info("Media for message %s already re-stored at %s", message.id, new_key)
                return new_stored_path
            raise

        decrypted = cipher.decrypt_bytes(encrypted)
        outcome.media_decrypted = True

        if not dry_run:
            await self.media_store.upload(new_key, decrypted, content_type_for(message.media_type))
            await self.media_store.remove([old_key])

        return new_stored_path
