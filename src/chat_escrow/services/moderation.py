# src/chat_escrow/services/moderation.py
"""Moderation services: heuristic pre-filter, AI review and the flagged queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chat_escrow.core.errors import EscrowError
from chat_escrow.models import (
    MESSAGE_VERSION_E2EE,
    MODERATION_STATUS_FLAGGED,
    MODERATION_STATUS_SAFE,
    Message,
)
from chat_escrow.services import heuristics
from chat_escrow.services.heuristics import HeuristicConfig
from chat_escrow.services.key_envelope import KeyStore, MessageCipher
from chat_escrow.services.media_store import MediaStore, normalize_media_path
from chat_escrow.services.safety_review import (
    DEFAULT_CATEGORY,
    Classification,
    SafetyReviewClient,
    resolve_verdict,
)

logger = logging.getLogger(__name__)

NO_CONTENT_REASON = "No content"
REVIEWABLE_MEDIA_TYPE = "image"


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of one classify call."""

    classification: Classification
    reviewed: bool
    heuristic_reason: heuristics.HeuristicReason | None = None

    def as_response(self) -> dict[str, Any]:
        if self.reviewed:
            return {"success": True, "classification": self.classification.as_dict()}
        return {"status": self.classification.status}


def record_classification(db: Session, message: Message, classification: Classification) -> None:
    """Persist moderation status, reason and category on the message."""
    message.moderation_status = classification.status
    message.flag_reason = classification.reason
    message.category = classification.category
    db.commit()


class ModerationClassifier:
    """Decides whether a message needs AI review and records the verdict.

    Runs as a trusted internal job: no caller authorization happens here.
    """

    def __init__(
        self,
        key_store: KeyStore,
        media_store: MediaStore,
        review_client: SafetyReviewClient,
        heuristic_config: HeuristicConfig,
    ) -> None:
        self.key_store = key_store
        self.media_store = media_store
        self.review_client = review_client
        self.heuristic_config = heuristic_config

    async def classify(self, db: Session, message: Message) -> ClassificationResult:
        """Classify `message` and persist the outcome.

        Raises:
            ConfigurationError: If the AI API key or the escrow key is missing.
            BadRequestError: If a v2 row lacks its envelope or IV.
            CryptoError: If text decryption fails.
            ExternalServiceError: If the review call fails.
        """
        self.review_client.ensure_configured()

        cipher: MessageCipher | None = None
        text = message.content
        if message.version == MESSAGE_VERSION_E2EE:
            cipher = MessageCipher(message, self.key_store)
            cipher.ensure_metadata()
            text = cipher.decrypt_text()

        decision = heuristics.evaluate(text, bool(message.media_path), self.heuristic_config)
        if not decision.needs_review:
            reason = decision.reason.value if self.heuristic_config.record_reason else None
            classification = Classification(MODERATION_STATUS_SAFE, reason, DEFAULT_CATEGORY)
            record_classification(db, message, classification)
            logger.info("Message %s skipped AI review (%s)", message.id, decision.reason.value)
            return ClassificationResult(classification, reviewed=False, heuristic_reason=decision.reason)

        image = await self._load_image(message, cipher)

        if not text and not image:
            classification = Classification(MODERATION_STATUS_SAFE, NO_CONTENT_REASON, DEFAULT_CATEGORY)
            record_classification(db, message, classification)
            return ClassificationResult(classification, reviewed=False)

        verdict = await self.review_client.review(text, image)
        classification = resolve_verdict(verdict)
        record_classification(db, message, classification)
        logger.info("Message %s classified as %s", message.id, classification.status)
        return ClassificationResult(classification, reviewed=True, heuristic_reason=decision.reason)

    async def _load_image(self, message: Message, cipher: MessageCipher | None) -> bytes | None:
        """Fetch (and decrypt) image media for review; None when unavailable.

        Download failures degrade to a text-only review. Decryption failures
        propagate.
        """
        if not message.media_path or message.media_type != REVIEWABLE_MEDIA_TYPE:
            return None
        try:
            blob = await self.media_store.download(normalize_media_path(message.media_path))
        except EscrowError as exc:
            logger.warning("Could not download media for message %s: %s", message.id, exc.detail)
            return None
        if cipher is not None:
            return cipher.decrypt_bytes(blob)
        return blob


def list_flagged(db: Session, *, limit: int = 20, offset: int = 0) -> tuple[list[Message], int]:
    """Return flagged messages newest first, with the total flagged count."""
    total = db.scalar(
        select(func.count()).select_from(Message).where(
            Message.moderation_status == MODERATION_STATUS_FLAGGED
        )
    ) or 0
    messages = db.scalars(
        select(Message)
        .where(Message.moderation_status == MODERATION_STATUS_FLAGGED)
        .order_by(Message.created_at.desc(), Message.id)
        .offset(offset)
        .limit(limit)
    ).all()
    return list(messages), int(total)


def mark_safe(db: Session, message: Message) -> None:
    """Manual override: clear a flag raised by the classifier."""
    message.moderation_status = MODERATION_STATUS_SAFE
    message.flag_reason = None
    db.commit()
