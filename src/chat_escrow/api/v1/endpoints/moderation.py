"""Moderation endpoints: message classification and the flagged queue."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from chat_escrow.api.v1.dependencies import (
    HeuristicConfigDep,
    KeyStoreDep,
    MediaStoreDep,
    OperatorDep,
    SafetyReviewDep,
    SessionDep,
)
from chat_escrow.core.errors import BadRequestError
from chat_escrow.core.settings import settings
from chat_escrow.schemas.admin import MessageIdRequest
from chat_escrow.schemas.moderation import FlaggedMessage, FlaggedMessageList
from chat_escrow.services.decryption import get_message
from chat_escrow.services.moderation import ModerationClassifier, list_flagged, mark_safe

router = APIRouter(prefix="/moderation", tags=["moderation"])


@router.post("/classify")
async def classify_message(
    db: SessionDep,
    key_store: KeyStoreDep,
    media_store: MediaStoreDep,
    review_client: SafetyReviewDep,
    heuristic_config: HeuristicConfigDep,
    payload: MessageIdRequest | None = None,
) -> dict[str, Any]:
    """Classify a message, skipping the AI call when heuristics allow it.

    Invoked by trusted internal jobs; callers are not authorized here.
    """
    if not settings.classifier_enabled:
        return {"message": "Classifier disabled"}

    message_id = payload.message_id if payload else None
    if not message_id:
        raise BadRequestError("Missing messageId")

    review_client.ensure_configured()
    message = get_message(db, message_id)
    classifier = ModerationClassifier(key_store, media_store, review_client, heuristic_config)
    result = await classifier.classify(db, message)
    return result.as_response()


@router.get("/flagged", response_model=FlaggedMessageList)
async def get_flagged_messages(
    operator: OperatorDep,
    db: SessionDep,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> FlaggedMessageList:
    """List flagged messages, newest first."""
    messages, total = list_flagged(db, limit=limit, offset=offset)
    return FlaggedMessageList(
        data=[FlaggedMessage.model_validate(message) for message in messages],
        count=total,
    )


@router.post("/mark-safe")
async def mark_message_safe(
    operator: OperatorDep,
    db: SessionDep,
    payload: MessageIdRequest | None = None,
) -> dict[str, bool]:
    message_id = payload.message_id if payload else None
    if not message_id:
        raise BadRequestError("Missing messageId")
    mark_safe(db, get_message(db, message_id))
    return {"success": True}
