# src/chat_escrow/api/v1/endpoints/admin.py
"""Privileged operator endpoints: escrowed decryption and plaintext migration."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Response

from chat_escrow.api.v1.dependencies import (
    KeyStoreDep,
    MediaStoreDep,
    OperatorDep,
    SessionDep,
)
from chat_escrow.core.errors import BadRequestError
from chat_escrow.core.settings import settings
from chat_escrow.schemas.admin import DecryptedTextResponse, MessageIdRequest, MigrateRequest
from chat_escrow.services.decryption import DecryptionService, get_message
from chat_escrow.services.migration import MigrationEngine

router = APIRouter(prefix="/admin", tags=["admin"])

NO_STORE = {"Cache-Control": "no-store"}


def _require_message_id(payload: MessageIdRequest | None) -> str:
    message_id = payload.message_id if payload else None
    if not message_id:
        raise BadRequestError("Missing messageId")
    return message_id


@router.post("/decrypt-text", response_model=DecryptedTextResponse)
async def decrypt_text(
    operator: OperatorDep,
    db: SessionDep,
    key_store: KeyStoreDep,
    response: Response,
    payload: MessageIdRequest | None = None,
) -> dict[str, Any]:
    """Return a message's text, decrypting it with the escrow key when encrypted."""
    message = get_message(db, _require_message_id(payload))
    response.headers.update(NO_STORE)
    return DecryptionService(key_store).decrypt_text(message).as_dict()


@router.post("/decrypt-media", response_class=Response)
async def decrypt_media(
    operator: OperatorDep,
    db: SessionDep,
    key_store: KeyStoreDep,
    media_store: MediaStoreDep,
    payload: MessageIdRequest | None = None,
) -> Response:
    """Stream a message's media, decrypted when the message is encrypted."""
    message = get_message(db, _require_message_id(payload))
    media = await DecryptionService(key_store).decrypt_media(message, media_store)
    return Response(content=media.data, media_type=media.content_type, headers=NO_STORE)


@router.post("/migrate")
async def migrate(
    operator: OperatorDep,
    db: SessionDep,
    key_store: KeyStoreDep,
    media_store: MediaStoreDep,
    response: Response,
    payload: MigrateRequest | None = None,
) -> dict[str, Any]:
    """Migrate one batch of encrypted messages to plaintext."""
    options = payload or MigrateRequest()
    engine = MigrationEngine(
        key_store,
        media_store,
        default_batch_size=settings.migration_default_batch_size,
        max_batch_size=settings.migration_max_batch_size,
    )
    report = await engine.run(db, dry_run=options.dry_run, batch_size=options.batch_size)
    response.headers.update(NO_STORE)
    return report.as_response()
