"""Shared API dependencies for authorization and injected collaborators."""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from chat_escrow.core.settings import settings
from chat_escrow.db.session import get_db
from chat_escrow.services.authorization import OperatorIdentity, authorize
from chat_escrow.services.heuristics import HeuristicConfig
from chat_escrow.services.key_envelope import KeyStore, load_key_store
from chat_escrow.services.media_store import MediaStore, build_media_store
from chat_escrow.services.safety_review import SafetyReviewClient, build_safety_review_client

# Missing or non-bearer headers yield None so the gate can answer 401 itself.
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_current_operator(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: SessionDep,
) -> OperatorIdentity:
    """Resolve the bearer credential to a super-admin operator.

    Raises:
        AuthenticationError: If the token is missing or invalid.
        AuthorizationError: If the identity is not a super admin.
    """
    token = credentials.credentials if credentials else None
    return authorize(token, db)


@lru_cache(maxsize=1)
def get_key_store() -> KeyStore:
    """Return the escrow key store parsed once from settings."""
    return load_key_store(settings)


async def get_media_store() -> AsyncGenerator[MediaStore, None]:
    """Yield a media store client for the duration of one request."""
    store = build_media_store(settings)
    try:
        yield store
    finally:
        await store.close()


def get_safety_review_client() -> SafetyReviewClient:
    return build_safety_review_client(settings)


def get_heuristic_config() -> HeuristicConfig:
    return HeuristicConfig.from_settings(settings)


# Type aliases for dependencies
OperatorDep = Annotated[OperatorIdentity, Depends(get_current_operator)]
KeyStoreDep = Annotated[KeyStore, Depends(get_key_store)]
MediaStoreDep = Annotated[MediaStore, Depends(get_media_store)]
SafetyReviewDep = Annotated[SafetyReviewClient, Depends(get_safety_review_client)]
HeuristicConfigDep = Annotated[HeuristicConfig, Depends(get_heuristic_config)]
