# tests/conftest.py
from __future__ import annotations

import json
import os
from collections.abc import Callable, Generator, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from itertools import count
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-escrow-tests")

from chat_escrow.api.v1.dependencies import (  # noqa: E402
    get_heuristic_config,
    get_key_store,
    get_media_store,
    get_safety_review_client,
)
from chat_escrow.core.errors import MediaNotFoundError, StorageError  # noqa: E402
from chat_escrow.core.security import create_access_token  # noqa: E402
from chat_escrow.db.session import Base  # noqa: E402
from chat_escrow.db.session import get_db as app_get_session  # noqa: E402
from chat_escrow.main import app as fastapi_app  # noqa: E402
from chat_escrow.models import (  # noqa: E402
    ADMIN_ROLE_PACK_CREATOR,
    ADMIN_ROLE_SUPER_ADMIN,
    MESSAGE_VERSION_E2EE,
    MESSAGE_VERSION_PLAINTEXT,
    AdminUser,
    Message,
)
from chat_escrow.services.crypto import CryptoService, b64encode  # noqa: E402
from chat_escrow.services.heuristics import HeuristicConfig  # noqa: E402
from chat_escrow.services.key_envelope import KeyStore  # noqa: E402
from chat_escrow.services.media_store import MediaStore  # noqa: E402
from chat_escrow.services.safety_review import SafetyReviewClient  # noqa: E402

TEST_DB_URL = "sqlite://"
ESCROW_KEY_ID = "k1"

_MESSAGE_CLOCK = count(1)
_BASE_TIME = datetime(2025, 1, 1, tzinfo=UTC)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    # Services commit and roll back on their own, so tests run against real
    # transactions and tables are emptied afterwards.
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Escrow keys and encrypted messages
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def escrow_private_key() -> rsa.RSAPrivateKey:
    return CryptoService.generate_keypair()


@pytest.fixture(scope="session")
def other_private_key() -> rsa.RSAPrivateKey:
    """A key pair that is not configured as an escrow key."""
    return CryptoService.generate_keypair()


@pytest.fixture()
def key_store(escrow_private_key: rsa.RSAPrivateKey) -> KeyStore:
    return KeyStore(keys={ESCROW_KEY_ID: escrow_private_key})


class FakeMediaStore(MediaStore):
    """In-memory media store that records every call."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_remove = False
        self.closed = False

    async def download(self, path: str) -> bytes:
        self.calls.append(("download", path))
        if path not in self.blobs:
            raise MediaNotFoundError(f"Media not found: {path}")
        return self.blobs[path]

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        self.calls.append(("upload", path))
        self.blobs[path] = data
        self.content_types[path] = content_type

    async def remove(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.calls.append(("remove", path))
            if self.fail_remove:
                raise StorageError("Delete failed")
            self.blobs.pop(path, None)

    async def exists(self, path: str) -> bool:
        self.calls.append(("exists", path))
        return path in self.blobs

    async def close(self) -> None:
        self.closed = True

    def writes(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in ("upload", "remove")]


@pytest.fixture()
def media_store() -> FakeMediaStore:
    return FakeMediaStore()


@dataclass
class ReviewServer:
    """Stand-in for the chat completions endpoint behind `httpx.MockTransport`."""

    reply: str = '{"status": "safe", "reason": null, "category": "Neutral"}'
    status_code: int = 200
    requests: list[dict[str, Any]] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream failure")
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": self.reply}}]},
        )


@pytest.fixture()
def review_server() -> ReviewServer:
    return ReviewServer()


@pytest.fixture()
def review_client(review_server: ReviewServer) -> SafetyReviewClient:
    return SafetyReviewClient(
        "test-openrouter-key",
        model="openai/gpt-4o",
        system_prompt="Classify this message.",
        base_url="https://openrouter.test/api/v1",
        transport=httpx.MockTransport(review_server.handler),
    )


@pytest.fixture()
def heuristic_config() -> HeuristicConfig:
    return HeuristicConfig(enabled=True)


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    key_store: KeyStore,
    media_store: FakeMediaStore,
    review_client: SafetyReviewClient,
    heuristic_config: HeuristicConfig,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    overrides: dict[Callable[..., Any], Callable[..., Any]] = {
        app_get_session: _get_session_override,
        get_key_store: lambda: key_store,
        get_media_store: lambda: media_store,
        get_safety_review_client: lambda: review_client,
        get_heuristic_config: lambda: heuristic_config,
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


def _next_created_at() -> datetime:
    return _BASE_TIME + timedelta(seconds=next(_MESSAGE_CLOCK))


@pytest.fixture()
def make_plain_message(db_session: Session) -> Callable[..., Message]:
    """Persist a legacy (v1) plaintext message."""

    def _make(
        content: str | None = "hello there",
        *,
        media_path: str | None = None,
        media_type: str | None = None,
        **fields: Any,
    ) -> Message:
        message = Message(
            version=MESSAGE_VERSION_PLAINTEXT,
            content=content,
            media_path=media_path,
            media_type=media_type,
            created_at=_next_created_at(),
            **fields,
        )
        db_session.add(message)
        db_session.commit()
        return message

    return _make


@pytest.fixture()
def make_v2_message(
    db_session: Session,
    escrow_private_key: rsa.RSAPrivateKey,
    media_store: FakeMediaStore,
) -> Callable[..., Message]:
    """Persist an escrowed (v2) message the way a client would write it.

    Text and media are sealed with one message key and one IV. The message
    key is wrapped for `wrap_for` (the configured escrow key by default).
    """

    def _make(
        text: str | None = "secret text",
        *,
        media: bytes | None = None,
        media_path: str | None = None,
        media_type: str | None = "image",
        key_id: str = ESCROW_KEY_ID,
        wrap_for: rsa.RSAPrivateKey | None = None,
        **fields: Any,
    ) -> Message:
        raw_key = CryptoService.generate_key()
        iv = CryptoService.generate_iv()
        recipient = wrap_for or escrow_private_key

        message = Message(
            version=MESSAGE_VERSION_E2EE,
            content=None,
            encrypted_content=(
                b64encode(CryptoService.encrypt(text.encode(), raw_key, iv)) if text is not None else None
            ),
            encryption_iv=b64encode(iv),
            keys_metadata={
                "sender_wrapped_key": CryptoService.wrap_key(raw_key, recipient.public_key()),
                "recipient_wrapped_key": CryptoService.wrap_key(raw_key, recipient.public_key()),
                "admin_wrapped_key": CryptoService.wrap_key(raw_key, recipient.public_key()),
                "admin_key_id": key_id,
                "algorithm": "AES-256-GCM",
                "key_wrap_algorithm": "RSA-OAEP-SHA256",
            },
            created_at=_next_created_at(),
            **fields,
        )
        if media is not None:
            message.media_path = media_path or f"match-1/{next(_MESSAGE_CLOCK)}.jpg.enc"
            message.media_type = media_type
            media_store.blobs[message.media_path] = CryptoService.encrypt(media, raw_key, iv)

        db_session.add(message)
        db_session.commit()
        return message

    return _make


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture()
def super_admin(db_session: Session) -> AdminUser:
    admin = AdminUser(user_id="00000000-0000-0000-0000-00000000a001", role=ADMIN_ROLE_SUPER_ADMIN)
    db_session.add(admin)
    db_session.commit()
    return admin


@pytest.fixture()
def pack_creator(db_session: Session) -> AdminUser:
    admin = AdminUser(user_id="00000000-0000-0000-0000-00000000a002", role=ADMIN_ROLE_PACK_CREATOR)
    db_session.add(admin)
    db_session.commit()
    return admin


@pytest.fixture()
def admin_headers(super_admin: AdminUser) -> dict[str, str]:
    """Authorization headers for a top-tier operator."""
    return _auth_headers(super_admin.user_id)


@pytest.fixture()
def pack_creator_headers(pack_creator: AdminUser) -> dict[str, str]:
    return _auth_headers(pack_creator.user_id)


@pytest.fixture()
def stranger_headers() -> dict[str, str]:
    """Valid token for an identity with no admin row."""
    return _auth_headers("00000000-0000-0000-0000-00000000beef")
