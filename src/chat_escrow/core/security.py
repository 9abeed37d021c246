"""Bearer credential helpers built on python-jose."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from chat_escrow.core.errors import AuthenticationError
from chat_escrow.core.settings import settings

DEFAULT_TOKEN_TTL = timedelta(hours=1)


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    """Issue a signed token for `subject`.

    Session issuance belongs to the identity provider; this exists for local
    tooling and tests that need a token the gate will accept.
    """
    expire = datetime.now(UTC) + (expires_delta or DEFAULT_TOKEN_TTL)
    claims: dict[str, object] = {"sub": subject, "exp": expire}
    if settings.jwt_audience:
        claims["aud"] = settings.jwt_audience
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_subject(token: str) -> str:
    """Verify `token` and return its subject claim.

    Raises:
        AuthenticationError: If the token is invalid, expired or has no subject.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except JWTError as err:
        raise AuthenticationError("Invalid token") from err

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AuthenticationError("Invalid token")
    return subject
