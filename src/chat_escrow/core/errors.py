"""Domain exceptions and their HTTP mapping.

Services raise these; the API layer turns them into JSON responses. Every
5xx error is reported to the caller with the same generic message so that
crypto, storage and configuration failures cannot be told apart from the
outside.
"""

from __future__ import annotations

from fastapi import status

GENERIC_SERVER_ERROR = "Internal server error"


class EscrowError(Exception):
    """Base exception for every failure this service reports to a caller."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = GENERIC_SERVER_ERROR

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message

    @property
    def response_detail(self) -> str:
        """Message safe to return to the caller."""
        if self.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            return GENERIC_SERVER_ERROR
        return self.detail


class AuthenticationError(EscrowError):
    """Missing, malformed or unverifiable bearer credential."""

    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Unauthorized"


class AuthorizationError(EscrowError):
    """Valid identity without the role the operation requires."""

    status_code = status.HTTP_403_FORBIDDEN
    public_message = "Forbidden"


class NotFoundError(EscrowError):
    status_code = status.HTTP_404_NOT_FOUND
    public_message = "Not found"


class BadRequestError(EscrowError):
    """Missing request field or an encrypted row with inconsistent metadata."""

    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Bad request"


class ConfigurationError(EscrowError):
    """Escrow key or external API key not configured."""


class CryptoError(EscrowError):
    """Base class for unwrap and authenticated-decrypt failures."""

    public_message = "Decryption failed"


class KeyUnwrapError(CryptoError):
    """The escrow private key could not unwrap the message key."""


class AuthenticationTagError(CryptoError):
    """AES-GCM tag verification failed (tampered data or wrong key/iv)."""


class StorageError(EscrowError):
    """Blob store download, upload or delete failure."""

    public_message = "Storage operation failed"


class MediaNotFoundError(StorageError):
    """The requested blob does not exist in the media store."""


class ExternalServiceError(EscrowError):
    """The external safety-review service failed or replied with nothing usable."""

    public_message = "External service error"


class PerItemError(EscrowError):
    """Failure of a single migration item; recorded and never propagated."""

    def __init__(self, message_id: str, cause: Exception) -> None:
        detail = cause.detail if isinstance(cause, EscrowError) else str(cause)
        super().__init__(detail)
        self.message_id = message_id
        self.cause = cause

    def as_dict(self) -> dict[str, str]:
        """Return the `{id, error}` record reported in migration results."""
        return {"id": self.message_id, "error": self.detail}
