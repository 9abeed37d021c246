# src/chat_escrow/services/authorization.py
"""Operator authorization for the admin surface."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from chat_escrow.core.errors import AuthenticationError, AuthorizationError
from chat_escrow.core.security import decode_subject
from chat_escrow.models import ADMIN_ROLE_SUPER_ADMIN, AdminUser


class OperatorRole(Enum):
    """Role tiers recognised by the gate."""

    SUPER_ADMIN = "super_admin"
    NON_ADMIN = "non_admin"


@dataclass(frozen=True)
class OperatorIdentity:
    """Verified operator allowed to decrypt and migrate messages."""

    user_id: str
    role: OperatorRole


def lookup_role(db: Session, user_id: str) -> OperatorRole | None:
    """Return the operator role for `user_id`, or None if not an operator."""
    admin = db.get(AdminUser, user_id)
    if admin is None:
        return None
    if admin.role == ADMIN_ROLE_SUPER_ADMIN:
        return OperatorRole.SUPER_ADMIN
    return OperatorRole.NON_ADMIN


def authorize(bearer_token: str | None, db: Session) -> OperatorIdentity:
    """Resolve `bearer_token` to a top-tier operator.

    Raises:
        AuthenticationError: If the token is missing or invalid.
        AuthorizationError: If the identity is not a super admin. A missing
            admin row and a lower role are reported identically.
    """
    if not bearer_token:
        raise AuthenticationError("Missing authorization header")
    user_id = decode_subject(bearer_token)

    role = lookup_role(db, user_id)
    if role is None:
        raise AuthorizationError("Access denied")
    if role is OperatorRole.NON_ADMIN:
        raise AuthorizationError("Access denied")
    return OperatorIdentity(user_id=user_id, role=role)
