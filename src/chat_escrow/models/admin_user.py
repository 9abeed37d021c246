"""Operator accounts allowed into the admin surface."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from chat_escrow.db.session import Base
from chat_escrow.db.time import utcnow

ADMIN_ROLE_SUPER_ADMIN = "super_admin"
ADMIN_ROLE_PACK_CREATOR = "pack_creator"


class AdminUser(Base):
    """Role assignment for an identity issued by the auth provider."""

    __tablename__ = "admin_users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
