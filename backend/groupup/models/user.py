"""
GroupUp Backend - User and Session Models
=========================================

What:  `users` and `sessions` tables.
Who:   Written by the external authentication provider; this service only
       reads them to resolve the caller of a request (see dependencies.py).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from groupup.database import Base
from groupup.models.common import TimestampMixin, id_column


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = id_column()
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)
    image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class AuthSession(TimestampMixin, Base):
    """
    A login session issued by the auth provider.

    The opaque `token` is what clients send back, either as the session
    cookie or as a Bearer token. A session is live while `expires_at` is in
    the future.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = id_column()
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship()
