"""
Directory — SQLAlchemy models for users, congregations, invitations and configuration.

The tables mirror the pydantic records in ``access.schema``. Two constraints
live at the storage level because application code cannot guarantee them
under concurrency:

1. At most one headquarters: partial unique index on ``is_headquarters``
2. One row per invitation token: unique index on ``token``
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all directory models."""
    pass


class UserDB(Base):
    """
    A user of the system and its access grant.

    ``permissions`` is a JSON list stored independently of ``role``.
    """

    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    display_name = Column(String(200), nullable=False, default="User")
    email = Column(String(320), nullable=False, default="")
    phone = Column(String(40), nullable=True)
    role = Column(String(40), nullable=False, comment="Role tag, e.g. 'secretary'")
    congregation_id = Column(
        String(64), nullable=False,
        comment="Congregation the user belongs to",
    )
    permissions = Column(
        JSON, nullable=False, default=list,
        comment="Stored permission tags; may drift from the role table",
    )
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    last_seen_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_user_congregation", "congregation_id"),
        Index("ix_user_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role} congregation={self.congregation_id}>"


class CongregationDB(Base):
    """An organizational unit. One row may carry the headquarters flag."""

    __tablename__ = "congregations"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    short_name = Column(String(100), nullable=False, default="")
    address = Column(String(300), nullable=False, default="")
    city = Column(String(120), nullable=False, default="")
    state = Column(String(60), nullable=False, default="")
    postal_code = Column(String(20), nullable=False, default="")
    phone = Column(String(40), nullable=False, default="")
    email = Column(String(320), nullable=False, default="")
    website = Column(String(300), nullable=False, default="")
    leader_name = Column(String(200), nullable=False, default="")
    tax_id = Column(String(40), nullable=True)
    member_count = Column(Integer, nullable=False, default=0)
    founding_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    is_headquarters = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index(
            "uq_congregation_headquarters",
            "is_headquarters",
            unique=True,
            sqlite_where=is_headquarters == True,  # noqa: E712
            postgresql_where=is_headquarters == True,  # noqa: E712
        ),
        {"comment": "Congregations; at most one row is the headquarters"},
    )

    def __repr__(self) -> str:
        flag = " HQ" if self.is_headquarters else ""
        return f"<Congregation id={self.id} name={self.name!r}{flag}>"


class InvitationDB(Base):
    """Invitations to join the system with a preset role and congregation."""

    __tablename__ = "invitations"

    id = Column(String(64), primary_key=True)
    token = Column(String(128), nullable=False)
    email = Column(String(320), nullable=False)
    display_name = Column(String(200), nullable=False)
    role = Column(String(40), nullable=False)
    congregation_id = Column(String(64), nullable=False)
    congregation_name = Column(String(200), nullable=False, default="")
    status = Column(
        String(20), nullable=False, default="pending",
        comment="pending, accepted, expired or cancelled",
    )
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_by_id = Column(String(128), nullable=False)
    created_by_name = Column(String(200), nullable=False, default="")
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    accepted_user_id = Column(String(128), nullable=True)

    __table_args__ = (
        Index("uq_invitation_token", "token", unique=True),
        Index("ix_invitation_email_status", "email", "status"),
    )


class ConfigurationDB(Base):
    """Singleton row holding the organization configuration document."""

    __tablename__ = "configuration"

    key = Column(String(40), primary_key=True, default="organization")
    payload = Column(JSON, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), nullable=False,
        default=func.now(), onupdate=func.now(),
    )
