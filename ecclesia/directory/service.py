"""
SQL Directory — SQLAlchemy-backed storage for the access-control core.

This service implements the ``Directory`` contract on any database SQLAlchemy
supports (PostgreSQL in production, SQLite for local runs and tests).

The two conditional writes are enforced by the database itself:
- headquarters insertion relies on the partial unique index, so a losing
  concurrent writer gets an IntegrityError and reads back the winner
- invitation transitions are a single guarded UPDATE whose row count tells
  the caller whether it won

Usage:
    directory = SqlDirectory("postgresql+psycopg2://...")
    directory.initialize()  # Create tables

    directory.put_unit(Congregation(id="matriz", name="Sede"))
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ecclesia.access.schema import (
    Configuration,
    Congregation,
    CongregationStatus,
    IdentityStatus,
    Invitation,
    InvitationStatus,
    Permission,
    Role,
    UserRecord,
)
from ecclesia.directory.base import Directory
from ecclesia.directory.models import (
    Base,
    ConfigurationDB,
    CongregationDB,
    InvitationDB,
    UserDB,
)
from ecclesia.errors import HeadquartersConflictError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

CONFIGURATION_KEY = "organization"


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlDirectory(Directory):
    """
    Directory backed by a relational database.

    Each public method runs in its own short session; no transaction spans
    two calls.
    """

    def __init__(self, database_url: str | None = None, engine: Engine | None = None) -> None:
        """
        Initialize the directory.

        Args:
            database_url: SQLAlchemy connection string (sync driver).
            engine: A pre-built engine, used instead of ``database_url``.
        """
        if engine is None:
            if database_url is None:
                raise ValueError("Either database_url or engine is required")
            engine = create_engine(database_url, echo=False)
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def initialize(self) -> None:
        """Create the directory tables if they do not exist."""
        with self._translate_errors():
            Base.metadata.create_all(self.engine)
        logger.info("Directory schema ready: %s", self.engine.url.render_as_string())

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._translate_errors():
            with self.SessionLocal() as session:
                yield session

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except OperationalError as exc:
            logger.error("Directory unavailable: %s", exc.orig)
            raise UpstreamUnavailableError(str(exc.orig)) from exc

    # ── Users ──────────────────────────────────────────────────

    def get_user(self, user_id: str) -> UserRecord | None:
        with self._session() as session:
            row = session.get(UserDB, user_id)
            return self._user_from_row(row) if row else None

    def put_user(self, record: UserRecord) -> UserRecord:
        with self._session() as session:
            session.merge(UserDB(
                id=record.id,
                display_name=record.display_name,
                email=record.email,
                phone=record.phone,
                role=record.role.value,
                congregation_id=record.congregation_id,
                permissions=sorted(p.value for p in record.permissions),
                status=record.status.value,
                created_at=record.created_at,
                last_seen_at=record.last_seen_at,
            ))
            session.commit()
        return record

    def list_users(self) -> list[UserRecord]:
        with self._session() as session:
            rows = session.execute(select(UserDB).order_by(UserDB.id)).scalars().all()
            return [self._user_from_row(row) for row in rows]

    def touch_user(self, user_id: str, seen_at: datetime) -> None:
        with self._session() as session:
            session.execute(
                update(UserDB).where(UserDB.id == user_id).values(last_seen_at=seen_at)
            )
            session.commit()

    # ── Congregations ──────────────────────────────────────────

    def get_unit(self, unit_id: str) -> Congregation | None:
        with self._session() as session:
            row = session.get(CongregationDB, unit_id)
            return self._unit_from_row(row) if row else None

    def list_units(self) -> list[Congregation]:
        with self._session() as session:
            rows = session.execute(
                select(CongregationDB).order_by(CongregationDB.name)
            ).scalars().all()
            return [self._unit_from_row(row) for row in rows]

    def find_headquarters(self) -> Congregation | None:
        with self._session() as session:
            row = session.execute(
                select(CongregationDB).where(CongregationDB.is_headquarters.is_(True))
            ).scalar_one_or_none()
            return self._unit_from_row(row) if row else None

    def put_unit(self, unit: Congregation) -> Congregation:
        with self._session() as session:
            session.merge(self._unit_to_row(unit))
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                existing = self.find_headquarters()
                if unit.is_headquarters and existing and existing.id != unit.id:
                    raise HeadquartersConflictError(existing.id) from exc
                raise
        return unit

    def put_headquarters_if_absent(self, unit: Congregation) -> Congregation:
        existing = self.find_headquarters()
        if existing is not None:
            return existing

        candidate = unit.model_copy(update={"is_headquarters": True})
        with self._session() as session:
            session.merge(self._unit_to_row(candidate))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                winner = self.find_headquarters()
                if winner is None:
                    raise
                logger.info(
                    "Headquarters insert lost the race to %s", winner.id
                )
                return winner
        return candidate

    # ── Invitations ────────────────────────────────────────────

    def get_invitation(self, token: str) -> Invitation | None:
        with self._session() as session:
            row = session.execute(
                select(InvitationDB).where(InvitationDB.token == token)
            ).scalar_one_or_none()
            return self._invitation_from_row(row) if row else None

    def get_invitation_by_id(self, invitation_id: str) -> Invitation | None:
        with self._session() as session:
            row = session.get(InvitationDB, invitation_id)
            return self._invitation_from_row(row) if row else None

    def put_invitation(self, invitation: Invitation) -> Invitation:
        with self._session() as session:
            session.merge(InvitationDB(
                id=invitation.id,
                token=invitation.token,
                email=invitation.email,
                display_name=invitation.display_name,
                role=invitation.role.value,
                congregation_id=invitation.congregation_id,
                congregation_name=invitation.congregation_name,
                status=invitation.status.value,
                created_at=invitation.created_at,
                expires_at=invitation.expires_at,
                created_by_id=invitation.created_by_id,
                created_by_name=invitation.created_by_name,
                accepted_at=invitation.accepted_at,
                accepted_user_id=invitation.accepted_user_id,
            ))
            session.commit()
        return invitation

    def list_invitations(self) -> list[Invitation]:
        with self._session() as session:
            rows = session.execute(
                select(InvitationDB).order_by(InvitationDB.created_at.desc())
            ).scalars().all()
            return [self._invitation_from_row(row) for row in rows]

    def transition_invitation(
        self,
        token: str,
        expected: InvitationStatus,
        new: InvitationStatus,
        **changes: object,
    ) -> bool:
        with self._session() as session:
            result = session.execute(
                update(InvitationDB)
                .where(InvitationDB.token == token)
                .where(InvitationDB.status == expected.value)
                .values(status=new.value, **changes)
            )
            session.commit()
            return result.rowcount == 1

    # ── Configuration ──────────────────────────────────────────

    def get_configuration(self) -> Configuration | None:
        with self._session() as session:
            row = session.get(ConfigurationDB, CONFIGURATION_KEY)
            return Configuration.model_validate(row.payload) if row else None

    def put_configuration(self, config: Configuration) -> Configuration:
        with self._session() as session:
            session.merge(ConfigurationDB(
                key=CONFIGURATION_KEY,
                payload=config.model_dump(mode="json"),
            ))
            session.commit()
        return config

    # ── Internal ────────────────────────────────────────────────

    @staticmethod
    def _user_from_row(row: UserDB) -> UserRecord:
        return UserRecord(
            id=row.id,
            display_name=row.display_name,
            email=row.email,
            phone=row.phone,
            role=Role(row.role),
            congregation_id=row.congregation_id,
            permissions=frozenset(Permission(p) for p in row.permissions or []),
            status=IdentityStatus(row.status),
            created_at=_aware(row.created_at),
            last_seen_at=_aware(row.last_seen_at),
        )

    @staticmethod
    def _unit_to_row(unit: Congregation) -> CongregationDB:
        return CongregationDB(
            id=unit.id,
            name=unit.name,
            short_name=unit.short_name,
            address=unit.address,
            city=unit.city,
            state=unit.state,
            postal_code=unit.postal_code,
            phone=unit.phone,
            email=unit.email,
            website=unit.website,
            leader_name=unit.leader_name,
            tax_id=unit.tax_id,
            member_count=unit.member_count,
            founding_date=unit.founding_date,
            status=unit.status.value,
            is_headquarters=unit.is_headquarters,
        )

    @staticmethod
    def _unit_from_row(row: CongregationDB) -> Congregation:
        return Congregation(
            id=row.id,
            name=row.name,
            short_name=row.short_name,
            address=row.address,
            city=row.city,
            state=row.state,
            postal_code=row.postal_code,
            phone=row.phone,
            email=row.email,
            website=row.website,
            leader_name=row.leader_name,
            tax_id=row.tax_id,
            member_count=row.member_count,
            founding_date=_aware(row.founding_date),
            status=CongregationStatus(row.status),
            is_headquarters=bool(row.is_headquarters),
        )

    @staticmethod
    def _invitation_from_row(row: InvitationDB) -> Invitation:
        return Invitation(
            id=row.id,
            email=row.email,
            display_name=row.display_name,
            role=Role(row.role),
            congregation_id=row.congregation_id,
            congregation_name=row.congregation_name,
            token=row.token,
            status=InvitationStatus(row.status),
            created_at=_aware(row.created_at),
            expires_at=_aware(row.expires_at),
            created_by_id=row.created_by_id,
            created_by_name=row.created_by_name,
            accepted_at=_aware(row.accepted_at),
            accepted_user_id=row.accepted_user_id,
        )
