"""
In-memory Directory — process-local storage for tests and single-process use.

All reads return copies so callers cannot mutate stored records by accident.
A single lock guards every write, which makes the conditional writes atomic
with respect to each other.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from ecclesia.access.schema import (
    Configuration,
    Congregation,
    Invitation,
    InvitationStatus,
    UserRecord,
)
from ecclesia.directory.base import Directory

logger = logging.getLogger(__name__)


class InMemoryDirectory(Directory):
    """Dictionary-backed Directory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.users: dict[str, UserRecord] = {}
        self.units: dict[str, Congregation] = {}
        self.invitations: dict[str, Invitation] = {}  # keyed by token
        self.configuration: Configuration | None = None

    # ── Users ──────────────────────────────────────────────────

    def get_user(self, user_id: str) -> UserRecord | None:
        record = self.users.get(user_id)
        return record.model_copy() if record else None

    def put_user(self, record: UserRecord) -> UserRecord:
        with self._lock:
            self.users[record.id] = record.model_copy()
        return record

    def list_users(self) -> list[UserRecord]:
        return [u.model_copy() for u in self.users.values()]

    def touch_user(self, user_id: str, seen_at: datetime) -> None:
        with self._lock:
            record = self.users.get(user_id)
            if record is not None:
                self.users[user_id] = record.model_copy(update={"last_seen_at": seen_at})

    # ── Congregations ──────────────────────────────────────────

    def get_unit(self, unit_id: str) -> Congregation | None:
        unit = self.units.get(unit_id)
        return unit.model_copy() if unit else None

    def list_units(self) -> list[Congregation]:
        return [u.model_copy() for u in self.units.values()]

    def put_unit(self, unit: Congregation) -> Congregation:
        with self._lock:
            self.units[unit.id] = unit.model_copy()
        return unit

    def put_headquarters_if_absent(self, unit: Congregation) -> Congregation:
        with self._lock:
            for existing in self.units.values():
                if existing.is_headquarters:
                    logger.info(
                        "Headquarters insert skipped: %s already holds the flag",
                        existing.id,
                    )
                    return existing.model_copy()
            stored = unit.model_copy(update={"is_headquarters": True})
            self.units[stored.id] = stored
            return stored.model_copy()

    # ── Invitations ────────────────────────────────────────────

    def get_invitation(self, token: str) -> Invitation | None:
        invitation = self.invitations.get(token)
        return invitation.model_copy() if invitation else None

    def get_invitation_by_id(self, invitation_id: str) -> Invitation | None:
        for invitation in self.invitations.values():
            if invitation.id == invitation_id:
                return invitation.model_copy()
        return None

    def put_invitation(self, invitation: Invitation) -> Invitation:
        with self._lock:
            self.invitations[invitation.token] = invitation.model_copy()
        return invitation

    def list_invitations(self) -> list[Invitation]:
        return [i.model_copy() for i in self.invitations.values()]

    def transition_invitation(
        self,
        token: str,
        expected: InvitationStatus,
        new: InvitationStatus,
        **changes: object,
    ) -> bool:
        with self._lock:
            current = self.invitations.get(token)
            if current is None or current.status != expected:
                return False
            self.invitations[token] = current.model_copy(
                update={"status": new, **changes}
            )
            return True

    # ── Configuration ──────────────────────────────────────────

    def get_configuration(self) -> Configuration | None:
        return self.configuration.model_copy(deep=True) if self.configuration else None

    def put_configuration(self, config: Configuration) -> Configuration:
        with self._lock:
            self.configuration = config.model_copy(deep=True)
        return config
