"""
Directory — the storage collaborator the core reads and writes through.

The core never talks to a database directly. Everything it needs from
storage is listed here: plain request/response reads and writes, plus two
conditional writes that make the racy check-then-act steps atomic:

- ``put_headquarters_if_absent``: insert a headquarters congregation only
  if none exists, returning whichever record won
- ``transition_invitation``: move an invitation between states only if it
  is still in the expected state

Implementations raise ``UpstreamUnavailableError`` when storage cannot be
reached. They do not retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from ecclesia.access.schema import (
    Configuration,
    Congregation,
    Invitation,
    InvitationStatus,
    UserRecord,
)


class Directory(ABC):
    """Abstract storage for users, congregations, invitations and configuration."""

    # ── Users ──────────────────────────────────────────────────

    @abstractmethod
    def get_user(self, user_id: str) -> UserRecord | None:
        ...

    @abstractmethod
    def put_user(self, record: UserRecord) -> UserRecord:
        ...

    @abstractmethod
    def list_users(self) -> list[UserRecord]:
        ...

    @abstractmethod
    def touch_user(self, user_id: str, seen_at: datetime) -> None:
        """Stamp ``last_seen_at``. Last write wins."""

    # ── Congregations ──────────────────────────────────────────

    @abstractmethod
    def get_unit(self, unit_id: str) -> Congregation | None:
        ...

    @abstractmethod
    def list_units(self) -> list[Congregation]:
        ...

    @abstractmethod
    def put_unit(self, unit: Congregation) -> Congregation:
        """Insert or replace a congregation by id."""

    @abstractmethod
    def put_headquarters_if_absent(self, unit: Congregation) -> Congregation:
        """
        Insert ``unit`` as headquarters unless one already exists.

        Returns the stored headquarters: ``unit`` if it was inserted,
        otherwise the existing record.
        """

    # ── Invitations ────────────────────────────────────────────

    @abstractmethod
    def get_invitation(self, token: str) -> Invitation | None:
        ...

    @abstractmethod
    def get_invitation_by_id(self, invitation_id: str) -> Invitation | None:
        ...

    @abstractmethod
    def put_invitation(self, invitation: Invitation) -> Invitation:
        ...

    @abstractmethod
    def list_invitations(self) -> list[Invitation]:
        ...

    @abstractmethod
    def transition_invitation(
        self,
        token: str,
        expected: InvitationStatus,
        new: InvitationStatus,
        **changes: object,
    ) -> bool:
        """
        Atomically set ``status = new`` (plus ``changes``) if it is ``expected``.

        Returns True if this call performed the transition.
        """

    # ── Configuration ──────────────────────────────────────────

    @abstractmethod
    def get_configuration(self) -> Configuration | None:
        ...

    @abstractmethod
    def put_configuration(self, config: Configuration) -> Configuration:
        ...

    # ── Convenience ────────────────────────────────────────────

    def find_headquarters(self) -> Congregation | None:
        """First congregation flagged as headquarters, if any."""
        for unit in self.list_units():
            if unit.is_headquarters:
                return unit
        return None
