"""
Error taxonomy for the access-control core.

Authorization denials and invitation validation outcomes are ordinary return
values (see ``access.authorization`` and ``membership.invitations``). The
exceptions below cover everything that must interrupt the caller.
"""

from __future__ import annotations


class EcclesiaError(Exception):
    """Base class for all errors raised by the core."""
    pass


# ── Not found ──────────────────────────────────────────────────


class NotFoundError(EcclesiaError):
    """A requested record is absent from the Directory."""
    pass


class IdentityNotFoundError(NotFoundError):
    """The authenticated principal has no user record."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} not found in directory")
        self.user_id = user_id


class CongregationNotFoundError(NotFoundError):
    def __init__(self, congregation_id: str) -> None:
        super().__init__(f"Congregation {congregation_id} not found")
        self.congregation_id = congregation_id


class InvitationNotFoundError(NotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Invitation {key} not found")
        self.key = key


class NoHeadquartersError(NotFoundError):
    """No congregation is flagged as headquarters."""

    def __init__(self) -> None:
        super().__init__("No congregation is marked as headquarters")


class ConfigurationNotFoundError(NotFoundError):
    def __init__(self) -> None:
        super().__init__("Organization configuration has not been saved yet")


# ── Conflict ───────────────────────────────────────────────────


class ConflictError(EcclesiaError):
    """The operation would violate a uniqueness or state-machine rule."""
    pass


class DuplicatePendingInvitationError(ConflictError):
    def __init__(self, email: str) -> None:
        super().__init__(f"A pending invitation already exists for {email}")
        self.email = email


class InvitationNotPendingError(ConflictError):
    """Raised on redeem/cancel of an invitation that left the pending state."""

    def __init__(self, key: str, status: str) -> None:
        super().__init__(f"Invitation {key} is {status}, not pending")
        self.key = key
        self.status = status


class HeadquartersConflictError(ConflictError):
    def __init__(self, existing_id: str) -> None:
        super().__init__(
            f"Congregation {existing_id} is already the headquarters"
        )
        self.existing_id = existing_id


# ── Access ─────────────────────────────────────────────────────


class IdentityInactiveError(EcclesiaError):
    """The principal's user record has been deactivated."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} is inactive")
        self.user_id = user_id


# ── Time and upstream ──────────────────────────────────────────


class InvitationExpiredError(EcclesiaError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Invitation {key} has expired")
        self.key = key


class UpstreamUnavailableError(EcclesiaError):
    """The Directory could not be reached or failed mid-operation."""
    pass
