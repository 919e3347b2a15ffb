"""
Invitation Lifecycle — provisioning new identities by invitation.

An administrator issues an invitation for an email address with a preset
role and congregation. The invitee redeems it with the opaque token they
received, which creates their user record.

State machine:
    pending ──redeem──▶ accepted
    pending ──cancel──▶ cancelled
    pending ──(time)──▶ expired

Expiry is evaluated lazily: ``validate`` and ``redeem`` compare
``expires_at`` with the clock at call time, whatever the stored status
says. ``sweep_expired`` only rewrites stored statuses for reporting; a swept
invitation still validates as expired.
"""

from __future__ import annotations

import enum
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from pydantic import BaseModel

from ecclesia.access.registry import RolePermissionRegistry, default_registry
from ecclesia.access.schema import (
    Identity,
    IdentityStatus,
    Invitation,
    InvitationStatus,
    Role,
    UserRecord,
)
from ecclesia.clock import Clock, utc_now
from ecclesia.config import settings
from ecclesia.directory.base import Directory
from ecclesia.errors import (
    CongregationNotFoundError,
    DuplicatePendingInvitationError,
    InvitationExpiredError,
    InvitationNotFoundError,
    InvitationNotPendingError,
)

logger = logging.getLogger(__name__)


class InvitationOutcome(str, enum.Enum):
    """Result of validating a token."""

    VALID = "valid"
    EXPIRED = "expired"
    NOT_PENDING = "not_pending"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class InvitationCheck:
    outcome: InvitationOutcome
    invitation: Invitation | None = None

    @property
    def is_valid(self) -> bool:
        return self.outcome == InvitationOutcome.VALID


class NewIdentityMaterial(BaseModel):
    """What the invitee supplies when redeeming."""

    user_id: str
    display_name: str | None = None
    phone: str | None = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


class InvitationManager:
    """
    Issues, validates, redeems and cancels invitations.

    Redemption is guarded by the invitation's status, not by whether a user
    record exists: the pending → accepted transition is a conditional write
    in the Directory, so of two concurrent redeems exactly one wins.
    """

    def __init__(
        self,
        directory: Directory,
        registry: RolePermissionRegistry = default_registry,
        clock: Clock = utc_now,
        ttl: timedelta | None = None,
        token_bytes: int | None = None,
    ) -> None:
        self.directory = directory
        self.registry = registry
        self.clock = clock
        self.ttl = ttl or timedelta(days=settings.invitation_ttl_days)
        self.token_bytes = token_bytes or settings.invitation_token_bytes

    def issue(
        self,
        email: str,
        display_name: str,
        role: Role,
        congregation_id: str,
        issuer: Identity,
    ) -> Invitation:
        """
        Issue a new invitation.

        Raises:
            DuplicatePendingInvitationError: A live pending invitation
                already exists for this email.
            CongregationNotFoundError: The target congregation is unknown.
        """
        email = normalize_email(email)
        now = self.clock()

        for existing in self.directory.list_invitations():
            if existing.email == email and existing.is_live(now):
                raise DuplicatePendingInvitationError(email)

        congregation = self.directory.get_unit(congregation_id)
        if congregation is None:
            raise CongregationNotFoundError(congregation_id)

        invitation = Invitation(
            email=email,
            display_name=display_name,
            role=role,
            congregation_id=congregation_id,
            congregation_name=congregation.name,
            token=secrets.token_urlsafe(self.token_bytes),
            status=InvitationStatus.PENDING,
            created_at=now,
            expires_at=now + self.ttl,
            created_by_id=issuer.id,
            created_by_name=issuer.display_name,
        )
        self.directory.put_invitation(invitation)

        logger.info(
            "Invitation issued: id=%s email=%s role=%s congregation=%s expires=%s",
            invitation.id, email, role.value, congregation_id,
            invitation.expires_at.isoformat(),
        )
        return invitation

    def validate(self, token: str) -> InvitationCheck:
        """Check whether ``token`` can be redeemed right now."""
        invitation = self.directory.get_invitation(token)
        if invitation is None:
            return InvitationCheck(InvitationOutcome.NOT_FOUND)
        if invitation.status == InvitationStatus.EXPIRED:
            return InvitationCheck(InvitationOutcome.EXPIRED, invitation)
        if invitation.status != InvitationStatus.PENDING:
            return InvitationCheck(InvitationOutcome.NOT_PENDING, invitation)
        if invitation.is_expired(self.clock()):
            return InvitationCheck(InvitationOutcome.EXPIRED, invitation)
        return InvitationCheck(InvitationOutcome.VALID, invitation)

    def redeem(self, token: str, material: NewIdentityMaterial) -> Identity:
        """
        Redeem ``token`` and create the invitee's user record.

        If ``material.user_id`` already has a record (for instance the
        default one written on first sign-in), its role, congregation and
        permissions are replaced by the invitation's; ``created_at`` is kept.

        Raises:
            InvitationNotFoundError: Unknown token.
            InvitationExpiredError: The invitation is past its expiry.
            InvitationNotPendingError: Already accepted or cancelled, or a
                concurrent redeem won.
        """
        check = self.validate(token)
        if check.outcome == InvitationOutcome.NOT_FOUND:
            raise InvitationNotFoundError(token[:8])
        invitation = check.invitation
        if check.outcome == InvitationOutcome.NOT_PENDING:
            raise InvitationNotPendingError(invitation.id, invitation.status.value)
        if check.outcome == InvitationOutcome.EXPIRED:
            raise InvitationExpiredError(invitation.id)

        now = self.clock()
        claimed = self.directory.transition_invitation(
            token,
            InvitationStatus.PENDING,
            InvitationStatus.ACCEPTED,
            accepted_at=now,
            accepted_user_id=material.user_id,
        )
        if not claimed:
            current = self.directory.get_invitation(token)
            if current is not None and current.status == InvitationStatus.EXPIRED:
                raise InvitationExpiredError(invitation.id)
            status = current.status.value if current else "missing"
            raise InvitationNotPendingError(invitation.id, status)

        try:
            existing = self.directory.get_user(material.user_id)
            record = UserRecord(
                id=material.user_id,
                display_name=material.display_name or invitation.display_name,
                email=invitation.email,
                phone=material.phone or (existing.phone if existing else None),
                role=invitation.role,
                congregation_id=invitation.congregation_id,
                permissions=self.registry.permissions_for(invitation.role),
                status=IdentityStatus.ACTIVE,
                created_at=existing.created_at if existing else now,
                last_seen_at=existing.last_seen_at if existing else None,
            )
            self.directory.put_user(record)
        except Exception:
            self._release_claim(token)
            raise

        logger.info(
            "Invitation redeemed: id=%s user=%s role=%s congregation=%s existing=%s",
            invitation.id, record.id, record.role.value, record.congregation_id,
            existing is not None,
        )
        return Identity.from_record(record)

    def cancel(self, invitation_id: str) -> Invitation:
        """
        Cancel a pending invitation.

        Raises:
            InvitationNotFoundError: Unknown id.
            InvitationNotPendingError: The invitation already left pending.
        """
        invitation = self.directory.get_invitation_by_id(invitation_id)
        if invitation is None:
            raise InvitationNotFoundError(invitation_id)

        cancelled = self.directory.transition_invitation(
            invitation.token, InvitationStatus.PENDING, InvitationStatus.CANCELLED
        )
        if not cancelled:
            current = self.directory.get_invitation_by_id(invitation_id) or invitation
            raise InvitationNotPendingError(invitation_id, current.status.value)

        logger.info("Invitation cancelled: id=%s email=%s", invitation_id, invitation.email)
        return invitation.model_copy(update={"status": InvitationStatus.CANCELLED})

    def list_invitations(self, status: InvitationStatus | None = None) -> list[Invitation]:
        """
        List invitations, optionally filtered by effective status.

        A stored-pending invitation past its expiry counts as EXPIRED here.
        """
        now = self.clock()
        result = []
        for invitation in self.directory.list_invitations():
            effective = invitation.status
            if effective == InvitationStatus.PENDING and invitation.is_expired(now):
                effective = InvitationStatus.EXPIRED
            if status is None or effective == status:
                result.append(invitation.model_copy(update={"status": effective}))
        return result

    def sweep_expired(self) -> int:
        """Mark stored-pending, past-expiry invitations as expired. Returns the count."""
        now = self.clock()
        swept = 0
        for invitation in self.directory.list_invitations():
            if invitation.status == InvitationStatus.PENDING and invitation.is_expired(now):
                if self.directory.transition_invitation(
                    invitation.token, InvitationStatus.PENDING, InvitationStatus.EXPIRED
                ):
                    swept += 1
        if swept:
            logger.info("Expired invitations swept: %d", swept)
        return swept

    def _release_claim(self, token: str) -> None:
        released = self.directory.transition_invitation(
            token,
            InvitationStatus.ACCEPTED,
            InvitationStatus.PENDING,
            accepted_at=None,
            accepted_user_id=None,
        )
        logger.warning("User write failed after claiming invitation; released=%s", released)
