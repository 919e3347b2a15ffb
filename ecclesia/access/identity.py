"""
Identity Context — resolution of the current user from the Directory.

Resolution happens once per authentication event. A principal that has
authenticated but has no user record is provisioned with the minimal role
in the default congregation, then resolved again exactly once.

Every successful resolution stamps ``last_seen_at``. That stamp is a
courtesy: if the Directory is unavailable for the write, resolution still
succeeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ecclesia.access.registry import RolePermissionRegistry, default_registry
from ecclesia.access.schema import (
    Identity,
    IdentityStatus,
    Permission,
    Principal,
    Role,
    UserRecord,
)
from ecclesia.clock import Clock, utc_now
from ecclesia.config import settings
from ecclesia.directory.base import Directory
from ecclesia.errors import (
    CongregationNotFoundError,
    IdentityNotFoundError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionDrift:
    """Difference between stored permissions and the role table."""

    user_id: str
    role: Role
    missing: frozenset[Permission] = field(default_factory=frozenset)
    extra: frozenset[Permission] = field(default_factory=frozenset)

    @property
    def has_drift(self) -> bool:
        return bool(self.missing or self.extra)


def permission_drift(
    identity: Identity | UserRecord,
    registry: RolePermissionRegistry = default_registry,
) -> PermissionDrift:
    """Compare ``identity.permissions`` with ``permissions_for(identity.role)``."""
    expected = registry.permissions_for(identity.role)
    return PermissionDrift(
        user_id=identity.id,
        role=identity.role,
        missing=expected - identity.permissions,
        extra=identity.permissions - expected,
    )


class IdentityResolver:
    """
    Builds Identity objects from Directory user records.

    The resolver owns the "first login" policy (provision a default record)
    and role assignment, which recomputes stored permissions from the
    registry.
    """

    def __init__(
        self,
        directory: Directory,
        registry: RolePermissionRegistry = default_registry,
        clock: Clock = utc_now,
        default_congregation_id: str | None = None,
        default_role: Role = Role.USER,
    ) -> None:
        self.directory = directory
        self.registry = registry
        self.clock = clock
        self.default_congregation_id = (
            default_congregation_id or settings.default_congregation_id
        )
        self.default_role = default_role

    def resolve(self, user_id: str) -> Identity:
        """
        Resolve the identity for ``user_id``.

        Raises:
            IdentityNotFoundError: The Directory has no record for the user.
        """
        record = self.directory.get_user(user_id)
        if record is None:
            raise IdentityNotFoundError(user_id)

        self._stamp_last_seen(user_id)
        return Identity.from_record(record)

    def resolve_or_provision(self, principal: Principal) -> Identity:
        """
        Resolve ``principal``, creating a default record on first sight.

        The retry after provisioning happens once; a second miss propagates.
        """
        try:
            return self.resolve(principal.id)
        except IdentityNotFoundError:
            logger.info(
                "No user record for principal %s; provisioning default identity",
                principal.id,
            )

        self.directory.put_user(self.default_record(principal))
        return self.resolve(principal.id)

    def default_record(self, principal: Principal) -> UserRecord:
        """The record written for a principal seen for the first time."""
        now = self.clock()
        return UserRecord(
            id=principal.id,
            display_name=principal.display_name or "User",
            email=principal.email,
            role=self.default_role,
            congregation_id=self.default_congregation_id,
            permissions=self.registry.permissions_for(self.default_role),
            status=IdentityStatus.ACTIVE,
            created_at=now,
            last_seen_at=now,
        )

    def assign_role(
        self,
        user_id: str,
        role: Role,
        congregation_id: str | None = None,
    ) -> Identity:
        """
        Change a user's role (and optionally congregation).

        Stored permissions are rewritten from the registry; sessions already
        holding the old identity keep it until they resolve again.
        """
        record = self.directory.get_user(user_id)
        if record is None:
            raise IdentityNotFoundError(user_id)
        if congregation_id is not None and self.directory.get_unit(congregation_id) is None:
            raise CongregationNotFoundError(congregation_id)

        updated = record.model_copy(update={
            "role": role,
            "congregation_id": congregation_id or record.congregation_id,
            "permissions": self.registry.permissions_for(role),
        })
        self.directory.put_user(updated)
        logger.info(
            "Role assigned: user=%s role=%s congregation=%s",
            user_id, role.value, updated.congregation_id,
        )
        return Identity.from_record(updated)

    def set_status(self, user_id: str, status: IdentityStatus) -> Identity:
        record = self.directory.get_user(user_id)
        if record is None:
            raise IdentityNotFoundError(user_id)
        updated = record.model_copy(update={"status": status})
        self.directory.put_user(updated)
        logger.info("User status changed: user=%s status=%s", user_id, status.value)
        return Identity.from_record(updated)

    def list_drift(self) -> list[PermissionDrift]:
        """Every stored user whose permissions differ from their role's set."""
        drifts = [
            permission_drift(record, self.registry)
            for record in self.directory.list_users()
        ]
        return [d for d in drifts if d.has_drift]

    def _stamp_last_seen(self, user_id: str) -> None:
        try:
            self.directory.touch_user(user_id, self.clock())
        except UpstreamUnavailableError as exc:
            logger.warning("Could not stamp last-seen for %s: %s", user_id, exc)
