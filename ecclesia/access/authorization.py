"""
Authorization Decision Engine — gatekeeper for every screen and action.

A requirement is made of three independent clauses, each optional:

- PERMISSIONS: the identity holds ANY / ALL of the listed permissions
- ROLES: the identity's role is one of the listed roles
- UNIT: the identity belongs to the congregation being acted on, or holds
  an org-wide role

A clause that is absent is satisfied. The result is ALLOW when every present
clause holds; otherwise DENY, carrying the reason of the first clause that
failed (checked in the order above).

``authorize`` is a pure function: it performs no I/O and consults nothing
but its arguments, so it can be exercised with hand-built identities.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass

from pydantic import BaseModel, Field

from ecclesia.access.schema import ORG_WIDE_ROLES, Identity, Permission, Role


class PermissionMode(str, enum.Enum):
    """How a permission list is matched."""

    ANY = "any"
    ALL = "all"


class Decision(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


class Clause(str, enum.Enum):
    """The requirement clause responsible for a denial."""

    PERMISSIONS = "permissions"
    ROLES = "roles"
    UNIT = "unit"


class AccessRequirement(BaseModel):
    """
    What a screen or action demands of the current identity.

    An empty requirement (the default) places no restriction.
    """

    model_config = {"frozen": True}

    permissions: frozenset[Permission] = Field(default_factory=frozenset)
    mode: PermissionMode = PermissionMode.ALL
    roles: frozenset[Role] = Field(default_factory=frozenset)
    unit_scoped: bool = False

    @classmethod
    def of(
        cls,
        permissions: Iterable[Permission] = (),
        *,
        mode: PermissionMode = PermissionMode.ALL,
        roles: Iterable[Role] = (),
        unit_scoped: bool = False,
    ) -> AccessRequirement:
        """Convenience constructor accepting any iterables."""
        return cls(
            permissions=frozenset(permissions),
            mode=mode,
            roles=frozenset(roles),
            unit_scoped=unit_scoped,
        )

    @property
    def is_unrestricted(self) -> bool:
        return not self.permissions and not self.roles and not self.unit_scoped


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of evaluating a requirement against an identity."""

    decision: Decision
    reason: str
    clause: Clause | None = None

    @property
    def is_allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    def __bool__(self) -> bool:
        return self.is_allowed


_ALLOWED = AuthorizationResult(decision=Decision.ALLOW, reason="All requirements satisfied")


def _deny(clause: Clause, reason: str) -> AuthorizationResult:
    return AuthorizationResult(decision=Decision.DENY, reason=reason, clause=clause)


def check_permissions(
    held: frozenset[Permission],
    required: frozenset[Permission],
    mode: PermissionMode,
) -> bool:
    """True when ``held`` covers ``required`` under ``mode``; vacuous if empty."""
    if not required:
        return True
    if mode == PermissionMode.ANY:
        return not held.isdisjoint(required)
    return required <= held


def check_unit_access(
    identity: Identity,
    unit_id: str | None,
    org_wide_roles: frozenset[Role] = ORG_WIDE_ROLES,
) -> bool:
    """
    Whether ``identity`` may act on congregation ``unit_id``.

    With no congregation to compare against there is nothing to restrict.
    """
    if identity.role in org_wide_roles:
        return True
    if unit_id is None:
        return True
    return identity.congregation_id == unit_id


def authorize(
    requirement: AccessRequirement | None,
    identity: Identity,
    context_unit_id: str | None = None,
    *,
    selected_unit_id: str | None = None,
    org_wide_roles: frozenset[Role] = ORG_WIDE_ROLES,
) -> AuthorizationResult:
    """
    Evaluate ``requirement`` against ``identity``.

    Args:
        requirement: The clauses to satisfy. ``None`` means no restriction.
        identity: The resolved current user.
        context_unit_id: Congregation the action targets, if any.
        selected_unit_id: The session's currently selected congregation,
            used for unit scoping when ``context_unit_id`` is omitted.
        org_wide_roles: Roles exempt from unit scoping.

    Returns:
        AuthorizationResult: ALLOW, or DENY with the first failing clause.
    """
    if requirement is None or requirement.is_unrestricted:
        return _ALLOWED

    if not check_permissions(identity.permissions, requirement.permissions, requirement.mode):
        wanted = ", ".join(sorted(p.value for p in requirement.permissions))
        return _deny(
            Clause.PERMISSIONS,
            f"Requires {requirement.mode.value} of: {wanted}",
        )

    if requirement.roles and identity.role not in requirement.roles:
        return _deny(
            Clause.ROLES,
            f"Role '{identity.role.value}' is not allowed here",
        )

    if requirement.unit_scoped:
        unit_id = context_unit_id if context_unit_id is not None else selected_unit_id
        if not check_unit_access(identity, unit_id, org_wide_roles):
            return _deny(
                Clause.UNIT,
                f"No access to congregation '{unit_id}'",
            )

    return _ALLOWED
