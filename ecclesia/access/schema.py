"""
Access Schema — Pydantic models for roles, identities, congregations and invitations.

These models are the canonical data structures of the access-control core.
They describe what the Directory stores, what a Session resolves to, and what
the authorization engine evaluates.

Sections:
    Enumerations       — Role, Permission and the status tags
    Directory records  — UserRecord, Congregation, Configuration, Invitation
    Resolved context   — Principal, Identity
    Role table         — ROLE_PERMISSIONS, ORG_WIDE_ROLES
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from ecclesia.clock import utc_now


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class Role(str, enum.Enum):
    """Job functions known to the system. The set is closed."""

    SUPER_ADMIN = "super_admin"
    ADMINISTRATOR = "administrator"
    PASTOR = "pastor"
    GENERAL_SECRETARY = "general_secretary"
    SECRETARY = "secretary"
    GENERAL_TREASURER = "general_treasurer"
    TREASURER = "treasurer"
    MINISTRY_LEADER = "ministry_leader"
    USER = "user"


class Permission(str, enum.Enum):
    """Fine-grained actions, namespaced ``resource.action``."""

    # Members (secretariat)
    MEMBERS_VIEW = "members.view"
    MEMBERS_ADD = "members.add"
    MEMBERS_EDIT = "members.edit"
    MEMBERS_DELETE = "members.delete"

    # Finance (treasury)
    FINANCE_VIEW = "finance.view"
    FINANCE_ADD = "finance.add"
    FINANCE_EDIT = "finance.edit"
    FINANCE_DELETE = "finance.delete"

    # Congregations
    CONGREGATIONS_VIEW = "congregations.view"
    CONGREGATIONS_ADD = "congregations.add"
    CONGREGATIONS_EDIT = "congregations.edit"
    CONGREGATIONS_DELETE = "congregations.delete"

    # Reports
    REPORTS_VIEW = "reports.view"
    REPORTS_GENERATE = "reports.generate"

    # Settings
    SETTINGS_VIEW = "settings.view"
    SETTINGS_EDIT = "settings.edit"

    # Users
    USERS_VIEW = "users.view"
    USERS_ADD = "users.add"
    USERS_EDIT = "users.edit"
    USERS_DELETE = "users.delete"


class IdentityStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CongregationStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class InvitationStatus(str, enum.Enum):
    """Invitation lifecycle states. Only PENDING has outgoing transitions."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# ════════════════════════════════════════════════════════════════
# Directory Records
# ════════════════════════════════════════════════════════════════


class UserRecord(BaseModel):
    """
    A user as persisted in the Directory.

    ``permissions`` is stored alongside ``role`` rather than derived from it,
    so a role change does not retroactively alter sessions already issued.
    """

    id: str
    display_name: str = "User"
    email: str = ""
    phone: str | None = None
    role: Role = Role.USER
    congregation_id: str
    permissions: frozenset[Permission] = Field(default_factory=frozenset)
    status: IdentityStatus = IdentityStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    last_seen_at: datetime | None = None


# Fields both the configuration and the headquarters congregation carry.
ORG_IDENTITY_FIELDS: tuple[str, ...] = (
    "name",
    "short_name",
    "address",
    "city",
    "state",
    "postal_code",
    "phone",
    "email",
    "website",
    "leader_name",
    "tax_id",
)

# Fields that exist only on the configuration record.
PRESENTATION_FIELDS: tuple[str, ...] = (
    "logo",
    "primary_color",
    "secondary_color",
    "service_times",
    "upcoming_events",
)


class Congregation(BaseModel):
    """
    An organizational unit (branch). At most one is the headquarters.

    The Directory does not enforce the headquarters invariant on plain
    writes; see ``Directory.put_headquarters_if_absent``.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    short_name: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    leader_name: str = ""
    tax_id: str | None = None
    member_count: int = 0
    founding_date: datetime | None = None
    status: CongregationStatus = CongregationStatus.ACTIVE
    is_headquarters: bool = False

    def org_identity(self) -> dict[str, Any]:
        """The fields shared with the organization configuration."""
        return {name: getattr(self, name) for name in ORG_IDENTITY_FIELDS}


class ServiceTime(BaseModel):
    day: str
    time: str


class UpcomingEvent(BaseModel):
    title: str
    date: str
    time: str


class Configuration(BaseModel):
    """
    The organization's public-facing identity (singleton).

    Expected to mirror the headquarters congregation for the org-identity
    fields; the presentation fields live only here.
    """

    name: str = "Igreja Evangélica Nacional"
    short_name: str = "Sistema Igreja"
    logo: str = ""
    address: str = "Rua Exemplo, 123"
    city: str = "São Paulo"
    state: str = "SP"
    postal_code: str = "00000-000"
    phone: str = "(00) 0000-0000"
    email: str = "contato@igreja.org"
    website: str = "www.igreja.org"
    leader_name: str = ""
    tax_id: str | None = None
    primary_color: str = "#111827"
    secondary_color: str = "#4B5563"
    service_times: list[ServiceTime] = Field(
        default_factory=lambda: [
            ServiceTime(day="Domingo", time="9h e 18h"),
            ServiceTime(day="Quarta-feira", time="19h30"),
            ServiceTime(day="Sexta-feira", time="20h"),
        ]
    )
    upcoming_events: list[UpcomingEvent] = Field(default_factory=list)

    def org_identity(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in ORG_IDENTITY_FIELDS}

    def presentation(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in PRESENTATION_FIELDS}


class Invitation(BaseModel):
    """
    A time-boxed, single-use credential provisioning a new identity.

    ``status`` is the stored state; whether the invitation is still usable
    also depends on ``expires_at`` evaluated at call time.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    email: str
    display_name: str
    role: Role
    congregation_id: str
    congregation_name: str = ""
    token: str
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime
    expires_at: datetime
    created_by_id: str
    created_by_name: str = ""
    accepted_at: datetime | None = None
    accepted_user_id: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_live(self, now: datetime) -> bool:
        """Pending in storage and not yet past its expiry."""
        return self.status == InvitationStatus.PENDING and not self.is_expired(now)


# ════════════════════════════════════════════════════════════════
# Resolved Context
# ════════════════════════════════════════════════════════════════


class Principal(BaseModel):
    """The authenticated subject handed over by the Session."""

    id: str
    display_name: str = ""
    email: str = ""


class Identity(BaseModel):
    """The resolved current user, rebuilt on every authentication event."""

    model_config = {"frozen": True}

    id: str
    display_name: str
    role: Role
    congregation_id: str
    permissions: frozenset[Permission] = Field(default_factory=frozenset)
    status: IdentityStatus = IdentityStatus.ACTIVE

    @computed_field
    @property
    def is_org_wide(self) -> bool:
        """Whether this identity's role sees every congregation."""
        return self.role in ORG_WIDE_ROLES

    @classmethod
    def from_record(cls, record: UserRecord) -> Identity:
        return cls(
            id=record.id,
            display_name=record.display_name,
            role=record.role,
            congregation_id=record.congregation_id,
            permissions=record.permissions,
            status=record.status,
        )


# ════════════════════════════════════════════════════════════════
# Role Table
# ════════════════════════════════════════════════════════════════

_ALL_PERMISSIONS = frozenset(Permission)

_SECRETARY = frozenset({
    Permission.MEMBERS_VIEW,
    Permission.MEMBERS_ADD,
    Permission.MEMBERS_EDIT,
    Permission.REPORTS_VIEW,
    Permission.REPORTS_GENERATE,
})

_TREASURER = frozenset({
    Permission.FINANCE_VIEW,
    Permission.FINANCE_ADD,
    Permission.FINANCE_EDIT,
    Permission.REPORTS_VIEW,
    Permission.REPORTS_GENERATE,
})

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.SUPER_ADMIN: _ALL_PERMISSIONS,
    Role.ADMINISTRATOR: _ALL_PERMISSIONS,
    Role.PASTOR: frozenset({
        Permission.MEMBERS_VIEW,
        Permission.MEMBERS_ADD,
        Permission.MEMBERS_EDIT,
        Permission.FINANCE_VIEW,
        Permission.CONGREGATIONS_VIEW,
        Permission.REPORTS_VIEW,
        Permission.REPORTS_GENERATE,
        Permission.SETTINGS_VIEW,
    }),
    Role.GENERAL_SECRETARY: _SECRETARY | {Permission.CONGREGATIONS_VIEW},
    Role.SECRETARY: _SECRETARY,
    Role.GENERAL_TREASURER: _TREASURER | {Permission.CONGREGATIONS_VIEW},
    Role.TREASURER: _TREASURER,
    Role.MINISTRY_LEADER: frozenset({Permission.MEMBERS_VIEW}),
    Role.USER: frozenset({Permission.MEMBERS_VIEW}),
}

# Roles whose holders may act on any congregation, not just their own.
ORG_WIDE_ROLES: frozenset[Role] = frozenset({
    Role.SUPER_ADMIN,
    Role.ADMINISTRATOR,
    Role.GENERAL_SECRETARY,
    Role.GENERAL_TREASURER,
})
