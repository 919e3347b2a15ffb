"""
Tests for identity resolution.

Validates:
- Resolution from the Directory and the last-seen stamp
- First-login provisioning with a single retry
- Best-effort stamping when the Directory is unavailable
- Role assignment and permission drift
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ecclesia.access.identity import IdentityResolver, permission_drift
from ecclesia.access.registry import default_registry
from ecclesia.access.schema import (
    Congregation,
    IdentityStatus,
    Permission,
    Principal,
    Role,
    UserRecord,
)
from ecclesia.clock import FrozenClock
from ecclesia.directory.memory import InMemoryDirectory
from ecclesia.errors import (
    CongregationNotFoundError,
    IdentityNotFoundError,
    UpstreamUnavailableError,
)


class FlakyTouchDirectory(InMemoryDirectory):
    """Directory whose last-seen write always fails."""

    def touch_user(self, user_id, seen_at):
        raise UpstreamUnavailableError("directory offline")


class ForgetfulDirectory(InMemoryDirectory):
    """Directory that accepts writes for users but never returns them."""

    def get_user(self, user_id):
        return None


def _record(user_id: str, role: Role, congregation_id: str = "u1") -> UserRecord:
    return UserRecord(
        id=user_id,
        display_name=user_id.title(),
        email=f"{user_id}@igreja.org",
        role=role,
        congregation_id=congregation_id,
        permissions=default_registry.permissions_for(role),
    )


class TestResolve:
    def setup_method(self):
        self.clock = FrozenClock()
        self.directory = InMemoryDirectory()
        self.resolver = IdentityResolver(self.directory, clock=self.clock)
        self.directory.put_user(_record("ana", Role.TREASURER))

    def test_resolve_returns_identity(self):
        identity = self.resolver.resolve("ana")
        assert identity.id == "ana"
        assert identity.role == Role.TREASURER
        assert identity.congregation_id == "u1"
        assert identity.permissions == default_registry.permissions_for(Role.TREASURER)
        assert identity.is_org_wide is False

    def test_resolve_stamps_last_seen(self):
        self.resolver.resolve("ana")
        assert self.directory.get_user("ana").last_seen_at == self.clock.now

        self.clock.advance(hours=2)
        self.resolver.resolve("ana")
        assert self.directory.get_user("ana").last_seen_at == self.clock.now

    def test_unknown_user_raises(self):
        with pytest.raises(IdentityNotFoundError):
            self.resolver.resolve("nobody")

    def test_stamp_failure_does_not_block_resolution(self):
        directory = FlakyTouchDirectory()
        directory.put_user(_record("ana", Role.SECRETARY))
        identity = IdentityResolver(directory, clock=self.clock).resolve("ana")
        assert identity.role == Role.SECRETARY
        assert directory.get_user("ana").last_seen_at is None

    def test_org_wide_flag(self):
        self.directory.put_user(_record("gs", Role.GENERAL_SECRETARY))
        assert self.resolver.resolve("gs").is_org_wide is True


class TestProvisioning:
    def setup_method(self):
        self.clock = FrozenClock()
        self.directory = InMemoryDirectory()
        self.resolver = IdentityResolver(
            self.directory, clock=self.clock, default_congregation_id="matriz"
        )

    def test_first_login_creates_minimal_identity(self):
        principal = Principal(id="new-user", display_name="Maria", email="maria@igreja.org")
        identity = self.resolver.resolve_or_provision(principal)

        assert identity.role == Role.USER
        assert identity.congregation_id == "matriz"
        assert identity.permissions == default_registry.permissions_for(Role.USER)

        stored = self.directory.get_user("new-user")
        assert stored.display_name == "Maria"
        assert stored.email == "maria@igreja.org"
        assert stored.created_at == self.clock.now

    def test_existing_user_not_reprovisioned(self):
        self.directory.put_user(_record("ana", Role.PASTOR))
        identity = self.resolver.resolve_or_provision(Principal(id="ana"))
        assert identity.role == Role.PASTOR

    def test_missing_display_name_defaults(self):
        record = self.resolver.default_record(Principal(id="x"))
        assert record.display_name == "User"

    def test_retry_happens_once(self):
        resolver = IdentityResolver(ForgetfulDirectory(), clock=self.clock)
        with pytest.raises(IdentityNotFoundError):
            resolver.resolve_or_provision(Principal(id="ghost"))


class TestRoleAssignment:
    def setup_method(self):
        self.directory = InMemoryDirectory()
        self.directory.put_unit(Congregation(id="u1", name="Central"))
        self.directory.put_unit(Congregation(id="u2", name="Norte"))
        self.resolver = IdentityResolver(self.directory, clock=FrozenClock())
        self.directory.put_user(_record("ana", Role.USER))

    def test_assign_role_rewrites_permissions(self):
        identity = self.resolver.assign_role("ana", Role.SECRETARY)
        assert identity.permissions == default_registry.permissions_for(Role.SECRETARY)
        assert self.directory.get_user("ana").role == Role.SECRETARY

    def test_assign_role_moves_congregation(self):
        identity = self.resolver.assign_role("ana", Role.TREASURER, "u2")
        assert identity.congregation_id == "u2"

    def test_assign_role_unknown_congregation(self):
        with pytest.raises(CongregationNotFoundError):
            self.resolver.assign_role("ana", Role.TREASURER, "nowhere")

    def test_assign_role_unknown_user(self):
        with pytest.raises(IdentityNotFoundError):
            self.resolver.assign_role("ghost", Role.TREASURER)

    def test_issued_identity_keeps_old_permissions(self):
        before = self.resolver.resolve("ana")
        self.resolver.assign_role("ana", Role.ADMINISTRATOR)
        assert Permission.USERS_VIEW not in before.permissions
        assert Permission.USERS_VIEW in self.resolver.resolve("ana").permissions

    def test_set_status(self):
        identity = self.resolver.set_status("ana", IdentityStatus.INACTIVE)
        assert identity.status == IdentityStatus.INACTIVE


class TestPermissionDrift:
    def setup_method(self):
        self.directory = InMemoryDirectory()
        self.resolver = IdentityResolver(self.directory, clock=FrozenClock())

    def test_consistent_record_has_no_drift(self):
        assert not permission_drift(_record("ana", Role.PASTOR)).has_drift

    def test_overridden_record_reports_both_directions(self):
        record = _record("ana", Role.USER).model_copy(
            update={"permissions": frozenset({Permission.FINANCE_VIEW})}
        )
        drift = permission_drift(record)
        assert drift.missing == {Permission.MEMBERS_VIEW}
        assert drift.extra == {Permission.FINANCE_VIEW}

    def test_list_drift_only_returns_divergent_users(self):
        self.directory.put_user(_record("ok", Role.SECRETARY))
        self.directory.put_user(
            _record("odd", Role.SECRETARY).model_copy(
                update={"permissions": frozenset(Permission)}
            )
        )
        drifts = self.resolver.list_drift()
        assert [d.user_id for d in drifts] == ["odd"]

    def test_provisioned_identity_matches_role_table(self):
        identity = self.resolver.resolve_or_provision(Principal(id="fresh"))
        assert not permission_drift(identity).has_drift


def test_frozen_clock_advances():
    clock = FrozenClock(datetime(2024, 5, 1, tzinfo=timezone.utc))
    clock.advance(days=7)
    assert clock() == datetime(2024, 5, 1, tzinfo=timezone.utc) + timedelta(days=7)
