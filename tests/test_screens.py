"""
Tests for the screen registry and access sessions.

Validates:
- Navigation per role
- Screen gating with congregation scoping
- Session opening, congregation selection and snapshot semantics
"""

from __future__ import annotations

import pytest

from ecclesia.access.authorization import Clause
from ecclesia.access.identity import IdentityResolver
from ecclesia.access.registry import default_registry
from ecclesia.access.schema import (
    Congregation,
    Identity,
    IdentityStatus,
    Principal,
    Role,
    UserRecord,
)
from ecclesia.access.screens import ACTIONS, SCREENS, can_open, visible_screens
from ecclesia.access.session import AccessSession
from ecclesia.clock import FrozenClock
from ecclesia.directory.memory import InMemoryDirectory
from ecclesia.errors import CongregationNotFoundError, IdentityInactiveError
from ecclesia.organization.hierarchy import HierarchyStore


def _identity(role: Role, congregation_id: str = "u1") -> Identity:
    return Identity(
        id=role.value,
        display_name=role.value,
        role=role,
        congregation_id=congregation_id,
        permissions=default_registry.permissions_for(role),
    )


def _keys(screens) -> list[str]:
    return [screen.key for screen in screens]


class TestNavigation:
    def test_admin_sees_everything(self):
        assert _keys(visible_screens(_identity(Role.ADMINISTRATOR))) == list(SCREENS)

    def test_plain_user_navigation(self):
        assert _keys(visible_screens(_identity(Role.USER))) == ["dashboard", "social_media"]

    def test_treasurer_navigation(self):
        keys = _keys(visible_screens(_identity(Role.TREASURER)))
        assert "treasury" in keys
        assert "secretariat" not in keys
        assert "users" not in keys

    def test_pastor_menu_hides_office_screens(self):
        # Pastors hold the view permissions but are not listed for the office menus
        keys = _keys(visible_screens(_identity(Role.PASTOR)))
        assert keys == ["dashboard", "social_media"]

    def test_general_secretary_sees_congregations(self):
        keys = _keys(visible_screens(_identity(Role.GENERAL_SECRETARY)))
        assert "congregations" in keys
        assert "secretariat" in keys


class TestScreenGating:
    def test_secretary_own_congregation(self):
        secretary = _identity(Role.SECRETARY, "u1")
        assert can_open("secretariat", secretary, "u1").is_allowed
        assert can_open("secretariat", secretary, "u2").clause == Clause.UNIT

    def test_general_secretary_any_congregation(self):
        assert can_open("secretariat", _identity(Role.GENERAL_SECRETARY, "u1"), "u2")

    def test_treasury_requires_finance(self):
        assert can_open("treasury", _identity(Role.SECRETARY)).clause == Clause.PERMISSIONS
        assert can_open("treasury", _identity(Role.PASTOR, "u1"), "u1")

    def test_dashboard_is_open(self):
        assert can_open("dashboard", _identity(Role.USER), "anywhere")

    def test_unknown_screen(self):
        with pytest.raises(KeyError):
            can_open("nope", _identity(Role.USER))

    def test_member_deletion_is_admin_only(self):
        requirement = ACTIONS["members.delete"]
        assert not AccessSession(_identity(Role.SECRETARY), None).can(requirement, "u1")
        assert AccessSession(_identity(Role.ADMINISTRATOR), None).can(requirement, "u9")


class TestAccessSession:
    def setup_method(self):
        self.directory = InMemoryDirectory()
        self.directory.put_unit(Congregation(id="u1", name="Central"))
        self.directory.put_unit(Congregation(id="u2", name="Norte"))
        self.directory.put_user(UserRecord(
            id="sec",
            role=Role.SECRETARY,
            congregation_id="u2",
            permissions=default_registry.permissions_for(Role.SECRETARY),
        ))
        self.resolver = IdentityResolver(
            self.directory, clock=FrozenClock(), default_congregation_id="u1"
        )
        self.hierarchy = HierarchyStore(self.directory)

    def test_open_selects_own_congregation(self):
        session = AccessSession.open(Principal(id="sec"), self.resolver, self.hierarchy)
        assert session.selected_unit_id == "u2"
        assert session.can_open("secretariat")

    def test_selection_drives_unit_checks(self):
        session = AccessSession.open(Principal(id="sec"), self.resolver, self.hierarchy)
        session.select_congregation("u1")
        assert session.can_open("secretariat").clause == Clause.UNIT
        assert session.can(SCREENS["secretariat"].requirement, "u2")

    def test_select_unknown_congregation(self):
        session = AccessSession.open(Principal(id="sec"), self.resolver, self.hierarchy)
        with pytest.raises(CongregationNotFoundError):
            session.select_congregation("u9")
        assert session.selected_unit_id == "u2"

    def test_inactive_identity_cannot_open_session(self):
        self.resolver.set_status("sec", IdentityStatus.INACTIVE)
        with pytest.raises(IdentityInactiveError):
            AccessSession.open(Principal(id="sec"), self.resolver, self.hierarchy)

        self.resolver.set_status("sec", IdentityStatus.ACTIVE)
        assert AccessSession.open(Principal(id="sec"), self.resolver, self.hierarchy)

    def test_open_provisions_new_principal(self):
        session = AccessSession.open(Principal(id="fresh"), self.resolver, self.hierarchy)
        assert session.identity.role == Role.USER
        assert session.selected_unit_id == "u1"
        assert _keys(session.navigation()) == ["dashboard", "social_media"]

    def test_role_change_applies_to_next_session(self):
        session = AccessSession.open(Principal(id="sec"), self.resolver, self.hierarchy)
        self.resolver.assign_role("sec", Role.ADMINISTRATOR)
        assert not session.can_open("users")

        fresh = AccessSession.open(Principal(id="sec"), self.resolver, self.hierarchy)
        assert fresh.can_open("users")
