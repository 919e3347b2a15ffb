"""
Screen Registry — the application's screens and what each one requires.

The UI asks this module which screens to show in the navigation and whether
a given screen may be opened; the answer comes from ``authorize``.
"""

from __future__ import annotations

from dataclasses import dataclass

from ecclesia.access.authorization import (
    AccessRequirement,
    AuthorizationResult,
    PermissionMode,
    authorize,
)
from ecclesia.access.schema import Identity, Permission, Role


@dataclass(frozen=True)
class Screen:
    key: str
    title: str
    path: str
    requirement: AccessRequirement
    # Requirement for the navigation entry, when it differs from the page.
    menu_requirement: AccessRequirement | None = None


_MENU_ROLES = frozenset({
    Role.SUPER_ADMIN,
    Role.ADMINISTRATOR,
    Role.GENERAL_SECRETARY,
    Role.GENERAL_TREASURER,
    Role.SECRETARY,
    Role.TREASURER,
})


def _menu(permission: Permission) -> AccessRequirement:
    return AccessRequirement.of([permission], mode=PermissionMode.ANY, roles=_MENU_ROLES)


SCREENS: dict[str, Screen] = {
    screen.key: screen
    for screen in (
        Screen("dashboard", "Dashboard", "/dashboard", AccessRequirement()),
        Screen(
            "secretariat", "Secretariat", "/secretaria",
            AccessRequirement.of(
                [Permission.MEMBERS_VIEW],
                mode=PermissionMode.ANY,
                roles=[Role.SUPER_ADMIN, Role.ADMINISTRATOR, Role.GENERAL_SECRETARY, Role.SECRETARY],
                unit_scoped=True,
            ),
            _menu(Permission.MEMBERS_VIEW),
        ),
        Screen(
            "treasury", "Treasury", "/tesouraria",
            AccessRequirement.of([Permission.FINANCE_VIEW], unit_scoped=True),
            _menu(Permission.FINANCE_VIEW),
        ),
        Screen(
            "congregations", "Congregations", "/congregacoes",
            AccessRequirement.of([Permission.CONGREGATIONS_VIEW]),
            _menu(Permission.CONGREGATIONS_VIEW),
        ),
        Screen(
            "users", "Users", "/usuarios",
            AccessRequirement.of(
                [Permission.USERS_VIEW],
                mode=PermissionMode.ANY,
                roles=[Role.SUPER_ADMIN, Role.ADMINISTRATOR],
            ),
        ),
        Screen("social_media", "Social Media", "/redes-sociais", AccessRequirement()),
        Screen(
            "settings", "Settings", "/configuracoes",
            AccessRequirement.of([Permission.SETTINGS_VIEW]),
            _menu(Permission.SETTINGS_VIEW),
        ),
    )
}

# Actions gated inside screens.
ACTIONS: dict[str, AccessRequirement] = {
    "members.add": AccessRequirement.of(
        [Permission.MEMBERS_ADD], mode=PermissionMode.ANY,
        roles=[Role.ADMINISTRATOR, Role.SECRETARY, Role.PASTOR], unit_scoped=True,
    ),
    "members.edit": AccessRequirement.of(
        [Permission.MEMBERS_EDIT], mode=PermissionMode.ANY,
        roles=[Role.ADMINISTRATOR, Role.SECRETARY, Role.PASTOR], unit_scoped=True,
    ),
    "members.delete": AccessRequirement.of(
        [Permission.MEMBERS_DELETE], roles=[Role.ADMINISTRATOR], unit_scoped=True,
    ),
    "users.invite": AccessRequirement.of(
        [Permission.USERS_ADD], roles=[Role.SUPER_ADMIN, Role.ADMINISTRATOR],
    ),
    "users.edit": AccessRequirement.of(
        [Permission.USERS_EDIT], roles=[Role.SUPER_ADMIN, Role.ADMINISTRATOR],
    ),
    "users.delete": AccessRequirement.of(
        [Permission.USERS_DELETE], roles=[Role.SUPER_ADMIN, Role.ADMINISTRATOR],
    ),
    "congregations.add": AccessRequirement.of([Permission.CONGREGATIONS_ADD]),
    "congregations.edit": AccessRequirement.of(
        [Permission.CONGREGATIONS_EDIT], unit_scoped=True,
    ),
    "settings.edit": AccessRequirement.of([Permission.SETTINGS_EDIT]),
}


def can_open(
    screen_key: str,
    identity: Identity,
    unit_id: str | None = None,
) -> AuthorizationResult:
    """Whether ``identity`` may open the screen. Unknown keys raise KeyError."""
    return authorize(SCREENS[screen_key].requirement, identity, unit_id)


def visible_screens(identity: Identity, unit_id: str | None = None) -> list[Screen]:
    """Screens to list in the navigation for ``identity``, in menu order."""
    visible = []
    for screen in SCREENS.values():
        requirement = screen.menu_requirement or screen.requirement
        if authorize(requirement, identity, unit_id).is_allowed:
            visible.append(screen)
    return visible
