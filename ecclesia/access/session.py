"""
Access Session — the resolved identity plus the congregation currently in view.

A session is opened once per authentication event. It keeps the Identity it
resolved; role changes made afterwards apply to the next session, not this
one. Selecting a congregation only changes the default used for
unit-scoped checks.
"""

from __future__ import annotations

import logging

from ecclesia.access.authorization import AccessRequirement, AuthorizationResult, authorize
from ecclesia.access.identity import IdentityResolver
from ecclesia.access.schema import Congregation, Identity, IdentityStatus, Principal
from ecclesia.access.screens import SCREENS, Screen, visible_screens
from ecclesia.errors import IdentityInactiveError
from ecclesia.organization.hierarchy import HierarchyStore

logger = logging.getLogger(__name__)


class AccessSession:
    def __init__(
        self,
        identity: Identity,
        hierarchy: HierarchyStore,
        selected: Congregation | None = None,
    ) -> None:
        self.identity = identity
        self.hierarchy = hierarchy
        self.selected = selected

    @classmethod
    def open(
        cls,
        principal: Principal,
        resolver: IdentityResolver,
        hierarchy: HierarchyStore,
        requested_unit_id: str | None = None,
    ) -> AccessSession:
        """
        Resolve (or provision) ``principal`` and pick the initial congregation.

        Raises:
            IdentityInactiveError: The user record has been deactivated.
        """
        identity = resolver.resolve_or_provision(principal)
        if identity.status == IdentityStatus.INACTIVE:
            logger.info("Session refused for inactive user: %s", identity.id)
            raise IdentityInactiveError(identity.id)
        selected = hierarchy.select_current_unit(identity, requested_unit_id)
        logger.info(
            "Session opened: user=%s role=%s congregation=%s",
            identity.id, identity.role.value, selected.id if selected else None,
        )
        return cls(identity, hierarchy, selected)

    @property
    def selected_unit_id(self) -> str | None:
        return self.selected.id if self.selected else None

    def select_congregation(self, unit_id: str) -> Congregation:
        """Switch the congregation in view. Unknown ids raise CongregationNotFoundError."""
        self.selected = self.hierarchy.get_unit(unit_id)
        return self.selected

    def can(
        self,
        requirement: AccessRequirement | None,
        unit_id: str | None = None,
    ) -> AuthorizationResult:
        return authorize(
            requirement,
            self.identity,
            unit_id,
            selected_unit_id=self.selected_unit_id,
        )

    def can_open(self, screen_key: str) -> AuthorizationResult:
        return self.can(SCREENS[screen_key].requirement)

    def navigation(self) -> list[Screen]:
        return visible_screens(self.identity, self.selected_unit_id)
