"""
Role-Permission Registry — the immutable role table.

The registry is built once at process start and handed by reference to every
component that needs it. It never changes afterwards: there is no update
method, and the underlying mapping is a read-only view over frozensets.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType

from ecclesia.access.schema import ROLE_PERMISSIONS, Permission, Role

logger = logging.getLogger(__name__)


class RolePermissionRegistry:
    """
    Total, read-only mapping from Role to the permissions it grants.

    Construction fails if any Role is missing or maps to an empty set, so a
    lookup can never come back empty-handed at runtime.
    """

    def __init__(
        self, table: Mapping[Role, frozenset[Permission] | set[Permission]] | None = None
    ) -> None:
        source = ROLE_PERMISSIONS if table is None else table

        missing = [role.value for role in Role if role not in source]
        if missing:
            raise ValueError(f"Role table is missing roles: {', '.join(missing)}")

        empty = [role.value for role, perms in source.items() if not perms]
        if empty:
            raise ValueError(f"Roles without permissions: {', '.join(empty)}")

        self._table: Mapping[Role, frozenset[Permission]] = MappingProxyType(
            {Role(role): frozenset(perms) for role, perms in source.items()}
        )
        logger.debug("Role registry built: %d roles", len(self._table))

    def permissions_for(self, role: Role) -> frozenset[Permission]:
        """Return the permissions granted to ``role``."""
        return self._table[role]

    def roles(self) -> list[Role]:
        return list(self._table)

    def roles_granting(self, permission: Permission) -> list[Role]:
        """Every role whose set contains ``permission``."""
        return [role for role, perms in self._table.items() if permission in perms]

    def as_dict(self) -> dict[str, list[str]]:
        """Plain serializable view, sorted for stable output."""
        return {
            role.value: sorted(p.value for p in perms)
            for role, perms in self._table.items()
        }


# Process-wide registry built from the default role table
default_registry = RolePermissionRegistry()
