"""
Organization Hierarchy — the congregations and their headquarters.

Plain writes through this store do not enforce the single-headquarters
rule; callers creating a headquarters go through ``create_unit`` (which
checks first and lets the Directory reject a racing duplicate) or through
the headquarters sync service.
"""

from __future__ import annotations

import logging
from typing import Any

from ecclesia.access.schema import Congregation, Identity
from ecclesia.directory.base import Directory
from ecclesia.errors import CongregationNotFoundError, HeadquartersConflictError

logger = logging.getLogger(__name__)


class HierarchyStore:
    """Read and write access to congregations through the Directory."""

    def __init__(self, directory: Directory) -> None:
        self.directory = directory

    def list_units(self) -> list[Congregation]:
        return self.directory.list_units()

    def get_unit(self, unit_id: str) -> Congregation:
        unit = self.directory.get_unit(unit_id)
        if unit is None:
            raise CongregationNotFoundError(unit_id)
        return unit

    def find_headquarters(self) -> Congregation | None:
        return self.directory.find_headquarters()

    def upsert_unit(self, unit: Congregation) -> Congregation:
        """Write ``unit`` as-is. No headquarters check."""
        stored = self.directory.put_unit(unit)
        logger.info("Congregation stored: id=%s hq=%s", unit.id, unit.is_headquarters)
        return stored

    def create_unit(self, unit: Congregation) -> Congregation:
        """
        Create a congregation on an administrator's behalf.

        Raises:
            HeadquartersConflictError: ``unit`` claims headquarters while
                another congregation already holds it.
        """
        if unit.is_headquarters:
            existing = self.find_headquarters()
            if existing is not None and existing.id != unit.id:
                raise HeadquartersConflictError(existing.id)
            stored = self.directory.put_headquarters_if_absent(unit)
            if stored.id != unit.id:
                raise HeadquartersConflictError(stored.id)
            logger.info("Headquarters congregation created: id=%s", stored.id)
            return stored
        return self.upsert_unit(unit)

    def update_unit(self, unit_id: str, changes: dict[str, Any]) -> Congregation:
        """
        Apply a partial update to an existing congregation.

        The headquarters flag cannot be moved onto a second congregation.
        """
        current = self.get_unit(unit_id)
        changes = {k: v for k, v in changes.items() if k != "id"}
        if changes.get("is_headquarters") and not current.is_headquarters:
            existing = self.find_headquarters()
            if existing is not None:
                raise HeadquartersConflictError(existing.id)
        updated = current.model_copy(update=changes)
        return self.upsert_unit(Congregation.model_validate(updated.model_dump()))

    def select_current_unit(
        self,
        identity: Identity | None,
        requested_id: str | None = None,
    ) -> Congregation | None:
        """
        Pick the congregation a session is scoped to.

        The requested congregation if it exists, else the identity's own,
        else the first one listed.
        """
        units = self.list_units()
        by_id = {unit.id: unit for unit in units}
        if requested_id is not None and requested_id in by_id:
            return by_id[requested_id]
        if identity is not None and identity.congregation_id in by_id:
            return by_id[identity.congregation_id]
        return units[0] if units else None
