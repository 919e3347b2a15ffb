"""
Headquarters Synchronization — keeps the configuration and the headquarters aligned.

The organization configuration and the headquarters congregation both carry
the organization's identity (name, address, leader, tax id...). Each side
also holds fields the other does not have, so neither direction ever
replaces a record wholesale:

- PUSH (configuration → headquarters) runs on every configuration save.
  It merges identity fields into the existing headquarters, or creates the
  headquarters when there is none.
- PULL (headquarters → configuration) runs on explicit request. It copies
  identity fields back while keeping colors, logo and schedules.

Both directions are read-merge-write and idempotent.
"""

from __future__ import annotations

import logging
import threading
from typing import Any
from uuid import uuid4

from ecclesia.access.schema import (
    ORG_IDENTITY_FIELDS,
    Configuration,
    Congregation,
    CongregationStatus,
)
from ecclesia.clock import Clock, utc_now
from ecclesia.config import settings
from ecclesia.directory.base import Directory
from ecclesia.errors import ConfigurationNotFoundError, NoHeadquartersError

logger = logging.getLogger(__name__)

# Push operations in this process are serialized on this key.
HEADQUARTERS_SYNC_KEY = "headquarters-sync"

_locks: dict[str, threading.Lock] = {HEADQUARTERS_SYNC_KEY: threading.Lock()}


class HeadquartersSyncService:
    """Bidirectional reconciliation of Configuration and the headquarters."""

    def __init__(
        self,
        directory: Directory,
        clock: Clock = utc_now,
        headquarters_id: str | None = None,
    ) -> None:
        self.directory = directory
        self.clock = clock
        self.headquarters_id = headquarters_id or settings.headquarters_id
        self._push_lock = _locks[HEADQUARTERS_SYNC_KEY]

    # ── Configuration ──────────────────────────────────────────

    def load_configuration(self) -> Configuration:
        """The stored configuration, or the defaults if none was saved."""
        return self.directory.get_configuration() or Configuration()

    def save_configuration(self, patch: dict[str, Any]) -> Configuration:
        """
        Merge ``patch`` into the stored configuration, save it, then push.

        Returns the configuration as written.
        """
        current = self.load_configuration()
        merged = Configuration.model_validate({**current.model_dump(), **patch})
        self.directory.put_configuration(merged)
        logger.info("Configuration saved: fields=%s", sorted(patch))
        self.push()
        return merged

    # ── Push ───────────────────────────────────────────────────

    def push(self) -> Congregation:
        """
        Copy the configuration's identity fields onto the headquarters.

        Creates the headquarters if none exists. Never yields a second one.

        Raises:
            ConfigurationNotFoundError: No configuration has been saved.
        """
        with self._push_lock:
            # Read under the lock so the last push carries the latest save.
            config = self.directory.get_configuration()
            if config is None:
                raise ConfigurationNotFoundError()

            headquarters = self.directory.find_headquarters()
            if headquarters is not None:
                merged = headquarters.model_copy(update=config.org_identity())
                self.directory.put_unit(merged)
                logger.info("Headquarters updated from configuration: id=%s", merged.id)
                return merged

            created = self.directory.put_headquarters_if_absent(
                self._new_headquarters(config)
            )
            if created.org_identity() != config.org_identity():
                # Another writer created it first; fold our fields in.
                created = created.model_copy(update=config.org_identity())
                self.directory.put_unit(created)
            logger.info("Headquarters created from configuration: id=%s", created.id)
            return created

    def _new_headquarters(self, config: Configuration) -> Congregation:
        unit_id = self.headquarters_id
        if self.directory.get_unit(unit_id) is not None:
            unit_id = uuid4().hex
        return Congregation(
            id=unit_id,
            **config.org_identity(),
            member_count=0,
            founding_date=self.clock(),
            status=CongregationStatus.ACTIVE,
            is_headquarters=True,
        )

    # ── Pull ───────────────────────────────────────────────────

    def pull(self) -> Configuration:
        """
        Copy the headquarters' identity fields into the configuration.

        Presentation fields (colors, logo, schedules) are kept as they are.

        Raises:
            NoHeadquartersError: No congregation is marked as headquarters.
        """
        headquarters = self.directory.find_headquarters()
        if headquarters is None:
            logger.warning("Sync from headquarters requested but none exists")
            raise NoHeadquartersError()

        current = self.load_configuration()
        merged = current.model_copy(update=headquarters.org_identity())
        self.directory.put_configuration(merged)
        logger.info(
            "Configuration updated from headquarters: id=%s fields=%d",
            headquarters.id, len(ORG_IDENTITY_FIELDS),
        )
        return merged
