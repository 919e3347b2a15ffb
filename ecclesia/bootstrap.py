"""
Ecclesia — service wiring.

Builds the Directory and the services that sit on top of it, and
configures structured logging for the process entry points:

1. Directory (SQL, or in-memory for demos and tests)
2. Role-permission registry
3. Identity resolver and hierarchy store
4. Headquarters sync and invitation manager
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

import structlog

from ecclesia.access.identity import IdentityResolver
from ecclesia.access.registry import RolePermissionRegistry, default_registry
from ecclesia.clock import Clock, utc_now
from ecclesia.config import EcclesiaSettings, settings as default_settings
from ecclesia.directory.base import Directory
from ecclesia.directory.memory import InMemoryDirectory
from ecclesia.membership.invitations import InvitationManager
from ecclesia.organization.hierarchy import HierarchyStore
from ecclesia.organization.sync import HeadquartersSyncService

logger = logging.getLogger(__name__)


def configure_logging(settings: EcclesiaSettings = default_settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(level=logging.getLevelName(settings.log_level.upper()))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass
class Services:
    """Everything the API and CLI need, built over one Directory."""

    directory: Directory
    registry: RolePermissionRegistry
    resolver: IdentityResolver
    hierarchy: HierarchyStore
    sync: HeadquartersSyncService
    invitations: InvitationManager


def build_directory(settings: EcclesiaSettings = default_settings) -> Directory:
    if settings.use_memory_directory:
        return InMemoryDirectory()

    from ecclesia.directory.service import SqlDirectory

    directory = SqlDirectory(settings.database_url)
    directory.initialize()
    return directory


def build_services(
    settings: EcclesiaSettings = default_settings,
    directory: Directory | None = None,
    registry: RolePermissionRegistry = default_registry,
    clock: Clock = utc_now,
) -> Services:
    """Wire the core services over ``directory`` (built from settings if omitted)."""
    log = structlog.get_logger()
    if directory is None:
        directory = build_directory(settings)
    log.info(
        "ecclesia.bootstrap.directory_ready",
        directory=type(directory).__name__,
    )

    services = Services(
        directory=directory,
        registry=registry,
        resolver=IdentityResolver(
            directory,
            registry,
            clock,
            default_congregation_id=settings.default_congregation_id,
        ),
        hierarchy=HierarchyStore(directory),
        sync=HeadquartersSyncService(
            directory, clock, headquarters_id=settings.headquarters_id
        ),
        invitations=InvitationManager(
            directory,
            registry,
            clock,
            ttl=timedelta(days=settings.invitation_ttl_days),
            token_bytes=settings.invitation_token_bytes,
        ),
    )
    log.info("ecclesia.bootstrap.services_ready", roles=len(registry.roles()))
    return services
