"""
Directory Audit Tool — consistency check of the stored organization.

Connects to the Directory and reports:

- how many congregations claim to be the headquarters (must be at most one)
- users whose stored permissions differ from their role's permission set
- invitations still stored as pending although their expiry has passed

Exits with status 1 when the headquarters invariant is broken, or when
``--strict`` is given and drift or stale invitations were found.

Usage:
    python -m ecclesia.directory.audit
    python -m ecclesia.directory.audit --database-url sqlite:///./ecclesia.db
    python -m ecclesia.directory.audit --verbose --strict
    python -m ecclesia.directory.audit --roles
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field

from rich.console import Console
from rich.table import Table

from ecclesia.access.identity import PermissionDrift, permission_drift
from ecclesia.access.registry import RolePermissionRegistry, default_registry
from ecclesia.access.schema import Congregation, Invitation, InvitationStatus, Permission
from ecclesia.clock import Clock, utc_now
from ecclesia.config import settings
from ecclesia.directory.base import Directory

console = Console()


@dataclass
class AuditReport:
    headquarters: list[Congregation] = field(default_factory=list)
    drift: list[PermissionDrift] = field(default_factory=list)
    stale_invitations: list[Invitation] = field(default_factory=list)

    @property
    def headquarters_ok(self) -> bool:
        return len(self.headquarters) <= 1

    def passed(self, strict: bool = False) -> bool:
        if not self.headquarters_ok:
            return False
        if strict and (self.drift or self.stale_invitations):
            return False
        return True


def collect_report(
    directory: Directory,
    registry: RolePermissionRegistry = default_registry,
    clock: Clock = utc_now,
) -> AuditReport:
    """Gather the audit findings without printing anything."""
    now = clock()
    drifts = [permission_drift(user, registry) for user in directory.list_users()]
    return AuditReport(
        headquarters=[u for u in directory.list_units() if u.is_headquarters],
        drift=[d for d in drifts if d.has_drift],
        stale_invitations=[
            inv for inv in directory.list_invitations()
            if inv.status == InvitationStatus.PENDING and inv.is_expired(now)
        ],
    )


def run_audit(directory: Directory, verbose: bool = False, strict: bool = False) -> bool:
    """
    Run the audit and print the report.

    Returns:
        True if the Directory passed, False otherwise.
    """
    console.print("\n[bold blue]═══ Directory Audit ═══[/bold blue]\n")

    report = collect_report(directory)

    hq_count = len(report.headquarters)
    if report.headquarters_ok:
        hq_label = report.headquarters[0].id if report.headquarters else "none"
        console.print(f"  Headquarters: [bold green]✓ {hq_count}[/bold green] ({hq_label})")
    else:
        ids = ", ".join(u.id for u in report.headquarters)
        console.print(f"  Headquarters: [bold red]✗ {hq_count}[/bold red] ({ids})")

    drift_style = "yellow" if report.drift else "green"
    console.print(f"  Users with permission drift: [{drift_style}]{len(report.drift)}[/{drift_style}]")

    stale_style = "yellow" if report.stale_invitations else "green"
    console.print(
        f"  Expired invitations still pending: "
        f"[{stale_style}]{len(report.stale_invitations)}[/{stale_style}]"
    )

    if verbose and report.drift:
        table = Table(title="Permission drift", show_lines=True)
        table.add_column("User", style="cyan")
        table.add_column("Role", style="green")
        table.add_column("Missing", style="red")
        table.add_column("Extra", style="yellow")
        for drift in report.drift:
            table.add_row(
                drift.user_id,
                drift.role.value,
                ", ".join(sorted(p.value for p in drift.missing)) or "—",
                ", ".join(sorted(p.value for p in drift.extra)) or "—",
            )
        console.print(table)

    if verbose and report.stale_invitations:
        table = Table(title="Stale invitations", show_lines=True)
        table.add_column("Id", style="cyan")
        table.add_column("Email")
        table.add_column("Role", style="green")
        table.add_column("Expired at", style="dim")
        for inv in report.stale_invitations:
            table.add_row(inv.id, inv.email, inv.role.value, str(inv.expires_at)[:19])
        console.print(table)

    passed = report.passed(strict)
    verdict = "[bold green]PASSED[/bold green]" if passed else "[bold red]FAILED[/bold red]"
    console.print(f"\n[bold blue]═══ Audit {verdict} ═══[/bold blue]\n")
    return passed


def print_role_table(registry: RolePermissionRegistry = default_registry) -> None:
    """Print the role table and, per permission, the roles holding it."""
    table = Table(title="Role table", show_lines=True)
    table.add_column("Role", style="green")
    table.add_column("Permissions")
    for role, permissions in registry.as_dict().items():
        table.add_row(role, ", ".join(permissions))
    console.print(table)

    holders = Table(title="Permission holders")
    holders.add_column("Permission", style="cyan")
    holders.add_column("Roles", style="green")
    for permission in Permission:
        roles = registry.roles_granting(permission)
        holders.add_row(permission.value, ", ".join(r.value for r in roles) or "—")
    console.print(holders)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Ecclesia Directory consistency auditor")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="List drifted users and stale invitations",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Also fail on permission drift or stale invitations",
    )
    parser.add_argument(
        "--roles",
        action="store_true",
        help="Print the role table and exit",
    )
    args = parser.parse_args(argv)

    if args.roles:
        print_role_table()
        sys.exit(0)

    from ecclesia.directory.service import SqlDirectory

    directory = SqlDirectory(args.database_url or settings.database_url)
    directory.initialize()
    is_valid = run_audit(directory, verbose=args.verbose, strict=args.strict)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
