"""
Mitgliederverwaltung - CLI Entry Point

Operator commands for the member/Keycloak reconciliation.

Usage:
    # Reconcile all members with Keycloak
    mitglieder sync

    # Show the placeholder email a member would get
    mitglieder placeholder --vorname Anna --nachname Schmidt --id 42
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mitgliederverwaltung.core.config import settings
from mitgliederverwaltung.core.database import async_session_maker
from mitgliederverwaltung.core.exceptions import ConfigIncomplete
from mitgliederverwaltung.core.logging import configure_logging
from mitgliederverwaltung.keycloak.context import KeycloakConfig, KeycloakContext
from mitgliederverwaltung.keycloak.groups import KeycloakGroupClient
from mitgliederverwaltung.keycloak.users import KeycloakUserClient
from mitgliederverwaltung.members.placeholder import make_placeholder_email
from mitgliederverwaltung.members.reconciliation import ReconciliationEngine
from mitgliederverwaltung.members.schemas import SyncSummary
from mitgliederverwaltung.members.store import MemberStore

app = typer.Typer(
    name="mitglieder",
    help="Member administration and Keycloak reconciliation",
    add_completion=False,
)
console = Console()


def print_banner() -> None:
    """Print the application banner."""
    console.print(Panel.fit(
        "[bold blue]Mitgliederverwaltung[/bold blue]\n"
        "[dim]Keycloak account reconciliation[/dim]",
        border_style="blue",
    ))
    console.print()


def print_summary(summary: SyncSummary, show_changes: bool) -> None:
    table = Table(title="Sync Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Members", str(summary.total))
    table.add_row("Linked accounts checked", str(summary.attempted))
    table.add_row("Accounts created", str(summary.users_created))
    table.add_row("Emails updated locally", str(summary.updated))
    table.add_row("Placeholder emails", str(summary.dummy_emails_set))
    table.add_row("Attributes written", str(summary.attributes_updated))
    table.add_row("Skipped", str(summary.skipped))
    console.print(table)

    if show_changes and summary.changes:
        changes = Table(title="Changes")
        changes.add_column("ID", justify="right")
        changes.add_column("Old email")
        changes.add_column("New email")
        changes.add_column("Skipped", style="yellow")
        for change in summary.changes:
            changes.add_row(
                str(change.id),
                change.old_email or "",
                change.new_email,
                change.skipped or "",
            )
        console.print(changes)


@app.command()
def sync(
    changes: bool = typer.Option(
        False, "--changes", "-c", help="Print the per-member change log"
    ),
) -> None:
    """
    Reconcile all members with Keycloak.

    Pulls emails from Keycloak, sets placeholder emails where an account
    has none, writes profile attributes and creates accounts for members
    without one.
    """
    print_banner()
    configure_logging()

    if not settings.keycloak_configured:
        console.print("[yellow]Keycloak configuration incomplete, accounts will be skipped[/yellow]")

    async def run_sync() -> SyncSummary:
        async with KeycloakContext(KeycloakConfig.from_settings(settings)) as ctx:
            async with async_session_maker() as session:
                engine = ReconciliationEngine(
                    MemberStore(session),
                    KeycloakUserClient(ctx),
                    KeycloakGroupClient(ctx),
                    placeholder_domain=settings.mail_placeholder_domain or None,
                )
                return await engine.sync_all()

    try:
        summary = asyncio.run(run_sync())
    except KeyboardInterrupt:
        console.print("\n[yellow]Sync interrupted by user[/yellow]")
        raise typer.Exit(130)
    except Exception as e:
        console.print(f"\n[red]Sync failed: {e}[/red]")
        raise typer.Exit(1)

    print_summary(summary, show_changes=changes)


@app.command()
def placeholder(
    vorname: Optional[str] = typer.Option(None, "--vorname", help="First name"),
    nachname: Optional[str] = typer.Option(None, "--nachname", help="Last name"),
    member_id: Optional[str] = typer.Option(None, "--id", help="Member id"),
    domain: Optional[str] = typer.Option(
        None, "--domain", "-d", help="Domain (default: MAIL_PLACEHOLDER_DOMAIN)"
    ),
) -> None:
    """Print the placeholder email for a name and member id."""
    try:
        email = make_placeholder_email(vorname=vorname, nachname=nachname, id=member_id, domain=domain)
    except ConfigIncomplete as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(email)


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
