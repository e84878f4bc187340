"""Command-line interface for ambassador program operators."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from skillstudio.api.v1.webhooks import cleanup_old_events
from skillstudio.auth.local import LocalAuthService
from skillstudio.errors import StudioError
from skillstudio.logging_config import configure_logging, get_logger
from skillstudio.referral.ambassador import ambassador_service
from skillstudio.referral.ledger import commission_ledger
from skillstudio.referral.models import Ambassador, CommissionKind, CommissionStatus, OnboardingStep
from skillstudio.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="skillstudio",
    help="Skills Studio - ambassador program operations",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()

auth_service = LocalAuthService()


def _ambassador_for_email(email: str) -> Ambassador:
    user = auth_service.get_user_by_email(email)
    if not user:
        console.print(f"[red]No user with email {email}[/red]")
        raise typer.Exit(1)

    ambassador = ambassador_service.get_for_user(user.id)
    if not ambassador:
        console.print(f"[red]{email} is not an ambassador[/red]")
        raise typer.Exit(1)

    return ambassador


@app.command("init-db")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("ambassador-show")
def show_ambassador(
    email: Annotated[str, typer.Argument(help="Ambassador's account email")],
) -> None:
    """Show an ambassador's onboarding state."""
    ambassador = _ambassador_for_email(email)

    console.print(f"[bold]Ambassador ID:[/bold] {ambassador.id}")
    console.print(f"[bold]Referral code:[/bold] {ambassador.referral_code or 'N/A'}")
    console.print(f"[bold]Step:[/bold] {ambassador.onboarding_step} ({ambassador.step.name.lower()})")
    console.print(f"[bold]Social posts:[/bold] {ambassador.social_posts_completed}")
    console.print(f"[bold]Payout account:[/bold] {ambassador.stripe_account_id or 'not connected'}")


@app.command("ambassador-advance")
def advance_ambassador(
    email: Annotated[str, typer.Argument(help="Ambassador's account email")],
) -> None:
    """Bump an ambassador's onboarding step by one, skipping all checks.

    For testing only; this bypasses the real onboarding flow.
    """
    ambassador = _ambassador_for_email(email)
    if ambassador.step >= OnboardingStep.ONBOARDED:
        console.print("[yellow]Already at the final step[/yellow]")
        return

    ambassador = ambassador_service.debug_advance(ambassador.user_id)
    console.print(f"[bold green]✓[/bold green] Step is now {ambassador.onboarding_step}")


@app.command("commission-accrue")
def accrue_commission(
    email: Annotated[str, typer.Argument(help="Ambassador's account email")],
    amount: Annotated[int, typer.Argument(help="Amount in cents")],
    status: Annotated[CommissionStatus, typer.Option("--status", "-s", help="Initial status")] = CommissionStatus.PENDING,
    key: Annotated[str | None, typer.Option("--key", "-k", help="Idempotency key")] = None,
    note: Annotated[str | None, typer.Option("--note", "-n", help="Reason for the adjustment")] = None,
) -> None:
    """Record a manual commission."""
    ambassador = _ambassador_for_email(email)

    try:
        commission, created = commission_ledger.accrue(
            ambassador.id,
            amount,
            status=status,
            kind=CommissionKind.MANUAL,
            idempotency_key=key,
            details={"note": note} if note else None,
        )
    except StudioError as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)

    if created:
        console.print(f"[bold green]✓[/bold green] Commission {commission.id} recorded")
    else:
        console.print(f"[yellow]Key already used by commission {commission.id}; nothing added[/yellow]")


@app.command("commission-mark-paid")
def mark_commission_paid(
    commission_id: Annotated[int, typer.Argument(help="Commission ID")],
    transfer: Annotated[str | None, typer.Option("--transfer", "-t", help="Payout transfer reference")] = None,
) -> None:
    """Mark a pending commission as paid."""
    if commission_ledger.mark_paid(commission_id, transfer):
        console.print(f"[bold green]✓[/bold green] Commission {commission_id} marked paid")
    else:
        console.print(f"[red]Commission {commission_id} not found or not pending[/red]")
        raise typer.Exit(1)


@app.command("ledger-summary")
def ledger_summary(
    email: Annotated[str, typer.Argument(help="Ambassador's account email")],
    limit: Annotated[int, typer.Option("--limit", "-l", help="Entries to list")] = 20,
) -> None:
    """Show an ambassador's earnings and recent commissions."""
    ambassador = _ambassador_for_email(email)
    summary = commission_ledger.summarize(ambassador.id)

    console.print(f"[bold]Referrals:[/bold] {summary.total_referrals} "
                  f"({summary.active_pro_referrals} pro, {summary.trial_referrals} trial)")
    console.print(f"[bold]Earned:[/bold] ${summary.total_earned / 100:.2f}")
    console.print(f"[bold]Pending:[/bold] ${summary.pending / 100:.2f}")

    commissions = commission_ledger.list_for_ambassador(ambassador.id, limit=limit)
    if not commissions:
        return

    table = Table(title="Commissions")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Status", style="green")
    table.add_column("Amount", justify="right")
    table.add_column("Created At")

    for c in commissions:
        table.add_row(
            str(c.id),
            c.kind.value,
            c.status.value,
            f"${c.amount / 100:.2f}",
            c.created_at.strftime("%Y-%m-%d %H:%M") if c.created_at else "",
        )

    console.print(table)


@app.command("webhook-events-prune")
def prune_webhook_events(
    days: Annotated[int, typer.Option("--days", "-d", min=1, help="Keep events newer than this")] = 30,
) -> None:
    """Delete processed webhook event ids older than DAYS."""
    deleted = cleanup_old_events(days)
    logger.info("webhook_events_pruned", deleted=deleted, days=days)
    console.print(f"[bold green]✓[/bold green] Removed {deleted} processed webhook events")


if __name__ == "__main__":
    app()
