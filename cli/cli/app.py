"""payrecon CLI -- operator commands for the reconciliation service.

``init-db`` creates the billing tables for local or dev databases and
``replay`` re-fetches a gateway event by id and reconciles it, which is how
an operator recovers a delivery the gateway gave up on.  Human-readable
output goes to *stderr* via Rich; ``--json`` prints the result to stdout.
"""

from __future__ import annotations

import asyncio
import json
import logging

import typer
from recon_engine.engine import ReconciliationEngine, ReconciliationResult
from recon_engine.errors import ReconciliationError
from recon_engine.gateway import StripeGateway
from recon_engine.notifications import HttpEmailSender, PaymentFailureNotifier
from recon_engine.state.database import create_tables, get_engine, get_session_factory
from rich.console import Console
from rich.table import Table

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="payrecon",
    help="payrecon - Stripe payment event reconciliation",
    no_args_is_help=True,
)
console = Console(stderr=True)

_DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///.payrecon/state.db"

_json_output: bool = False


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine activity to stderr."),
) -> None:
    """Global options applied to every command."""
    global _json_output  # noqa: PLW0603
    _json_output = json_mode
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# init-db
# ---------------------------------------------------------------------------


async def _init_db(database_url: str) -> None:
    engine = get_engine(database_url)
    try:
        await create_tables(engine)
    finally:
        await engine.dispose()


@app.command("init-db")
def init_db(
    database_url: str = typer.Option(
        _DEFAULT_DATABASE_URL,
        "--database-url",
        envvar="API_DATABASE_URL",
        help="Database connection URL.",
    ),
) -> None:
    """Create the billing tables if they do not exist."""
    try:
        asyncio.run(_init_db(database_url))
    except Exception as exc:
        console.print(f"[red]Failed to create tables: {exc}[/red]")
        raise typer.Exit(code=1) from exc

    if _json_output:
        typer.echo(json.dumps({"status": "ok"}))
    else:
        console.print("[green]Database tables ready.[/green]")


# ---------------------------------------------------------------------------
# replay
# ---------------------------------------------------------------------------


async def _replay(
    event_id: str,
    *,
    database_url: str,
    stripe_secret_key: str,
    webhook_secret: str,
    email_service_url: str | None,
    ops_email: str,
) -> ReconciliationResult:
    engine = get_engine(database_url)
    sender = HttpEmailSender(email_service_url) if email_service_url else None
    try:
        notifier = PaymentFailureNotifier(sender, ops_email) if sender is not None else None
        reconciler = ReconciliationEngine(
            get_session_factory(engine),
            webhook_secret,
            notifier=notifier,
            gateway=StripeGateway(stripe_secret_key),
        )
        return await reconciler.replay(event_id)
    finally:
        if sender is not None:
            await sender.close()
        await engine.dispose()


def _display_result(result: ReconciliationResult) -> None:
    table = Table(title="Replay result", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Event", result.event_id)
    table.add_row("Type", result.event_type)
    table.add_row("Outcome", result.outcome.value)
    console.print(table)


@app.command()
def replay(
    event_id: str = typer.Argument(..., help="Gateway event id (evt_...)."),
    database_url: str = typer.Option(
        _DEFAULT_DATABASE_URL,
        "--database-url",
        envvar="API_DATABASE_URL",
        help="Database connection URL.",
    ),
    stripe_secret_key: str = typer.Option(
        ...,
        "--stripe-secret-key",
        envvar="API_STRIPE_SECRET_KEY",
        help="Stripe API key used to fetch the event.",
        show_default=False,
    ),
    webhook_secret: str = typer.Option(
        ...,
        "--webhook-secret",
        envvar="API_STRIPE_WEBHOOK_SECRET",
        help="Webhook signing secret.",
        show_default=False,
    ),
    email_service_url: str | None = typer.Option(
        None,
        "--email-service-url",
        envvar="API_EMAIL_SERVICE_URL",
        help="Mail service endpoint; omit to skip notifications.",
    ),
    ops_email: str = typer.Option(
        "",
        "--ops-email",
        envvar="API_OPS_EMAIL",
        help="Operations address for payment failure notices.",
    ),
) -> None:
    """Fetch EVENT_ID from Stripe and reconcile it.

    An event that previously found no matching record is processed again;
    one that was already applied is reported as a duplicate and changes
    nothing.
    """
    try:
        result = asyncio.run(
            _replay(
                event_id,
                database_url=database_url,
                stripe_secret_key=stripe_secret_key,
                webhook_secret=webhook_secret,
                email_service_url=email_service_url,
                ops_email=ops_email,
            )
        )
    except ReconciliationError as exc:
        console.print(f"[red]Replay of {event_id} failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc

    if _json_output:
        typer.echo(
            json.dumps(
                {
                    "event_id": result.event_id,
                    "event_type": result.event_type,
                    "outcome": result.outcome.value,
                }
            )
        )
    else:
        _display_result(result)
