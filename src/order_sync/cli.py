"""CLI for order-sync using Typer."""

import logging
import sys
from decimal import Decimal
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .categorizer import ItemCategorizer
from .clients.monarch import MonarchClient
from .clients.openai_client import CategoryClassifier
from .config import load_settings
from .db import Database
from .mapper import CategoryMapper
from .providers import ORDER_PARSERS, display_name, load_orders
from .service import SyncOptions, SyncResult, SyncService

app = typer.Typer(
    name="order-sync",
    help="Match retailer orders to Monarch Money transactions and split them by category",
)

console = Console()

PHASE_MESSAGES = {
    "fetching": "Fetching categories and transactions from Monarch...",
    "matching": "Matching orders to transactions...",
    "processing": "Processing orders...",
}

STATUS_STYLES = {
    "success": "green",
    "dry-run": "cyan",
    "skipped": "dim",
    "pending": "yellow",
    "failed": "red",
}


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def format_money(amount: Decimal | None, use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: ($85.02)
    Positive amounts have spaces:      $85.02
    """
    if amount is None:
        return "—"
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"($[red]{abs_amount:,.2f}[/red])"
        return f"(${abs_amount:,.2f})"
    if use_color:
        return f" [green]${abs_amount:,.2f}[/green] "
    return f" ${abs_amount:,.2f} "


def print_progress(phase: str, current: int, total: int) -> None:
    """Print phase changes reported by the sync service."""
    if phase == "completed":
        console.print(f"[bold green]Done[/bold green] ({current}/{total} orders)\n")
    elif phase in PHASE_MESSAGES and current == 0:
        console.print(f"[bold blue]{PHASE_MESSAGES[phase]}[/bold blue]")


def display_result(result: SyncResult, dry_run: bool):
    """Display the outcome of each order in a table."""
    title = f"Sync Run {result.run_id}" + (" (dry run)" if dry_run else "")
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Order", style="cyan")
    table.add_column("Date", width=10)
    table.add_column("Total", justify="right", width=12)
    table.add_column("Transaction", style="dim")
    table.add_column("Splits", justify="right")
    table.add_column("Status")
    table.add_column("Details", no_wrap=False)

    for record in result.records:
        style = STATUS_STYLES.get(record.status, "white")
        details = record.error_message or ""
        if record.multi_delivery:
            details = f"{record.multi_delivery.charge_count} charges consolidated"
            if record.multi_delivery.failed_deletions:
                details += (
                    f"; delete manually: "
                    f"{', '.join(record.multi_delivery.failed_deletions)}"
                )
        table.add_row(
            record.order_id,
            record.order_date.isoformat(),
            format_money(record.order_total),
            record.transaction_id or "",
            str(record.split_count) if record.split_count else "",
            f"[{style}]{record.status}[/{style}]",
            details,
        )

    console.print(table)

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Orders found: {result.orders_found}")
    console.print(f"  Processed: {result.processed_count}")
    console.print(f"  Skipped: {result.skipped_count}")
    console.print(f"  Failed: {result.error_count}")
    if result.cancelled:
        console.print("  [yellow]Run was cancelled before all orders finished[/yellow]")


@app.command()
def sync(
    orders_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="JSON export of provider orders"
    ),
    provider: str = typer.Option(
        ..., "--provider", "-p", help="Order provider (walmart, amazon, costco)"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show what would change without touching Monarch"
    ),
    force: bool = typer.Option(
        False, "--force", help="Reprocess orders that already succeeded"
    ),
    order_id: str | None = typer.Option(
        None, "--order-id", help="Only process this order"
    ),
    lookback_days: int | None = typer.Option(
        None, "--lookback-days", "-d", help="How many days of orders to process"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Match orders to Monarch transactions and apply category splits.

    Orders are read from ORDERS_FILE. Multi-delivery orders are consolidated
    into one transaction first. Single-category orders get their category set
    directly instead of being split.
    """
    setup_logging(verbose)

    if provider not in ORDER_PARSERS:
        console.print(
            f"[bold red]Error:[/bold red] Unknown provider '{provider}'. "
            f"Choose from: {', '.join(sorted(ORDER_PARSERS))}"
        )
        sys.exit(1)

    try:
        settings = load_settings()
        db = Database(settings.database_path)

        orders = load_orders(orders_file, provider)
        console.print(
            f"\n[green]Loaded {len(orders)} {display_name(provider)} orders[/green]\n"
        )

        options = SyncOptions(
            lookback_days=lookback_days or settings.lookback_days,
            dry_run=dry_run,
            force=force,
            order_id=order_id,
        )

        with MonarchClient(settings.monarch_token) as client:
            categorizer = ItemCategorizer(
                mapper=CategoryMapper(db),
                classifier=CategoryClassifier(
                    api_key=settings.openai_api_key, model=settings.openai_model
                ),
            )
            service = SyncService(
                client=client,
                classifier=categorizer,
                database=db,
                matcher_config=settings.matcher_config(),
                transaction_fetch_limit=settings.transaction_fetch_limit,
            )
            result = service.run(
                orders, provider, options=options, progress=print_progress
            )

        display_result(result, dry_run)

        if result.error_count:
            sys.exit(1)

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of records to show"),
    status: str | None = typer.Option(
        None, "--status", "-s", help="Only show records with this status"
    ),
):
    """Show recently processed orders."""
    try:
        settings = load_settings()
        db = Database(settings.database_path)

        records = db.get_recent_records(limit=limit, status=status)
        if not records:
            console.print("[yellow]No processing records found.[/yellow]")
            return

        table = Table(
            title="Processing History", show_header=True, header_style="bold magenta"
        )
        table.add_column("Processed", style="dim")
        table.add_column("Provider")
        table.add_column("Order", style="cyan")
        table.add_column("Total", justify="right", width=12)
        table.add_column("Transaction", style="dim")
        table.add_column("Splits", justify="right")
        table.add_column("Status")
        table.add_column("Error", no_wrap=False)

        for record in records:
            style = STATUS_STYLES.get(record.status, "white")
            table.add_row(
                record.processed_at.strftime("%Y-%m-%d %H:%M"),
                record.provider,
                record.order_id,
                format_money(record.order_total),
                record.transaction_id or "",
                str(record.split_count),
                f"[{style}]{record.status}[/{style}]",
                record.error_message or "",
            )

        console.print(table)

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def runs(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of runs to show"),
):
    """Show recent sync runs."""
    try:
        settings = load_settings()
        db = Database(settings.database_path)

        sync_runs = db.get_recent_sync_runs(limit=limit)
        if not sync_runs:
            console.print("[yellow]No sync runs found.[/yellow]")
            return

        table = Table(title="Sync Runs", show_header=True, header_style="bold magenta")
        table.add_column("ID", justify="right")
        table.add_column("Started", style="dim")
        table.add_column("Provider")
        table.add_column("Dry Run", justify="center")
        table.add_column("Found", justify="right")
        table.add_column("Processed", justify="right", style="green")
        table.add_column("Skipped", justify="right", style="dim")
        table.add_column("Errors", justify="right", style="red")
        table.add_column("Status")

        for run in sync_runs:
            table.add_row(
                str(run.id),
                run.started_at.strftime("%Y-%m-%d %H:%M"),
                display_name(run.provider),
                "yes" if run.dry_run else "",
                str(run.orders_found),
                str(run.processed_count),
                str(run.skipped_count),
                str(run.error_count),
                run.status,
            )

        console.print(table)

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    finally:
        if "db" in locals():
            db.close()


if __name__ == "__main__":
    app()
