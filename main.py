#!/usr/bin/env python3
"""
Outstanding Inventory — CLI entry point.

Usage examples:
  python main.py check                          # Verify data files and sources
  python main.py ingest world cbk               # Fetch and merge two sources
  python main.py ingest --all                   # Every registered source
  python main.py derive                         # Turn new order lines into items
  python main.py set-invoice PO-100 INV-55      # Record a late invoice number
  python main.py summary                        # Item counts

  python main.py watch                          # Poll sources, derive, back up
  python main.py watch --interval 60 -s world   # One source every minute

  python main.py export-sage sage_import.csv    # Sage purchase import file
  python main.py export-items items_copy.json
  python main.py paths --items /mnt/share/items.json
  python main.py serve --port 8000              # HTTP backend for the board UI
"""
import json
import logging
import sys
from pathlib import Path

import click

from config import Config
from stockflow.sage_export import export_sage_csv
from stockflow.service import InventoryService
from stockflow.store import ITEMS, ORDERS


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _service(ctx: click.Context) -> InventoryService:
    data_dir = ctx.obj.get("data_dir")
    config = Config(data_dir=Path(data_dir)) if data_dir else Config()
    return InventoryService(config)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, type=click.Path(file_okay=False),
              help="Data directory (default: STOCKFLOW_DATA_DIR or ./data)")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, data_dir: str | None) -> None:
    """Outstanding Inventory — merge supplier orders and track outstanding stock."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["data_dir"] = data_dir
    _setup_logging(verbose)


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify that the collection files, sources and backups are in place."""
    service = _service(ctx)
    status = service.check_setup()

    click.echo("\n=== Inventory Setup Check ===\n")
    for key, label in [(ITEMS, "Items file"), (ORDERS, "Orders file")]:
        info = status[key]
        tick = "✓" if info["exists"] else "✗"
        click.echo(f"  {label:<14} {tick}  {info['path']}  ({info['count']} records)")

    settings = status["settings"]
    click.echo(f"  {'Settings':<14} {'✓' if settings['exists'] else '-'}  {settings['path']}")

    sources = status["sources"]
    click.echo()
    if sources["names"]:
        click.echo(f"  Sources:       {', '.join(sources['names'])}")
    else:
        click.echo("  Sources:       ✗ none found")
        click.echo(f"     → Add one folder per supplier under {sources['path']}")

    backups = status["backups"]
    state = "enabled" if backups["enabled"] else "disabled"
    click.echo(f"  Backups:       {state}, {backups['count']} in {backups['path']}")
    click.echo()


# --------------------------------------------------------------------
# ingestion / derivation
# --------------------------------------------------------------------

@cli.command()
@click.argument("sources", nargs=-1)
@click.option("--all", "all_sources", is_flag=True, help="Run every registered source")
@click.option("--derive/--no-derive", default=False, help="Derive outstanding items afterwards")
@click.pass_context
def ingest(ctx: click.Context, sources: tuple[str, ...], all_sources: bool, derive: bool) -> None:
    """Fetch SOURCES and merge their orders into the orders collection."""
    service = _service(ctx)
    names = sorted(service.sources) if all_sources else list(sources)
    if not names:
        click.echo("Error: name at least one source, or pass --all.", err=True)
        sys.exit(1)

    failed = 0
    for name in names:
        result = service.ingest(name)
        if result.ok:
            click.echo(
                f"  ✓ {name:<10} {result.fetched} fetched, {result.added} new, "
                f"{result.updated} updated, {result.invoices_synced} invoice(s) synced"
            )
        else:
            failed += 1
            click.echo(f"  ✗ {name:<10} {result.reason}: {result.message}", err=True)

    if derive:
        derived = service.add_orders_to_outstanding()
        click.echo(f"\n  {derived.created} outstanding item(s) created")
    if failed:
        sys.exit(1)


@cli.command()
@click.pass_context
def derive(ctx: click.Context) -> None:
    """Create outstanding items for every order line not yet added."""
    result = _service(ctx).add_orders_to_outstanding()
    click.echo(f"Created {result.created} item(s).")
    if result.recovered:
        click.echo(f"Re-flagged {result.recovered} line(s) that already had items.")


@cli.command("sync-invoices")
@click.pass_context
def sync_invoices(ctx: click.Context) -> None:
    """Copy order invoice numbers onto their outstanding items."""
    count = _service(ctx).sync_invoices()
    click.echo(f"Updated {count} item(s).")


@cli.command("set-invoice")
@click.argument("reference")
@click.argument("invoice")
@click.pass_context
def set_invoice(ctx: click.Context, reference: str, invoice: str) -> None:
    """Record INVOICE as the supplier invoice number of order REFERENCE."""
    result = _service(ctx).set_order_invoice(reference, invoice)
    if not result.ok:
        click.echo(f"Error: {result.message}", err=True)
        sys.exit(1)
    click.echo(f"✓ {reference} → {invoice} ({result.invoices_synced} item(s) updated)")


@cli.command()
@click.option("--pending-invoices", is_flag=True, help="List orders still missing an invoice number")
@click.pass_context
def summary(ctx: click.Context, pending_invoices: bool) -> None:
    """Show item counts by bubble and sold state."""
    service = _service(ctx)
    stats = service.summary()
    click.echo(f"\n  Items:     {stats['items']}  (quantity {stats['quantity']})")
    click.echo(f"  Sold:      {stats['sold']}")
    click.echo(f"  Unsold:    {stats['unsold']}")
    for bubble, count in sorted(stats["by_bubble"].items()):
        click.echo(f"    {bubble:<12} {count}")
    if stats["last_moved_at"]:
        click.echo(f"  Last move: {stats['last_moved_at']}")

    if pending_invoices:
        pending = service.pending_invoice_orders()
        click.echo(f"\n  Orders without invoice number: {len(pending)}")
        for order in pending:
            click.echo(f"    {order.get('reference')}  {order.get('warehouse', '')}")
    click.echo()


# --------------------------------------------------------------------
# watch command
# --------------------------------------------------------------------

@cli.command()
@click.option(
    "--interval", "-i", default=None, type=int,
    help="Seconds between passes (default: POLL_INTERVAL env var or 300)",
)
@click.option("--source", "-s", "sources", multiple=True, help="Source to poll (repeatable)")
@click.option("--no-derive", is_flag=True, help="Do not derive outstanding items after each pass")
@click.pass_context
def watch(ctx: click.Context, interval: int | None, sources: tuple[str, ...], no_derive: bool) -> None:
    """
    Poll sources on an interval, merge their orders and derive new items.

    \b
    Examples:
      python main.py watch
      python main.py watch --interval 60 -s world -s cbk
    """
    service = _service(ctx)
    if interval is not None:
        service.config.poll_interval_seconds = interval
    if no_derive:
        service.config.auto_derive = False

    names = list(sources) or service.config.enabled_sources or sorted(service.sources)
    click.echo(
        f"\n  Sources:   {', '.join(names) or '(none)'}\n"
        f"  Interval:  every {service.config.poll_interval_seconds}s\n"
        f"  Items:     {service.store.path(ITEMS)}\n"
        f"  Orders:    {service.store.path(ORDERS)}\n"
    )
    click.echo("  Press Ctrl-C to stop.\n")
    try:
        service.watch(interval=service.config.poll_interval_seconds, sources=names)
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# --------------------------------------------------------------------
# backup / export
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def backup(ctx: click.Context) -> None:
    """Create a timestamped ZIP of both collections and the settings."""
    service = _service(ctx)
    try:
        name = service.backup_service.create_backup()
    except Exception as e:
        click.echo(f"\n✗ Backup failed: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Backup successful: {service.backup_service.backup_dir / name}")


@cli.command("export-sage")
@click.argument("output", type=click.Path(dir_okay=False))
@click.option("--template", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Jinja2 template (default: SAGE_EXPORT_TEMPLATE or built-in)")
@click.option("--pending-only", is_flag=True, help="Skip orders already entered in Sage")
@click.pass_context
def export_sage(ctx: click.Context, output: str, template: str | None, pending_only: bool) -> None:
    """Write the Sage purchase import CSV to OUTPUT."""
    service = _service(ctx)
    template_path = Path(template) if template else service.config.sage_template
    count = export_sage_csv(service.read_orders(), Path(output), template_path, pending_only)
    click.echo(f"✓ {count} order(s) written to {output}")


@cli.command("export-items")
@click.argument("output", type=click.Path(dir_okay=False))
@click.pass_context
def export_items(ctx: click.Context, output: str) -> None:
    """Copy the items collection to OUTPUT."""
    count = _service(ctx).export_items(output)
    click.echo(f"✓ {count} item(s) written to {output}")


@cli.command()
@click.option("--items", "items_path", default=None, type=click.Path(dir_okay=False),
              help="Move the items collection to this file")
@click.option("--orders", "orders_path", default=None, type=click.Path(dir_okay=False),
              help="Move the orders collection to this file")
@click.option("--reset", type=click.Choice([ITEMS, ORDERS]), multiple=True,
              help="Return a collection to its default file")
@click.pass_context
def paths(ctx: click.Context, items_path: str | None, orders_path: str | None,
          reset: tuple[str, ...]) -> None:
    """Show or change where the collections are stored."""
    service = _service(ctx)
    for collection in reset:
        service.reset_collection_path(collection)
    if items_path:
        service.set_collection_path(ITEMS, items_path)
    if orders_path:
        service.set_collection_path(ORDERS, orders_path)
    click.echo(json.dumps(service.paths(), indent=2))


# --------------------------------------------------------------------
# serve command
# --------------------------------------------------------------------

@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port")
@click.option("--reload", is_flag=True, help="Reload on code changes (development)")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, reload: bool) -> None:
    """Run the HTTP backend for the board UI."""
    import os

    import uvicorn

    if ctx.obj.get("data_dir"):
        os.environ["STOCKFLOW_DATA_DIR"] = str(Path(ctx.obj["data_dir"]).resolve())
    uvicorn.run("dashboard.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
