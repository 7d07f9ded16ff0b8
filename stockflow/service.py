"""
Inventory service: the single entry point used by the CLI and the API.

InventoryService ties the record store, reconciliation, derivation,
leases and invoice back-sync together.  Every operation follows the
same pattern: read the collection fresh, compute, write back.  Nothing
is cached between calls.

  ingest()                     fetch one source, merge into orders, back-sync invoices
  add_orders_to_outstanding()  derive items from unconsumed order lines
  lock_item() / apply_edit() / release_lock()   lease-guarded item edits
  move_item()                  reassign an item to another bubble
  set_order_invoice()          record a late invoice number against an order
  watch()                      polling loop over every configured source

Every operation reports failure through its result model; none raises
for a missing record, a held lease or an unreachable supplier.
"""
import logging
import signal
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from config import Config
from models.order import Order
from models.result import (
    INVALID, LOCKED, NOT_FOUND, PARSE_CORRUPTION, SOURCE_UNAVAILABLE, UNKNOWN_SOURCE,
    DeriveResult, IngestResult, InvoiceOrderUpdate, ItemResult, ItemsWriteResult, LeaseResult,
)
from stockflow.backup import BackupService
from stockflow.deriver import derive_outstanding
from stockflow.invoice_sync import count_changes, sync_invoices
from stockflow.leases import LeaseManager, find_item, is_locked
from stockflow.normalizer import normalize_order
from stockflow.reconciler import canonical_key, reconcile
from stockflow.sources import SourceAdapter, discover_sources
from stockflow.stock import iso, normalize_items, summarize_items, utc_now
from stockflow.store import COLLECTIONS, ITEMS, ORDERS, CorruptCollection, RecordStore

logger = logging.getLogger(__name__)


class InventoryService:
    """Orchestrates the outstanding-inventory core over one data directory."""

    def __init__(
        self,
        config: Optional[Config] = None,
        sources: Optional[dict[str, SourceAdapter]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or Config()
        self.config.ensure_data_dir()
        self.clock = clock or utc_now

        self.store = RecordStore(self.config)
        self.leases = LeaseManager(self.store, self.config.lease_seconds, self.clock)

        self.sources: dict[str, SourceAdapter] = (
            dict(sources) if sources is not None else discover_sources(self.config.sources_dir)
        )
        if self.sources:
            logger.info("Sources available: %s", ", ".join(sorted(self.sources)))

        self.backup_service = BackupService(self.config, self.store)
        self._last_backup_run = self.backup_service.get_last_backup_time()

    def register_source(self, adapter: SourceAdapter) -> None:
        self.sources[adapter.name.lower()] = adapter

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def read_items(self) -> list[dict]:
        """
        Items as shown on the board, with defaults filled in.  Records that
        had no uid are given one and written back so the uid stays stable.
        """
        try:
            with self.store.editing(ITEMS) as items:
                normalized = normalize_items(items, self.config.default_bubble, self.clock)
                if any(not item.get("uid") for item in items):
                    logger.info("Assigned uids to items missing one")
                    items[:] = normalized
        except CorruptCollection as exc:
            logger.error("Items not shown: %s", exc)
            return []
        return normalized

    def write_items(self, records: list[dict]) -> ItemsWriteResult:
        """
        Replace the items collection.  Items another session holds under a
        live lease keep their stored version and are reported in held.
        An unreadable items file is replaced outright.
        """
        now = self.clock()
        records = [dict(r) for r in records]
        try:
            with self.store.editing(ITEMS) as items:
                locked = {str(i["uid"]): i for i in items if i.get("uid") and is_locked(i, now)}
                held: list[str] = []
                merged = []
                for record in records:
                    uid = str(record.get("uid") or "")
                    if uid in locked:
                        stored = locked.pop(uid)
                        if record != stored:
                            held.append(uid)
                        merged.append(stored)
                    else:
                        merged.append(record)
                # Locked items the caller left out stay as well
                held.extend(locked)
                merged.extend(locked.values())
                written = merged != items
                items[:] = merged
        except CorruptCollection as exc:
            logger.warning("Replacing unreadable items file: %s", exc)
            written = self.store.write(ITEMS, records)
            merged, held = records, []

        if held:
            logger.warning("Kept %d item(s) under edit lease: %s", len(held), ", ".join(held))
        return ItemsWriteResult(ok=True, written=written, count=len(merged), held=held)

    def subscribe_items(self, listener: Callable[[list], None], emit_initial: bool = True):
        """Call listener(items) now and whenever the items collection changes."""
        def _normalized(records: list) -> None:
            listener(normalize_items(records, self.config.default_bubble, self.clock))

        return self.store.subscribe(ITEMS, _normalized, emit_initial=emit_initial)

    def summary(self) -> dict:
        return summarize_items(self.store.read(ITEMS))

    def export_items(self, path: str | Path) -> int:
        """Copy the items collection to an arbitrary JSON file.  Returns the record count."""
        items = self.store.read(ITEMS)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.store.serialize(items), encoding="utf-8")
        logger.info("Exported %d item(s) to %s", len(items), path)
        return len(items)

    # ------------------------------------------------------------------
    # Leases and item edits
    # ------------------------------------------------------------------

    def lock_item(self, uid: str) -> LeaseResult:
        return self.leases.acquire(uid)

    def apply_edit(self, uid: str, patch: dict) -> LeaseResult:
        return self.leases.apply_edit(uid, patch)

    def release_lock(self, uid: str) -> LeaseResult:
        return self.leases.release(uid)

    def move_item(self, uid: str, bubble: str) -> ItemResult:
        """Reassign an item's bubble.  Refused while another session holds its lease."""
        bubble = (bubble or "").strip()
        if not bubble:
            return ItemResult.failure(INVALID, "Bubble name is required")

        try:
            with self.store.editing(ITEMS) as items:
                item = find_item(items, uid)
                if item is None:
                    return ItemResult.failure(NOT_FOUND, f"No item with uid {uid}")
                if self.leases.locked_now(item):
                    logger.warning("Move of %s refused: item is being edited", uid)
                    return ItemResult.failure(LOCKED, "Item is being edited in another session")
                item["allocated_to"] = bubble
                item["last_moved_at"] = iso(self.clock())
                updated = dict(item)
        except CorruptCollection as exc:
            logger.error("Move of %s refused: %s", uid, exc)
            return ItemResult.failure(PARSE_CORRUPTION, str(exc))
        logger.info("Moved %s to %s", uid, bubble)
        return ItemResult(ok=True, item=updated)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def read_orders(self) -> list[dict]:
        return self.store.read(ORDERS)

    def write_orders(self, records: list[dict]) -> int:
        """
        Replace the orders collection (UI edits of flags and journal
        fields), then back-sync invoice numbers.  Returns items synced.
        """
        orders = []
        for record in records:
            try:
                orders.append(normalize_order(record).to_record())
            except ValidationError as exc:
                logger.error("Rejected malformed order %r: %s", record.get("reference"), exc)
                raise ValueError(f"Malformed order {record.get('reference')!r}") from exc
        self.store.write(ORDERS, orders)
        return self._back_sync(orders)

    def set_order_invoice(self, reference: str, invoice: str) -> InvoiceOrderUpdate:
        """Record the supplier invoice number for an order, then back-sync items."""
        key = canonical_key(reference)
        invoice = (invoice or "").strip()
        if not key or not invoice:
            return InvoiceOrderUpdate.failure(
                INVALID, "Reference and invoice number are required", reference=reference or "",
            )

        try:
            with self.store.editing(ORDERS) as orders:
                index = next(
                    (i for i, o in enumerate(orders) if canonical_key(o.get("reference")) == key),
                    None,
                )
                if index is None:
                    return InvoiceOrderUpdate.failure(
                        NOT_FOUND, f"No order with reference {reference}", reference=reference,
                    )
                record = dict(orders[index])
                record["source_invoice"] = invoice
                record["hasInvoiceNum"] = True
                orders[index] = normalize_order(record).to_record()
        except CorruptCollection as exc:
            logger.error("Invoice for %s not recorded: %s", reference, exc)
            return InvoiceOrderUpdate.failure(PARSE_CORRUPTION, str(exc), reference=reference)

        synced = self._back_sync(orders)
        logger.info("Invoice %s recorded for %s (%d item(s) synced)", invoice, reference, synced)
        return InvoiceOrderUpdate(ok=True, reference=reference, invoices_synced=synced)

    def pending_invoice_orders(self) -> list[dict]:
        """Orders with a reference but no supplier invoice number yet."""
        return [
            o for o in self.store.read(ORDERS)
            if canonical_key(o.get("reference")) and not str(o.get("source_invoice") or "").strip()
        ]

    def sync_invoices(self) -> int:
        return self._back_sync(self.store.read(ORDERS))

    # ------------------------------------------------------------------
    # Ingestion and derivation
    # ------------------------------------------------------------------

    def ingest(self, source_name: str) -> IngestResult:
        """
        Run one source adapter and merge its orders into the collection.

        The store is read before the fetch only to tell the adapter what
        detail it already has, and re-read immediately before the merge.
        A failed fetch writes nothing.
        """
        name = (source_name or "").strip().lower()
        adapter = self.sources.get(name)
        if adapter is None:
            logger.warning("Unknown source: %s", source_name)
            return IngestResult.failure(UNKNOWN_SOURCE, f"No source named {source_name!r}", source=name)

        session_dir = self.config.sources_dir / name
        fetch = adapter.run(session_dir, self.store.read(ORDERS))
        if not fetch.ok:
            return IngestResult.failure(
                SOURCE_UNAVAILABLE, fetch.error or "Source failed", source=name,
                status_log=fetch.status_log,
            )

        incoming: list[Order] = []
        for raw in fetch.orders:
            try:
                incoming.append(normalize_order(raw, source=name))
            except ValidationError as exc:
                logger.error("Skipping malformed %s order %r: %s", name, raw.get("reference"), exc)

        try:
            with self.store.editing(ORDERS) as orders:
                outcome = reconcile(orders, incoming)
                orders[:] = [order.to_record() for order in outcome.orders]
        except CorruptCollection as exc:
            logger.error("Ingest of %s not merged: %s", name, exc)
            return IngestResult.failure(
                PARSE_CORRUPTION, str(exc), source=name, fetched=len(fetch.orders),
                status_log=fetch.status_log,
            )

        synced = self._back_sync(orders)
        logger.info(
            "Ingested %s: %d fetched, %d new, %d updated, %d total",
            name, len(fetch.orders), outcome.added, outcome.updated, len(orders),
        )
        return IngestResult(
            ok=True,
            source=name,
            fetched=len(fetch.orders),
            added=outcome.added,
            updated=outcome.updated,
            total=len(orders),
            invoices_synced=synced,
            status_log=fetch.status_log,
        )

    def add_orders_to_outstanding(self) -> DeriveResult:
        """
        Derive one item per unconsumed order line.  The items collection is
        written before the orders collection carrying the flipped flags.
        """
        try:
            with self.store.editing(ORDERS) as orders, self.store.editing(ITEMS) as items:
                derivation = derive_outstanding(
                    orders, items, default_bubble=self.config.default_bubble, now=self.clock,
                )
                items.extend(derivation.new_items)
                if derivation.new_items or derivation.recovered:
                    orders[:] = [order.to_record() for order in derivation.orders]
        except CorruptCollection as exc:
            logger.error("Derivation skipped: %s", exc)
            return DeriveResult.failure(PARSE_CORRUPTION, str(exc))

        if derivation.new_items or derivation.recovered:
            self._back_sync(orders)
        return DeriveResult(
            ok=True,
            created=len(derivation.new_items),
            recovered=derivation.recovered,
            items=derivation.new_items,
        )

    # ------------------------------------------------------------------
    # Collection paths and settings
    # ------------------------------------------------------------------

    def paths(self) -> dict[str, str]:
        result = {c: str(self.store.path(c)) for c in COLLECTIONS}
        result["settings"] = str(self.config.settings.path)
        return result

    def set_collection_path(self, collection: str, path: Optional[str | Path]) -> Path:
        """Move a collection to path, or back to its default when path is None."""
        was_watching = self.store.watching
        if was_watching:
            self.store.stop_watching()
        new_path = self.store.relocate(collection, path)
        if was_watching:
            self.store.start_watching()
        return new_path

    def reset_collection_path(self, collection: str) -> Path:
        return self.set_collection_path(collection, None)

    # ------------------------------------------------------------------
    # Watch mode
    # ------------------------------------------------------------------

    def run_cycle(self, names: list[str]) -> list[IngestResult]:
        """One pass of watch mode: backup if due, every source, then derivation."""
        self._run_periodic_backup()
        results = [self.ingest(name) for name in names]
        if self.config.auto_derive and any(r.ok for r in results):
            self.add_orders_to_outstanding()
        return results

    def watch(self, interval: Optional[int] = None, sources: Optional[list[str]] = None) -> None:
        """
        Poll every configured source until SIGINT/SIGTERM.

        Sources default to config.enabled_sources, then to every
        registered adapter.  The collection watcher runs for the duration
        so subscribers see external edits too.
        """
        names = [n.lower() for n in (sources or self.config.enabled_sources or sorted(self.sources))]
        if not names:
            raise ValueError("No sources configured for watch mode")
        interval = interval if interval is not None else self.config.poll_interval_seconds

        logger.info("Watch mode started: sources=%s  interval=%ds", ",".join(names), interval)
        logger.info("Press Ctrl-C to stop.")

        _shutdown = {"requested": False}

        def _request_shutdown(signum, frame):  # noqa: ANN001
            _shutdown["requested"] = True
            logger.info("Shutdown signal received, finishing current pass then exiting.")

        signal.signal(signal.SIGINT, _request_shutdown)
        signal.signal(signal.SIGTERM, _request_shutdown)

        passes = failures = 0
        self.store.start_watching()
        try:
            while not _shutdown["requested"]:
                results = self.run_cycle(names)
                passes += 1
                failures += sum(1 for r in results if not r.ok)

                sleep_until = time.monotonic() + interval
                while time.monotonic() < sleep_until and not _shutdown["requested"]:
                    time.sleep(1)
        finally:
            self.store.stop_watching()
            logger.info("Watch mode stopped. %d pass(es), %d source failure(s).", passes, failures)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _back_sync(self, orders: list[dict]) -> int:
        """Push invoice numbers from orders onto items.  Returns items changed."""
        try:
            with self.store.editing(ITEMS) as items:
                synced = sync_invoices(orders, items)
                changed = count_changes(items, synced)
                items[:] = synced
        except CorruptCollection as exc:
            logger.error("Invoice back-sync skipped: %s", exc)
            return 0
        return changed

    def _run_periodic_backup(self) -> None:
        if not self.config.backup_enabled:
            return

        now = datetime.now()
        interval = self.config.backup_interval_hours
        if not self._last_backup_run or (now - self._last_backup_run).total_seconds() >= interval * 3600:
            try:
                self.backup_service.create_backup()
                self._last_backup_run = now
            except Exception as e:
                logger.error("Scheduled backup failed: %s", e)

    def check_setup(self) -> dict:
        """Report the state of the data files, sources and backups."""
        status = {}
        for collection in COLLECTIONS:
            path = self.store.path(collection)
            status[collection] = {
                "path": str(path),
                "exists": path.exists(),
                "count": len(self.store.read(collection)) if path.exists() else 0,
            }
        status["settings"] = {
            "path": str(self.config.settings.path),
            "exists": self.config.settings.path.exists(),
        }
        status["sources"] = {
            "path": str(self.config.sources_dir),
            "exists": self.config.sources_dir.exists(),
            "names": sorted(self.sources),
        }
        status["backups"] = {
            "path": str(self.backup_service.backup_dir),
            "enabled": self.config.backup_enabled,
            "count": len(self.backup_service.list_backups()),
        }
        return status
