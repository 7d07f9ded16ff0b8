"""
Source adapters: the per-supplier components that produce raw orders.

Every adapter implements fetch_orders(session_dir, existing_orders) and
returns a FetchResult.  The core never calls fetch_orders() directly;
it calls run(), which turns any exception into FetchResult(ok=False) so
one supplier's outage never escapes into the ingestion loop.

Browser-automated portals live outside this repository.  Two file-backed
adapters ship here, for portals whose orders are dropped on disk by an
external scraper or exported by hand:

  JsonFileSource   <session_dir>/*.json          list pages (arrays of orders)
                   <session_dir>/details/<ref>.json   optional per-order line items
  CsvOrderSource   <session_dir>/orders.csv      order headers
                   <session_dir>/order_lines.csv line items, linked by reference
"""
import csv
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from models.result import FetchResult
from stockflow.normalizer import to_number
from stockflow.reconciler import canonical_key

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "y", "x"}


class SourceUnavailable(Exception):
    """Raised inside an adapter when its supplier cannot be reached."""


class SourceAdapter(ABC):
    """One supplier portal."""

    name: str = ""

    @abstractmethod
    def fetch_orders(self, session_dir: Path, existing_orders: list[dict]) -> FetchResult:
        """
        Fetch the supplier's current orders.

        existing_orders is the stored order collection; adapters use it to
        skip fetching line-item detail they already have.
        """

    def run(self, session_dir: Path, existing_orders: list[dict]) -> FetchResult:
        try:
            result = self.fetch_orders(Path(session_dir), existing_orders)
        except Exception as exc:
            logger.error("Source %s failed: %s", self.name, exc, exc_info=True)
            return FetchResult(ok=False, source=self.name, error=str(exc),
                               status_log=[f"{self.name}: {exc}"])
        if not result.ok:
            logger.warning("Source %s reported failure: %s", self.name, result.error)
        return result


def _stored_detail(existing_orders: list[dict]) -> set[str]:
    """Canonical references of stored orders that already have line items."""
    return {
        canonical_key(o.get("reference"))
        for o in existing_orders
        if o.get("reference") and o.get("lineItems")
    }


class JsonFileSource(SourceAdapter):
    """
    Orders saved as JSON by an external scraper.

    Each *.json file in the session directory is either an array of
    orders or an object with an "orders" array.  Line items missing from
    the list record are looked up in details/<reference>.json, but only
    for orders whose stored copy has no line items yet.
    """

    def __init__(self, name: str, directory: Optional[Path] = None) -> None:
        self.name = name
        self.directory = Path(directory) if directory else None

    def fetch_orders(self, session_dir: Path, existing_orders: list[dict]) -> FetchResult:
        folder = self.directory or session_dir
        if not folder.is_dir():
            raise SourceUnavailable(f"Order folder not found: {folder}")

        log: list[str] = []
        orders: list[dict] = []
        for path in sorted(folder.glob("*.json")):
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            batch = data.get("orders") if isinstance(data, dict) else data
            if not isinstance(batch, list):
                log.append(f"{path.name}: no order array, skipped")
                continue
            orders.extend(o for o in batch if isinstance(o, dict))
            log.append(f"{path.name}: {len(batch)} order(s)")

        have_detail = _stored_detail(existing_orders)
        details_dir = folder / "details"
        fetched = skipped = 0
        for order in orders:
            if order.get("lineItems"):
                continue
            key = canonical_key(order.get("reference"))
            if not key:
                continue
            if key in have_detail:
                skipped += 1
                continue
            detail_path = details_dir / f"{str(order['reference']).strip()}.json"
            if not detail_path.exists():
                continue
            try:
                with open(detail_path, encoding="utf-8") as f:
                    lines = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                # Keep the list-level fields; detail is retried next pass
                log.append(f"detail {order['reference']}: {exc}")
                logger.warning("Detail for %s unreadable: %s", order["reference"], exc)
                continue
            if isinstance(lines, dict):
                lines = lines.get("lineItems") or []
            if isinstance(lines, list) and lines:
                order["lineItems"] = lines
                order["detailStored"] = True
                fetched += 1

        log.append(f"{len(orders)} order(s), {fetched} detail fetched, {skipped} detail already stored")
        logger.info("Source %s: %s", self.name, log[-1])
        return FetchResult(ok=True, source=self.name, orders=orders, status_log=log)


class CsvOrderSource(SourceAdapter):
    """
    Orders exported as two CSV files.

    orders.csv:
      reference, order_date, warehouse, total, source_invoice, status
    order_lines.csv:
      reference, line_code, part_number, description, quantity,
      cost_price, extended, core
    """

    def __init__(self, name: str, directory: Optional[Path] = None) -> None:
        self.name = name
        self.directory = Path(directory) if directory else None

    def fetch_orders(self, session_dir: Path, existing_orders: list[dict]) -> FetchResult:
        folder = self.directory or session_dir
        orders_path = folder / "orders.csv"
        lines_path = folder / "order_lines.csv"
        if not orders_path.exists():
            raise SourceUnavailable(f"Order CSV not found: {orders_path}")

        orders: dict[str, dict] = {}
        with open(orders_path, newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                reference = (row.get("reference") or "").strip()
                if not reference:
                    logger.warning("Order row without reference skipped in %s", orders_path)
                    continue
                order = {
                    "reference": reference,
                    "orderDate": (row.get("order_date") or "").strip() or None,
                    "warehouse": (row.get("warehouse") or "").strip(),
                    "total": to_number(row.get("total")),
                    "status": (row.get("status") or "").strip(),
                }
                invoice = (row.get("source_invoice") or "").strip()
                if invoice:
                    order["source_invoice"] = invoice
                    order["hasInvoiceNum"] = True
                orders[canonical_key(reference)] = order

        have_detail = _stored_detail(existing_orders)
        if lines_path.exists():
            with open(lines_path, newline="", encoding="utf-8") as f:
                for row in csv.DictReader(f):
                    key = canonical_key(row.get("reference"))
                    if key not in orders:
                        logger.warning("Order line references unknown order: %s", key)
                        continue
                    if key in have_detail:
                        continue
                    orders[key].setdefault("lineItems", []).append({
                        "partLineCode":    (row.get("line_code") or "").strip(),
                        "partNumber":      (row.get("part_number") or "").strip(),
                        "partDescription": (row.get("description") or "").strip(),
                        "quantity":        (row.get("quantity") or "").strip(),
                        "costPrice":       (row.get("cost_price") or "").strip(),
                        "extended":        (row.get("extended") or "").strip(),
                        "core":            (row.get("core") or "").strip().lower() in _TRUE_VALUES,
                    })

        for order in orders.values():
            if order.get("lineItems"):
                order["detailStored"] = True

        message = f"{len(orders)} order(s) from {orders_path.name}"
        logger.info("Source %s: %s", self.name, message)
        return FetchResult(ok=True, source=self.name, orders=list(orders.values()),
                           status_log=[message])


def discover_sources(sources_dir: Path) -> dict[str, SourceAdapter]:
    """
    One adapter per subdirectory of sources_dir, named after it.
    A folder holding orders.csv is read as CSV, anything else as JSON.
    """
    adapters: dict[str, SourceAdapter] = {}
    if not sources_dir.is_dir():
        logger.debug("Sources directory not found: %s", sources_dir)
        return adapters
    for folder in sorted(p for p in sources_dir.iterdir() if p.is_dir()):
        name = folder.name.lower()
        if (folder / "orders.csv").exists():
            adapters[name] = CsvOrderSource(name)
        else:
            adapters[name] = JsonFileSource(name)
    return adapters
