"""
Back-fill supplier invoice numbers onto already-derived items.

Invoice numbers often arrive after the order was first ingested.  Items
carry the order reference they came from; whenever an order gains an
invoice number, matching items get it in source_inv.  No other item
field is touched.
"""
import logging
from typing import Union

from models.order import Order
from stockflow.reconciler import canonical_key

logger = logging.getLogger(__name__)


def invoice_map(orders: list[Union[dict, Order]]) -> dict[str, str]:
    """Canonical reference -> invoice number, for orders that have both."""
    mapping: dict[str, str] = {}
    for order in orders:
        if isinstance(order, Order):
            reference, invoice = order.reference, order.source_invoice
        else:
            reference, invoice = order.get("reference"), order.get("source_invoice")
        key = canonical_key(reference)
        invoice = str(invoice or "").strip()
        if key and invoice:
            mapping[key] = invoice
    return mapping


def sync_invoices(orders: list[Union[dict, Order]], items: list[dict]) -> list[dict]:
    """
    Return items with source_inv filled from their order's invoice number.
    Unchanged items are returned as the same objects; changed ones are copies.
    """
    mapping = invoice_map(orders)
    if not mapping:
        return list(items)

    result = []
    changed = 0
    for item in items:
        invoice = mapping.get(canonical_key(item.get("reference_num")))
        if invoice and item.get("source_inv") != invoice:
            item = {**item, "source_inv": invoice}
            changed += 1
        result.append(item)

    if changed:
        logger.info("Invoice back-sync updated %d item(s)", changed)
    return result


def count_changes(before: list[dict], after: list[dict]) -> int:
    return sum(1 for old, new in zip(before, after) if old is not new)
