"""
Merge repeated ingestion runs into the stored order collection.

Policy (fill-missing, prefer incoming scalars):

  - Orders are keyed by the trimmed, case-folded reference.  An order
    whose key is new is inserted as-is.
  - For a known key, every field the supplier actually reported
    overwrites the stored value, except that a blank incoming value
    never clears a non-blank stored one.
  - Incoming line items replace the stored ones only when non-empty, so
    a list-page refresh never erases previously fetched detail.  Lines
    already turned into outstanding items keep their flag across the
    replacement.
  - Orders without a reference get a synthetic key and are never
    collapsed into each other.

Every merged order is re-normalised before it is returned.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Union

from models.order import LineItem, Order
from stockflow.normalizer import normalize_order

logger = logging.getLogger(__name__)

# Fields recomputed by the normaliser after every merge
_PROJECTION_FIELDS = ("sage_reference", "sage_source", "sage_lineItems")


@dataclass
class MergeOutcome:
    orders: list[Order] = field(default_factory=list)
    added: int = 0
    updated: int = 0


def canonical_key(reference: Any) -> str:
    if reference is None:
        return ""
    return str(reference).strip().casefold()


def line_identities(lines: list[LineItem]) -> list[tuple]:
    """
    (line code, part number, core, occurrence) per line.  occurrence
    tells apart repeated lines for the same part on one order.
    """
    seen: Counter = Counter()
    identities = []
    for line in lines:
        base = (
            line.part_line_code.strip().casefold(),
            line.part_number.strip().casefold(),
            bool(line.core),
        )
        identities.append(base + (seen[base],))
        seen[base] += 1
    return identities


def carry_consumed_flags(stored: list[LineItem], incoming: list[LineItem]) -> list[LineItem]:
    """Mark incoming lines whose stored counterpart was already derived."""
    consumed = {
        identity
        for identity, line in zip(line_identities(stored), stored)
        if line.added_to_outstanding
    }
    result = []
    for identity, line in zip(line_identities(incoming), incoming):
        if identity in consumed and not line.added_to_outstanding:
            line = line.model_copy(update={"added_to_outstanding": True})
        result.append(line)
    return result


def merge_order(stored: Order, incoming: Order) -> Order:
    record = stored.model_dump(by_alias=True)
    supplied = incoming.model_dump(by_alias=True, exclude_unset=True)
    supplied.update(incoming.model_extra or {})
    supplied.pop("lineItems", None)
    # Same key by construction; the stored spelling stays
    supplied.pop("reference", None)
    for name in _PROJECTION_FIELDS:
        supplied.pop(name, None)

    for key, value in supplied.items():
        if _blank(value) and not _blank(record.get(key)):
            continue
        record[key] = value

    if incoming.line_items:
        record["lineItems"] = carry_consumed_flags(stored.line_items, incoming.line_items)
    return normalize_order(record)


def reconcile(
    existing: list[Union[dict, Order]],
    incoming: list[Union[dict, Order]],
) -> MergeOutcome:
    """Merge incoming orders into existing ones, counting inserts and updates."""
    merged: dict[str, Order] = {}

    for index, raw in enumerate(existing):
        order = raw if isinstance(raw, Order) else normalize_order(raw)
        key = canonical_key(order.reference) or f"~noref:existing:{index}"
        if key in merged:
            logger.warning("Duplicate stored order reference %r, folding together", order.reference)
            merged[key] = merge_order(merged[key], order)
        else:
            merged[key] = order

    outcome = MergeOutcome()
    for index, raw in enumerate(incoming):
        order = raw if isinstance(raw, Order) else normalize_order(raw)
        key = canonical_key(order.reference)
        if not key:
            key = f"~noref:incoming:{index}"
            logger.warning("Incoming order without reference kept under %s", key)
        if key in merged:
            merged[key] = merge_order(merged[key], order)
            outcome.updated += 1
        else:
            merged[key] = order
            outcome.added += 1

    outcome.orders = [normalize_order(order) for order in merged.values()]
    return outcome


def merge_orders(
    existing: list[Union[dict, Order]],
    incoming: list[Union[dict, Order]],
) -> list[Order]:
    return reconcile(existing, incoming).orders


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
