"""
Turn unconsumed order lines into outstanding items.

A line is consumed once its addedToOutstanding flag is set.  Each
derived item also records source_line_key, a hash of the order key and
the line identity; a line whose key is already present in the items
collection is treated as consumed without creating another item.  That
covers a crash between writing the items and writing the flipped flags.
"""
import hashlib
import logging
from datetime import datetime
from typing import Callable, NamedTuple, Optional, Union

from config import DEFAULT_BUBBLE
from models.item import OutstandingItem
from models.order import LineItem, Order
from stockflow.normalizer import normalize_order, parse_date, to_number
from stockflow.reconciler import canonical_key, line_identities
from stockflow.stock import iso, new_uid, utc_now

logger = logging.getLogger(__name__)


class Derivation(NamedTuple):
    new_items: list[dict]
    orders: list[Order]
    recovered: int = 0          # Lines flagged without a new item (already derived)


def source_line_key(order_key: str, identity: tuple) -> str:
    code, number, core, occurrence = identity
    raw = f"{order_key}|{code}|{number}|{int(core)}|{occurrence}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


def order_key(order: Order) -> str:
    """
    The canonical reference, or for an order without one a digest of its
    source, date and lines.  The digest does not depend on where the order
    sits in the collection.
    """
    key = canonical_key(order.reference)
    if key:
        return key
    content = "|".join([
        order.source or "",
        str(order.order_date or ""),
        *(f"{code}/{number}/{int(core)}/{occurrence}"
          for code, number, core, occurrence in sorted(line_identities(order.line_items))),
    ])
    return "~noref:" + hashlib.sha1(content.encode("utf-8")).hexdigest()[:16]


def item_code(line: LineItem) -> str:
    return f"{line.part_line_code.strip()} {line.part_number.strip()}".strip()


def item_quantity(line: LineItem) -> int:
    number = to_number(line.quantity)
    if number is None or number <= 0:
        return 1
    return max(1, int(number))


def item_cost(line: LineItem) -> str:
    for value in (line.cost_price_value, line.extended_value):
        number = to_number(value)
        if number is not None:
            return f"{number:.2f}"
    return ""


def date_token(order: Order) -> str:
    """DD/MM/YYYY from the ISO order date, else from the DDMMYY Sage date."""
    parsed = parse_date(order.order_date)
    if parsed:
        return parsed.strftime("%d/%m/%Y")
    compact = (order.sage_date or "").strip()
    if len(compact) == 6 and compact.isdigit():
        return f"{compact[0:2]}/{compact[2:4]}/20{compact[4:6]}"
    return ""


def build_item(
    order: Order,
    line: LineItem,
    uid: str,
    line_key: str,
    default_bubble: str,
    stamp: str,
) -> OutstandingItem:
    return OutstandingItem(
        uid=uid,
        itemcode=item_code(line),
        quantity=item_quantity(line),
        cost=item_cost(line),
        allocated_to=default_bubble,
        date=date_token(order),
        reference_num=order.reference,
        source_inv=order.source_invoice,
        warehouse=order.warehouse,
        notes1=line.part_description,
        last_moved_at=stamp,
        source_line_key=line_key,
    )


def derive_outstanding(
    orders: list[Union[dict, Order]],
    items: list[dict],
    *,
    default_bubble: str = DEFAULT_BUBBLE,
    now: Optional[Callable[[], datetime]] = None,
    uid_factory: Optional[Callable[[set], str]] = None,
) -> Derivation:
    """
    Returns the items to append and every order with consumed lines flagged.
    Neither input is mutated.
    """
    stamp = iso((now or utc_now)())
    uid_factory = uid_factory or new_uid
    taken = {str(i["uid"]) for i in items if i.get("uid")}
    derived = {i["source_line_key"] for i in items if i.get("source_line_key")}

    new_items: list[dict] = []
    updated: list[Order] = []
    recovered = 0

    for raw in orders:
        order = raw if isinstance(raw, Order) else normalize_order(raw)
        key_base = order_key(order)
        lines = list(order.line_items)
        flipped = False

        for position, identity in enumerate(line_identities(lines)):
            line = lines[position]
            if line.added_to_outstanding:
                continue
            key = source_line_key(key_base, identity)
            if key in derived:
                recovered += 1
            else:
                uid = uid_factory(taken)
                if uid in taken:
                    raise ValueError(f"uid factory returned an issued uid: {uid}")
                item = build_item(order, line, uid, key, default_bubble, stamp)
                new_items.append(item.to_record())
                taken.add(uid)
                derived.add(key)
            lines[position] = line.model_copy(update={"added_to_outstanding": True})
            flipped = True

        if flipped:
            order = order.model_copy(update={"line_items": lines})
        updated.append(order)

    if new_items or recovered:
        logger.info("Derived %d outstanding item(s), %d line(s) recovered", len(new_items), recovered)
    return Derivation(new_items, updated, recovered)
