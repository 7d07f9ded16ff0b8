"""
Outstanding-item helpers: uid issue, record normalisation, sold
detection and the stock summary shown on the board header.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from config import DEFAULT_BUBBLE
from models.item import OutstandingItem

# Bubble renamed in the current board layout
_LEGACY_BUBBLES = {"Stock": "Shelf"}

_UNSOLD_STATUSES = {"", "pending", "unsold", "na", "n/a"}

_TEXT_FIELDS = (
    "itemcode", "cost", "allocated_for", "date", "reference_num", "source_inv",
    "invoice_num", "warehouse", "notes1", "notes2", "sold_status", "sold_date",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()


def new_uid(taken: Optional[set] = None) -> str:
    """Random hex uid not present in taken."""
    taken = taken or set()
    while True:
        uid = uuid.uuid4().hex
        if uid not in taken:
            return uid


def normalize_item(
    raw: dict,
    default_bubble: str = DEFAULT_BUBBLE,
    now: Optional[Callable[[], datetime]] = None,
    taken: Optional[set] = None,
) -> OutstandingItem:
    """
    Fill in the fields every board card relies on.

    A legacy numeric id is reused as uid; records with neither get a new
    one.  Text fields are coerced to strings and quantity to an int.
    """
    data = dict(raw)
    now = now or utc_now

    uid = data.get("uid") or data.get("id")
    data["uid"] = str(uid) if uid not in (None, "") else new_uid(taken)

    bubble = str(data.get("allocated_to") or "").strip() or default_bubble
    data["allocated_to"] = _LEGACY_BUBBLES.get(bubble, bubble)

    for name in _TEXT_FIELDS:
        value = data.get(name)
        data[name] = "" if value is None else str(value)

    data["quantity"] = _int_or_zero(data.get("quantity"))
    if not data.get("last_moved_at"):
        data["last_moved_at"] = iso(now())
    if data.get("lock_expires_at") is None:
        data.pop("lock_expires_at", None)
    return OutstandingItem.model_validate(data)


def normalize_items(records: list[dict], default_bubble: str = DEFAULT_BUBBLE,
                    now: Optional[Callable[[], datetime]] = None) -> list[dict]:
    taken = {str(r.get("uid")) for r in records if r.get("uid")}
    result = []
    for record in records:
        item = normalize_item(record, default_bubble, now, taken)
        taken.add(item.uid)
        result.append(item.to_record())
    return result


def is_sold(item: dict) -> bool:
    if str(item.get("sold_date") or "").strip():
        return True
    status = str(item.get("sold_status") or "").strip().lower()
    return status not in _UNSOLD_STATUSES


def summarize_items(items: list[dict]) -> dict[str, Any]:
    sold = [i for i in items if is_sold(i)]
    moved = [str(i.get("last_moved_at")) for i in items if i.get("last_moved_at")]
    by_bubble: dict[str, int] = {}
    for item in items:
        bubble = item.get("allocated_to") or DEFAULT_BUBBLE
        by_bubble[bubble] = by_bubble.get(bubble, 0) + 1
    return {
        "items":          len(items),
        "quantity":       sum(_int_or_zero(i.get("quantity")) for i in items),
        "sold":           len(sold),
        "unsold":         len(items) - len(sold),
        "by_bubble":      by_bubble,
        "last_moved_at":  max(moved) if moved else None,
    }


def _int_or_zero(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return 0
