"""
Project raw supplier records onto the fixed Order / LineItem schema.

Every source adapter produces its own loosely-typed shape.  Nothing
downstream of this module looks at a raw record: the reconciler, the
deriver and the Sage export all consume Order models produced here.

Field lookup walks a prioritised list of candidate keys per canonical
field, e.g. a line's cost price may arrive as costPrice, cost or net.
Numeric coercion strips currency symbols and thousands separators; a
value that still does not parse is kept as its original string.
"""
import logging
import math
import re
from datetime import datetime
from typing import Any, Optional, Union

from models.order import LineItem, Order

logger = logging.getLogger(__name__)

# Candidate keys per canonical line-item field, highest priority first
_LINE_KEYS: dict[str, tuple[str, ...]] = {
    "partLineCode":    ("partLineCode", "part_line_code", "brand", "line"),
    "partNumber":      ("partNumber", "part_number", "part", "sku"),
    "partDescription": ("partDescription", "part_description", "description", "notes"),
    "quantity":        ("quantity", "qty", "count"),
    "costPrice":       ("costPrice", "cost_price", "cost", "net", "extended"),
    "extended":        ("extended", "total", "extendedValue"),
}

# Candidate keys per canonical order field
_ORDER_KEYS: dict[str, tuple[str, ...]] = {
    "reference":      ("reference", "orderNumber", "order_number", "confirmation"),
    "source_invoice": ("source_invoice", "invoiceNum", "invoice_number", "invoice"),
    "warehouse":      ("warehouse", "seller"),
    "orderDate":      ("orderDate", "order_date", "date"),
    "sageDate":       ("sageDate", "sage_date"),
    "total":          ("total", "orderTotal", "amount"),
    "lineItems":      ("lineItems", "line_items", "items"),
}

_FLAG_ALIASES = (
    "pickedUp", "inStore", "enteredInSage", "hasInvoiceNum",
    "totalVerified", "detailStored", "detailClicked",
)

# Known suppliers.  warehouse is the display name written onto orders and
# derived items; defaults fill workflow flags the supplier never reports.
# invoice_from_reference marks suppliers whose order number doubles as the
# invoice number.
SOURCE_PROFILES: dict[str, dict[str, Any]] = {
    "world": {
        "warehouse":   "World",
        "sage_source": "WOR505",
    },
    "proforce": {
        "warehouse":   "Proforce",
        "sage_source": "PRO505",
        "invoice_from_reference": True,
    },
    "transbec": {
        "warehouse":   "Transbec",
    },
    "cbk": {
        "warehouse":   "CBK",
        "defaults":    {"detailStored": True, "hasInvoiceNum": True},
        "invoice_from_reference": True,
    },
    "bestbuy": {
        "warehouse":   "BestBuy",
        "defaults":    {"detailStored": True, "hasInvoiceNum": True},
    },
}

_NUMBER_RE = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


# ---------------------------------------------------------------------------
# Scalar coercion
# ---------------------------------------------------------------------------

def to_number(value: Any) -> Optional[float]:
    """
    "$1,234.50" -> 1234.5, "2 ea" -> 2.0, "N/A" -> None.
    Booleans are not numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    cleaned = re.sub(r"[^\d.\-]", "", str(value))
    match = _NUMBER_RE.match(cleaned)
    if not match:
        return None
    try:
        number = float(match.group())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def coerce_number(value: Any) -> Union[int, float, str, None]:
    """
    Canonical numeric form of value.  Whole numbers come back as int.
    A value that cannot be read as a number is returned as its original
    (stripped) string; blanks become None.
    """
    if _blank(value):
        return None
    number = to_number(value)
    if number is None:
        return str(value).strip()
    return int(number) if number.is_integer() else number


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 date or timestamp.  Returns None when unparsable."""
    if _blank(value):
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def sage_date(value: Any) -> str:
    """DDMMYY form of an ISO date, or "" if it does not parse."""
    parsed = parse_date(value)
    return parsed.strftime("%d%m%y") if parsed else ""


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _first(raw: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if not _blank(value):
            return value
    return None


def _has_any(raw: dict, keys: tuple[str, ...]) -> bool:
    return any(key in raw for key in keys)


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------

def normalize_line_item(raw: Union[dict, LineItem]) -> LineItem:
    """Project one raw order line onto LineItem.  Unknown keys are kept."""
    data = raw.model_dump(by_alias=True) if isinstance(raw, LineItem) else dict(raw)

    cost_raw = _first(data, _LINE_KEYS["costPrice"])
    extended_raw = _first(data, _LINE_KEYS["extended"])

    cost_value = to_number(data.get("costPriceValue"))
    if cost_value is None:
        cost_value = to_number(cost_raw)
    extended_value = to_number(data.get("extendedValue"))
    if extended_value is None:
        extended_value = to_number(extended_raw)

    data.update({
        "partLineCode":    _text(_first(data, _LINE_KEYS["partLineCode"])),
        "partNumber":      _text(_first(data, _LINE_KEYS["partNumber"])),
        "partDescription": _text(_first(data, _LINE_KEYS["partDescription"])),
        "quantity":        coerce_number(_first(data, _LINE_KEYS["quantity"])),
        "costPrice":       coerce_number(cost_raw),
        "costPriceValue":  cost_value,
        "extended":        coerce_number(extended_raw),
        "extendedValue":   extended_value,
        "core":            bool(data.get("core")),
        "addedToOutstanding": bool(data.get("addedToOutstanding")),
    })
    # Snake-case spellings would otherwise shadow the aliases on validation
    for key in ("part_line_code", "part_number", "part_description", "cost_price",
                "cost_price_value", "extended_value", "added_to_outstanding"):
        data.pop(key, None)
    return LineItem.model_validate(data)


def sage_line(line: LineItem) -> LineItem:
    """Accounting projection of a line: the canonical fields only."""
    return LineItem(
        partLineCode=line.part_line_code,
        partNumber=line.part_number,
        partDescription=line.part_description,
        quantity=line.quantity,
        costPrice=line.cost_price,
        costPriceValue=line.cost_price_value,
        extended=line.extended,
        extendedValue=line.extended_value,
        core=line.core,
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def source_profile(source: Optional[str]) -> dict[str, Any]:
    return SOURCE_PROFILES.get(_text(source).lower(), {})


def normalize_order(raw: Union[dict, Order], source: Optional[str] = None) -> Order:
    """
    Project a raw order (any supplier shape) or an existing Order onto the
    Order schema.

    Only canonical fields the raw record actually carries are set on the
    result, so Order.model_fields_set tells the reconciler which fields
    the supplier reported.  The sage_* projection is always recomputed.
    Normalising an already-normalised order returns an equal order.
    """
    if isinstance(raw, Order):
        data = raw.model_dump(by_alias=True)
    elif isinstance(raw, dict):
        data = dict(raw)
    else:
        raise ValueError(f"Cannot normalise order of type {type(raw).__name__}")

    name = _text(source or data.get("source")).lower()
    profile = SOURCE_PROFILES.get(name, {})
    if name:
        data["source"] = name
    for key, value in profile.get("defaults", {}).items():
        if data.get(key) is None:
            data[key] = value

    fields: dict[str, Any] = {}

    for canonical in ("reference", "source_invoice", "warehouse"):
        if _has_any(data, _ORDER_KEYS[canonical]):
            fields[canonical] = _text(_first(data, _ORDER_KEYS[canonical]))
    if not fields.get("warehouse") and (profile or name):
        fields["warehouse"] = profile.get("warehouse") or name
    if profile.get("invoice_from_reference") and fields.get("reference") and not fields.get("source_invoice"):
        fields["source_invoice"] = fields["reference"]
        data.setdefault("hasInvoiceNum", True)

    if _has_any(data, _ORDER_KEYS["orderDate"]):
        raw_date = _first(data, _ORDER_KEYS["orderDate"])
        parsed = parse_date(raw_date)
        if parsed:
            fields["orderDate"] = parsed.isoformat()
        else:
            fields["orderDate"] = None if _blank(raw_date) else str(raw_date).strip()
    if _has_any(data, _ORDER_KEYS["sageDate"]):
        fields["sageDate"] = _text(_first(data, _ORDER_KEYS["sageDate"]))
    if not fields.get("sageDate") and fields.get("orderDate"):
        computed = sage_date(fields["orderDate"])
        if computed:
            fields["sageDate"] = computed

    if _has_any(data, _ORDER_KEYS["total"]):
        fields["total"] = coerce_number(_first(data, _ORDER_KEYS["total"]))

    for flag in _FLAG_ALIASES:
        if flag in data:
            fields[flag] = bool(data[flag])

    lines_raw = _first(data, _ORDER_KEYS["lineItems"])
    if _has_any(data, _ORDER_KEYS["lineItems"]):
        lines_raw = lines_raw if isinstance(lines_raw, list) else []
        line_items = []
        for line in lines_raw:
            if isinstance(line, (dict, LineItem)):
                line_items.append(normalize_line_item(line))
            else:
                logger.warning("Skipping malformed line item on order %r: %r",
                               fields.get("reference"), line)
        fields["lineItems"] = line_items
    else:
        line_items = []

    reference = fields.get("reference", "")
    invoice = fields.get("source_invoice", "")
    warehouse = fields.get("warehouse", "")
    fields["sage_reference"] = invoice or reference
    fields["sage_source"] = (
        _text(data.get("sage_source")) or profile.get("sage_source") or name or warehouse
    )
    fields["sage_lineItems"] = [sage_line(line) for line in line_items]

    # Keep supplier-specific extras, minus alternate spellings already folded in
    consumed = {key for keys in _ORDER_KEYS.values() for key in keys}
    consumed.update({"sage_source", "sage_reference", "sage_lineItems", "sage_line_items",
                     "order_date", "sage_date", "line_items", "source_invoice"})
    extras = {k: v for k, v in data.items() if k not in consumed and k not in _FLAG_ALIASES}
    extras.pop("source", None)
    if name:
        fields["source"] = name
    elif "source" in data:
        fields["source"] = _text(data["source"])

    return Order.model_validate({**extras, **fields})
