"""
Sage import file export.

Renders the sage_* projection of every order as a CSV through a Jinja2
template.  Operators can point SAGE_EXPORT_TEMPLATE at their own
template; the built-in default is used otherwise.
"""
import csv
import io
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from jinja2 import BaseLoader, Environment, FileSystemLoader

from models.order import Order
from stockflow.normalizer import normalize_order

logger = logging.getLogger(__name__)

# Default CSV template
DEFAULT_SAGE_TEMPLATE = """\
{#-
  Sage purchase import template.  Template engine: Jinja2.
  Apply the |csv filter to every cell; it quotes commas, quotes and newlines.

  Variables:
    exported_at  ISO-8601 UTC timestamp
    orders       list of dicts, each with
                   sage_reference, sage_source, sageDate, warehouse, total
                   lines: partLineCode, partNumber, partDescription,
                          quantity, costPriceValue, extendedValue, core
-#}
Reference,Source,Date,Warehouse,LineCode,PartNumber,Description,Quantity,UnitCost,Extended,Core
{% for order in orders -%}
{% for line in order.lines -%}
{{ order.sage_reference|csv }},{{ order.sage_source|csv }},{{ order.sageDate|csv }},{{ order.warehouse|csv }},{{ line.partLineCode|csv }},{{ line.partNumber|csv }},{{ line.partDescription|csv }},{{ line.quantity|csv }},{{ line.costPriceValue|money }},{{ line.extendedValue|money }},{{ 'Y' if line.core else 'N' }}
{% endfor -%}
{% endfor -%}
"""


def _csv_cell(value) -> str:
    """One cell as the csv module would write it."""
    if value is None or value == "":
        # csv quotes a lone empty field as ""
        return ""
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="").writerow([value])
    return buffer.getvalue()


def _money(value) -> str:
    if value is None or value == "":
        return ""
    try:
        return f"{float(value):.2f}"
    except (TypeError, ValueError):
        return _csv_cell(value)


def _environment(loader) -> Environment:
    env = Environment(loader=loader, autoescape=False, keep_trailing_newline=True)
    env.filters["csv"] = _csv_cell
    env.filters["money"] = _money
    return env


def build_payload(orders: list[Union[dict, Order]], pending_only: bool = False) -> dict:
    """Template variables for a set of orders.  Orders without lines are left out."""
    rows = []
    for raw in orders:
        order = raw if isinstance(raw, Order) else normalize_order(raw)
        if pending_only and order.entered_in_sage:
            continue
        lines = [line.model_dump(by_alias=True) for line in order.sage_line_items]
        if not lines:
            continue
        rows.append({
            "sage_reference": order.sage_reference,
            "sage_source":    order.sage_source,
            "sageDate":       order.sage_date,
            "warehouse":      order.warehouse,
            "total":          order.total,
            "lines":          lines,
        })
    return {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "orders": rows,
    }


def render_sage_csv(payload: dict, template_file: Optional[Path] = None) -> str:
    """Render payload using the operator template, or the built-in default."""
    if template_file and template_file.exists():
        env = _environment(FileSystemLoader(str(template_file.parent)))
        tmpl = env.get_template(template_file.name)
    else:
        if template_file:
            logger.warning("Sage template %s not found, using built-in default", template_file)
        env = _environment(BaseLoader())
        tmpl = env.from_string(DEFAULT_SAGE_TEMPLATE)
    return tmpl.render(**payload)


def export_sage_csv(
    orders: list[Union[dict, Order]],
    output_path: Path,
    template_file: Optional[Path] = None,
    pending_only: bool = False,
) -> int:
    """Write the Sage import CSV.  Returns the number of orders exported."""
    payload = build_payload(orders, pending_only=pending_only)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_sage_csv(payload, template_file), encoding="utf-8")
    logger.info("Sage export: %d order(s) -> %s", len(payload["orders"]), output_path)
    return len(payload["orders"])
