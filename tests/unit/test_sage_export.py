"""
Unit tests for the Sage CSV export.
"""
import csv
import io

import pytest

from stockflow.normalizer import normalize_order
from stockflow.sage_export import (
    _csv_cell,
    _money,
    build_payload,
    export_sage_csv,
    render_sage_csv,
)


def _rows(text: str) -> list[dict]:
    return list(csv.DictReader(io.StringIO(text)))


@pytest.mark.unit
class TestFilters:

    def test_csv_cell_quotes_when_needed(self):
        assert _csv_cell("plain") == "plain"
        assert _csv_cell("a,b") == '"a,b"'
        assert _csv_cell('say "hi"') == '"say ""hi"""'
        assert _csv_cell(None) == ""
        assert _csv_cell("") == ""
        assert _csv_cell(2) == "2"

    def test_csv_cell_multiline_reads_back(self):
        cell = _csv_cell('bay 4\nleft, "top"')
        assert cell == '"bay 4\nleft, ""top"""'
        assert next(csv.reader(io.StringIO(cell))) == ['bay 4\nleft, "top"']

    def test_money(self):
        assert _money(6.25) == "6.25"
        assert _money(12) == "12.00"
        assert _money(None) == ""
        assert _money("call") == "call"


@pytest.mark.unit
class TestBuildPayload:

    def test_orders_without_lines_skipped(self, sample_world_orders):
        orders = [normalize_order(o, source="world") for o in sample_world_orders]
        payload = build_payload(orders)
        assert [o["sage_reference"] for o in payload["orders"]] == ["W-1001"]
        assert payload["orders"][0]["sage_source"] == "WOR505"
        assert payload["orders"][0]["sageDate"] == "281125"
        assert len(payload["orders"][0]["lines"]) == 2

    def test_pending_only(self):
        orders = [
            {"reference": "A", "enteredInSage": True, "lineItems": [{"partNumber": "1"}]},
            {"reference": "B", "lineItems": [{"partNumber": "2"}]},
        ]
        payload = build_payload(orders, pending_only=True)
        assert [o["sage_reference"] for o in payload["orders"]] == ["B"]

    def test_invoice_used_as_reference(self):
        payload = build_payload([{"reference": "P-1", "source_invoice": "INV-3",
                                  "lineItems": [{"partNumber": "1"}]}])
        assert payload["orders"][0]["sage_reference"] == "INV-3"


@pytest.mark.unit
class TestRenderSageCsv:

    def test_default_template(self, sample_world_orders):
        orders = [normalize_order(o, source="world") for o in sample_world_orders]
        rows = _rows(render_sage_csv(build_payload(orders)))

        assert len(rows) == 2
        assert rows[0]["Reference"] == "W-1001"
        assert rows[0]["Source"] == "WOR505"
        assert rows[0]["LineCode"] == "WIX"
        assert rows[0]["Quantity"] == "4"
        assert rows[0]["UnitCost"] == "6.25"
        assert rows[0]["Extended"] == "25.00"
        assert rows[0]["Core"] == "N"
        assert rows[1]["Core"] == "Y"

    def test_commas_survive_round_trip(self):
        orders = [{"reference": "X-1", "lineItems": [{"partNumber": "1", "partDescription": "Bolt, M8"}]}]
        rows = _rows(render_sage_csv(build_payload(orders)))
        assert rows[0]["Description"] == "Bolt, M8"

    def test_custom_template(self, temp_dir):
        template = temp_dir / "sage.csv.j2"
        template.write_text(
            "{% for o in orders %}{{ o.sage_reference }};{{ o.lines|length }}\n{% endfor %}",
            encoding="utf-8",
        )
        text = render_sage_csv(build_payload([{"reference": "R-1", "lineItems": [{}, {}]}]), template)
        assert text == "R-1;2\n"

    def test_missing_template_falls_back(self, temp_dir):
        text = render_sage_csv(build_payload([]), temp_dir / "missing.j2")
        assert text.startswith("Reference,Source,Date")


@pytest.mark.unit
class TestExportSageCsv:

    def test_writes_file(self, temp_dir, sample_world_orders):
        output = temp_dir / "out" / "sage.csv"
        count = export_sage_csv(sample_world_orders, output)
        assert count == 1
        assert output.exists()
        assert len(_rows(output.read_text(encoding="utf-8"))) == 2
