"""
Unit tests for invoice back-sync.
"""
import pytest

from models.order import Order
from stockflow.invoice_sync import count_changes, invoice_map, sync_invoices


@pytest.mark.unit
class TestInvoiceMap:

    def test_only_orders_with_both_fields(self):
        mapping = invoice_map([
            {"reference": "PO-100", "source_invoice": "INV-55"},
            {"reference": "PO-101", "source_invoice": ""},
            {"reference": "", "source_invoice": "INV-9"},
        ])
        assert mapping == {"po-100": "INV-55"}

    def test_accepts_order_models(self):
        mapping = invoice_map([Order(reference=" PO-7 ", source_invoice=" INV-7 ")])
        assert mapping == {"po-7": "INV-7"}


@pytest.mark.unit
class TestSyncInvoices:
    """Tests for sync_invoices()."""

    def test_fills_matching_item(self):
        orders = [{"reference": "PO-100", "source_invoice": "INV-55"}]
        items = [{"uid": "a", "reference_num": " po-100 ", "source_inv": "", "notes1": "keep"}]

        result = sync_invoices(orders, items)

        assert result[0]["source_inv"] == "INV-55"
        assert result[0]["notes1"] == "keep"
        assert result[0]["reference_num"] == " po-100 "
        assert items[0]["source_inv"] == ""

    def test_second_run_changes_nothing(self):
        orders = [{"reference": "PO-100", "source_invoice": "INV-55"}]
        items = [{"uid": "a", "reference_num": "PO-100", "source_inv": ""}]

        first = sync_invoices(orders, items)
        second = sync_invoices(orders, first)

        assert count_changes(items, first) == 1
        assert count_changes(first, second) == 0

    def test_unrelated_items_untouched(self):
        orders = [{"reference": "PO-100", "source_invoice": "INV-55"}]
        other = {"uid": "b", "reference_num": "PO-200", "source_inv": ""}
        result = sync_invoices(orders, [other])
        assert result[0] is other

    def test_newer_invoice_replaces_older(self):
        orders = [{"reference": "PO-100", "source_invoice": "INV-56"}]
        items = [{"uid": "a", "reference_num": "PO-100", "source_inv": "INV-55"}]
        assert sync_invoices(orders, items)[0]["source_inv"] == "INV-56"

    def test_no_invoices_returns_copy_of_list(self):
        items = [{"uid": "a", "reference_num": "PO-100"}]
        result = sync_invoices([{"reference": "PO-100"}], items)
        assert result == items
        assert result is not items
