from .store import RecordStore, ITEMS, ORDERS
from .normalizer import normalize_order, normalize_line_item
from .reconciler import merge_orders, reconcile, canonical_key
from .deriver import derive_outstanding
from .leases import LeaseManager
from .invoice_sync import sync_invoices
from .sources import SourceAdapter, JsonFileSource, CsvOrderSource
from .service import InventoryService

__all__ = [
    "RecordStore", "ITEMS", "ORDERS",
    "normalize_order", "normalize_line_item",
    "merge_orders", "reconcile", "canonical_key",
    "derive_outstanding", "LeaseManager", "sync_invoices",
    "SourceAdapter", "JsonFileSource", "CsvOrderSource",
    "InventoryService",
]
