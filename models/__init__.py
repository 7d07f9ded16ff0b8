from .order import Order, LineItem
from .item import OutstandingItem
from .result import (
    OperationResult, LeaseResult, ItemResult, ItemsWriteResult, FetchResult, IngestResult,
    DeriveResult, InvoiceOrderUpdate,
)

__all__ = [
    "Order", "LineItem",
    "OutstandingItem",
    "OperationResult", "LeaseResult", "ItemResult", "ItemsWriteResult", "FetchResult", "IngestResult",
    "DeriveResult", "InvoiceOrderUpdate",
]
