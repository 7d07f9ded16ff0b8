from pydantic import BaseModel, Field
from typing import Optional, List, Literal


# Failure reasons reported by core operations.  None of them is fatal:
# the operation did not apply and the caller may retry.
NOT_FOUND          = "not-found"           # uid / reference absent from the collection
LOCKED             = "locked"              # another session holds an unexpired lease
LOCK_EXPIRED       = "lock-expired"        # edit attempted without a live lease
SOURCE_UNAVAILABLE = "source-unavailable"  # adapter login / network failure
PARSE_CORRUPTION   = "parse-corruption"    # collection file unreadable, left untouched
UNKNOWN_SOURCE     = "unknown-source"      # no adapter registered under that name
INVALID            = "invalid"             # caller supplied unusable input

FailureReason = Literal[
    "not-found",
    "locked",
    "lock-expired",
    "source-unavailable",
    "parse-corruption",
    "unknown-source",
    "invalid",
]


class OperationResult(BaseModel):
    """Outcome of a core operation.  ok=False always carries a reason."""
    ok: bool
    reason: Optional[FailureReason] = None
    message: Optional[str] = None

    @classmethod
    def failure(cls, reason: str, message: Optional[str] = None, **kwargs):
        return cls(ok=False, reason=reason, message=message, **kwargs)


class LeaseResult(OperationResult):
    """Result of acquire / apply_edit / release on one outstanding item."""
    uid: str
    expires_at: Optional[str] = None        # ISO 8601, set on a successful acquire
    item: Optional[dict] = None             # Updated record after apply_edit


class ItemResult(OperationResult):
    """Result of a single-item mutation outside the lease protocol."""
    item: Optional[dict] = None


class ItemsWriteResult(OperationResult):
    """Result of replacing the whole items collection."""
    written: bool = False                   # False when nothing changed on disk
    count: int = 0
    held: List[str] = Field(default_factory=list)   # uids kept as stored: under a live lease


class FetchResult(BaseModel):
    """What a source adapter hands back to the core."""
    ok: bool
    source: str
    orders: List[dict] = Field(default_factory=list)   # Raw, un-normalised records
    status_log: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class IngestResult(OperationResult):
    """Outcome of one ingestion pass for one source."""
    source: str
    fetched: int = 0                        # Raw orders returned by the adapter
    added: int = 0                          # Orders whose key was new
    updated: int = 0                        # Existing orders merged field-wise
    total: int = 0                          # Orders in the collection afterwards
    invoices_synced: int = 0                # Items whose source_inv was back-filled
    status_log: List[str] = Field(default_factory=list)


class DeriveResult(OperationResult):
    """Outcome of converting unconsumed order lines into outstanding items."""
    created: int = 0
    recovered: int = 0                      # Lines already derived before a crash, flag re-set
    items: List[dict] = Field(default_factory=list)


class InvoiceOrderUpdate(OperationResult):
    """Outcome of recording an invoice number against an order reference."""
    reference: str
    invoices_synced: int = 0
