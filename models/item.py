from pydantic import BaseModel, ConfigDict
from typing import Optional, Union


class OutstandingItem(BaseModel):
    """
    One derived inventory unit awaiting sale.

    uid is assigned once and never changes.  lock_expires_at is only
    present while an edit lease is held; an expired value means unlocked.
    """
    model_config = ConfigDict(extra="allow")

    uid: str
    itemcode: str = ""
    quantity: Union[int, str] = 1
    cost: str = ""
    allocated_for: str = ""                 # Sale price
    allocated_to: str = "New Stock"         # Bubble / category
    date: str = ""                          # DD/MM/YYYY
    reference_num: str = ""                 # Order reference it came from
    source_inv: str = ""                    # Supplier invoice, may be back-filled
    invoice_num: str = ""
    warehouse: str = ""
    notes1: str = ""
    notes2: str = ""
    sold_status: str = ""
    sold_date: str = ""
    last_moved_at: str = ""                 # ISO 8601, refreshed on every mutation
    lock_expires_at: Optional[str] = None
    source_line_key: Optional[str] = None   # Hash of the order line it was derived from

    def to_record(self) -> dict:
        """Serialise for the items collection; absent lock means no key at all."""
        return self.model_dump(mode="json", exclude_none=True)
