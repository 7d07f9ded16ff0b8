from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Union


Number = Union[int, float]


class LineItem(BaseModel):
    """
    A single line on a supplier order.

    Field names follow the on-disk JSON shape (camelCase aliases).
    Unknown source-specific keys are kept as extras.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    part_number: str = Field(default="", alias="partNumber")
    part_line_code: str = Field(default="", alias="partLineCode")
    part_description: str = Field(default="", alias="partDescription")
    quantity: Union[Number, str, None] = None
    cost_price: Union[Number, str, None] = Field(default=None, alias="costPrice")
    cost_price_value: Optional[Number] = Field(default=None, alias="costPriceValue")
    extended: Union[Number, str, None] = None
    extended_value: Optional[Number] = Field(default=None, alias="extendedValue")
    core: bool = False                      # Core-charge line
    added_to_outstanding: bool = Field(default=False, alias="addedToOutstanding")


class Order(BaseModel):
    """
    A purchase from a supplier portal.
    reference is the supplier-assigned identifier; its trimmed, case-folded
    form is the merge key (see stockflow.reconciler.canonical_key).
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    reference: str = ""
    order_date: Optional[str] = Field(default=None, alias="orderDate")    # ISO 8601
    sage_date: str = Field(default="", alias="sageDate")                  # DDMMYY
    warehouse: str = ""
    source: str = ""
    total: Union[Number, str, None] = None
    source_invoice: str = ""

    # Workflow flags
    picked_up: bool = Field(default=False, alias="pickedUp")
    in_store: bool = Field(default=False, alias="inStore")
    entered_in_sage: bool = Field(default=False, alias="enteredInSage")
    has_invoice_num: bool = Field(default=False, alias="hasInvoiceNum")
    total_verified: bool = Field(default=False, alias="totalVerified")
    detail_stored: bool = Field(default=False, alias="detailStored")
    detail_clicked: bool = Field(default=False, alias="detailClicked")

    line_items: List[LineItem] = Field(default_factory=list, alias="lineItems")

    # Accounting projection, always recomputed by the normalizer
    sage_reference: str = ""
    sage_source: str = ""
    sage_line_items: List[LineItem] = Field(default_factory=list, alias="sage_lineItems")

    def to_record(self) -> dict:
        """Serialise to the JSON record stored in the orders collection."""
        return self.model_dump(mode="json", by_alias=True)
