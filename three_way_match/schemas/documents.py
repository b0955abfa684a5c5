"""
Purchasing document models.
Purchase orders, goods receipts and invoices as owned by the purchasing
module. The match engine only reads them (except the receipt auto-link).
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime


class OrderStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    CONFIRMED = "confirmed"
    PARTIALLY_RECEIVED = "partially_received"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Orders in these states are candidates for matching
MATCHABLE_ORDER_STATUSES = (
    OrderStatus.SENT,
    OrderStatus.CONFIRMED,
    OrderStatus.PARTIALLY_RECEIVED,
    OrderStatus.COMPLETED,
)


class ReceiptStatus(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class FiscalClass(str, Enum):
    STANDARD = "standard"
    EXTENDED = "extended"


class OrderLine(BaseModel):
    """A single line of a purchase order."""
    id: Optional[int] = None
    product_ref: Optional[str] = None
    description: str = ""
    ordered_qty: float = Field(ge=0.0)
    pending_qty: float = Field(default=0.0, ge=0.0)
    unit_price: float = Field(ge=0.0)


class PurchaseOrder(BaseModel):
    """A purchase order with its ordered lines."""
    id: Optional[int] = None
    tenant_id: int
    supplier_id: int
    number: str
    total: Optional[float] = None
    status: OrderStatus = OrderStatus.SENT
    fiscal_class: Optional[FiscalClass] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    lines: List[OrderLine] = Field(default_factory=list)


class ReceiptLine(BaseModel):
    """A single received line of a goods receipt."""
    id: Optional[int] = None
    order_line_id: Optional[int] = None
    product_ref: Optional[str] = None
    description: str = ""
    accepted_qty: float = Field(ge=0.0)


class GoodsReceipt(BaseModel):
    """A goods receipt with its accepted quantities."""
    id: Optional[int] = None
    tenant_id: int
    supplier_id: int
    number: str
    purchase_order_id: Optional[int] = None
    status: ReceiptStatus = ReceiptStatus.CONFIRMED
    invoice_id: Optional[int] = None
    invoiced: bool = False
    fiscal_class: Optional[FiscalClass] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    lines: List[ReceiptLine] = Field(default_factory=list)


class InvoiceLine(BaseModel):
    """A single billed line. Lines without a product reference carry free text only."""
    id: Optional[int] = None
    product_ref: Optional[str] = None
    description: str = ""
    quantity: float
    unit_price: float


class Invoice(BaseModel):
    """A supplier invoice with its billed lines."""
    id: Optional[int] = None
    tenant_id: int
    supplier_id: int
    number: str
    total: Optional[float] = None
    fiscal_class: Optional[FiscalClass] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    lines: List[InvoiceLine] = Field(default_factory=list)
