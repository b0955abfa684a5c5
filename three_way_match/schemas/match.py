"""
Match result schemas.
Verdicts, exceptions, tolerance configuration and the request/response
shapes of the match engine.
"""

from enum import Enum
from typing import Optional, List, Any
from pydantic import BaseModel, Field
from datetime import datetime


class Outcome(str, Enum):
    """Outcome of one pairwise comparison. UNKNOWN means a document was missing."""
    UNKNOWN = "unknown"
    PASS = "pass"
    FAIL = "fail"


class MatchStatus(str, Enum):
    PENDING = "PENDING"
    MATCH_OK = "MATCH_OK"
    DISCREPANCY = "DISCREPANCY"


class ExceptionKind(str, Enum):
    TOTAL_MISMATCH = "TOTAL_MISMATCH"
    ITEM_MISSING = "ITEM_MISSING"
    QUANTITY_MISMATCH = "QUANTITY_MISMATCH"
    PRICE_MISMATCH = "PRICE_MISMATCH"
    NO_ORDER = "NO_ORDER"
    NO_RECEIPT = "NO_RECEIPT"


class Pairing(str, Enum):
    """Comparison an exception came from. Order <-> Receipt only decides an outcome."""
    ORDER_INVOICE = "order_invoice"
    RECEIPT_INVOICE = "receipt_invoice"


class ToleranceConfig(BaseModel):
    """Per-tenant tolerance bands (percentages)."""
    tenant_id: int
    quantity_tolerance_pct: float = Field(default=5.0, ge=0.0, lt=100.0)
    price_tolerance_pct: float = Field(default=2.0, ge=0.0, lt=100.0)
    allow_payment_without_match: bool = False


class MatchException(BaseModel):
    """A typed, field-level discrepancy found during matching."""
    # Row id, regenerated on every run; kept out of serialized output
    id: Optional[int] = Field(default=None, exclude=True)
    kind: ExceptionKind
    pairing: Pairing
    field: str
    expected: Optional[str] = None
    actual: Optional[str] = None
    difference: Optional[float] = None
    percent_difference: Optional[float] = None
    within_tolerance: bool = False
    affected_amount: Optional[float] = None


class MatchResult(BaseModel):
    """The persisted verdict for one invoice. At most one per tenant and invoice."""
    id: Optional[int] = None
    tenant_id: int
    invoice_id: int
    purchase_order_id: Optional[int] = None
    goods_receipt_id: Optional[int] = None
    order_invoice: Outcome = Outcome.UNKNOWN
    receipt_invoice: Outcome = Outcome.UNKNOWN
    order_receipt: Outcome = Outcome.UNKNOWN
    fully_matched: bool = False
    status: MatchStatus = MatchStatus.PENDING
    exceptions: List[MatchException] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuditEntry(BaseModel):
    """One immutable audit trail entry."""
    entity: str = "match_result"
    entity_id: Optional[int] = None
    action: str = "EXECUTE_MATCH"
    status: MatchStatus
    exception_count: int
    purchase_order_id: Optional[int] = None
    goods_receipt_id: Optional[int] = None
    tenant_id: int
    actor_id: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class MatchRequest(BaseModel):
    """Client-supplied part of a match invocation. Tenant and actor come from the session."""
    invoice_id: int
    check_payment_eligibility_only: bool = False


class MatchSummary(BaseModel):
    order_invoice_outcome: Outcome
    receipt_invoice_outcome: Outcome
    order_receipt_outcome: Outcome
    fully_matched: bool
    status: MatchStatus
    exception_count: int
    receipt_linked: bool = False
    audit_recorded: bool = True


class MatchRunOutput(BaseModel):
    """Response of a full match run."""
    match_result: MatchResult
    exceptions: List[MatchException] = Field(default_factory=list)
    summary: MatchSummary


class PaymentEligibility(BaseModel):
    """Response of a read-only payment eligibility check."""
    invoice_id: int
    eligible: bool
    requires_approval: bool
    reason: str
    status: Optional[MatchStatus] = None


class MatchResultListItem(BaseModel):
    """A stored match result joined with document summaries."""
    id: int
    invoice_id: int
    invoice_number: str
    invoice_total: Optional[float] = None
    supplier_id: int
    purchase_order_id: Optional[int] = None
    purchase_order_number: Optional[str] = None
    purchase_order_total: Optional[float] = None
    goods_receipt_id: Optional[int] = None
    goods_receipt_number: Optional[str] = None
    order_invoice: Outcome
    receipt_invoice: Outcome
    order_receipt: Outcome
    fully_matched: bool
    status: MatchStatus
    exception_count: int
    updated_at: Optional[datetime] = None


class MatchResultPage(BaseModel):
    items: List[MatchResultListItem] = Field(default_factory=list)
    total: int
    page: int
    page_size: int
