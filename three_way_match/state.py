"""
Shared state object for the match workflow.
Every graph node reads from and writes to this state.
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime
from three_way_match.schemas.documents import Invoice, PurchaseOrder, GoodsReceipt
from three_way_match.schemas.match import (
    MatchException,
    MatchResult,
    MatchStatus,
    Outcome,
    ToleranceConfig,
)


class ReasoningLogEntry(BaseModel):
    """A single entry in the run log."""
    timestamp: datetime
    node_name: str
    message: str


class MatchState(BaseModel):
    """
    State of one match run for one invoice.

    Nodes run in order: load documents, compare, resolve the verdict,
    persist, audit. Each node fills in its part and appends to the
    reasoning log.
    """

    # Run identification
    invoice_id: int
    tenant_id: int
    actor_id: Optional[int] = None
    tolerance: ToleranceConfig

    # Loaded documents
    invoice: Optional[Invoice] = None
    order: Optional[PurchaseOrder] = None
    receipt: Optional[GoodsReceipt] = None

    # Pairwise outcomes
    order_invoice: Outcome = Outcome.UNKNOWN
    receipt_invoice: Outcome = Outcome.UNKNOWN
    order_receipt: Outcome = Outcome.UNKNOWN
    exceptions: List[MatchException] = Field(default_factory=list)

    # Verdict
    fully_matched: bool = False
    status: MatchStatus = MatchStatus.PENDING

    # Persistence
    match_result: Optional[MatchResult] = None
    receipt_linked: bool = False
    audit_recorded: bool = False
    audit_error: Optional[str] = None

    # Run log
    reasoning_log: List[ReasoningLogEntry] = Field(default_factory=list)

    def add_reasoning(self, node_name: str, message: str) -> None:
        """Add an entry to the run log."""
        self.reasoning_log.append(
            ReasoningLogEntry(
                timestamp=datetime.utcnow(),
                node_name=node_name,
                message=message,
            )
        )

    def get_reasoning(self) -> str:
        """Get a human-readable summary of the run."""
        if not self.reasoning_log:
            return "No reasoning available."
        return "\n".join(f"[{entry.node_name}] {entry.message}" for entry in self.reasoning_log)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state."""
        return {
            "invoice_id": self.invoice_id,
            "purchase_order_id": self.order.id if self.order else None,
            "goods_receipt_id": self.receipt.id if self.receipt else None,
            "order_invoice": self.order_invoice.value,
            "receipt_invoice": self.receipt_invoice.value,
            "order_receipt": self.order_receipt.value,
            "status": self.status.value,
            "exceptions_found": len(self.exceptions),
        }
