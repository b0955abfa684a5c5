"""
Collaborator interfaces consumed by the match engine.

Document storage, tolerance configuration storage and the audit trail are
owned by other subsystems. The engine depends only on these interfaces.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from three_way_match.schemas.documents import Invoice, PurchaseOrder, GoodsReceipt
from three_way_match.schemas.match import AuditEntry, MatchResult, MatchResultPage, MatchStatus


class DocumentStore(ABC):
    """Read access to purchasing documents plus the match result write path."""

    @abstractmethod
    def get_invoice(self, invoice_id: int, tenant_id: int) -> Optional[Invoice]:
        """Load an invoice with its lines, or None if it does not exist for the tenant."""
        pass

    @abstractmethod
    def find_latest_order(self, tenant_id: int, supplier_id: int) -> Optional[PurchaseOrder]:
        """Most recent matchable purchase order of the supplier."""
        pass

    @abstractmethod
    def find_open_receipt(self, tenant_id: int, supplier_id: int, invoice_id: int) -> Optional[GoodsReceipt]:
        """
        Most recent confirmed goods receipt of the supplier that is not linked
        to another invoice. A receipt already linked to invoice_id qualifies.
        """
        pass

    @abstractmethod
    def get_match_result(self, invoice_id: int, tenant_id: int) -> Optional[MatchResult]:
        pass

    @abstractmethod
    def save_match_result(self, result: MatchResult, link_receipt: bool = False) -> MatchResult:
        """
        Upsert the match result and replace its exception set atomically.

        When link_receipt is set, the result's goods receipt is linked to the
        invoice inside the same transaction. Raises ReceiptAlreadyLinked, and
        writes nothing, if the receipt is linked to another invoice by then.
        """
        pass

    @abstractmethod
    def list_match_results(
        self,
        tenant_id: int,
        status: Optional[MatchStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> MatchResultPage:
        pass


class ConfigStore(ABC):
    """Per-tenant tolerance configuration storage."""

    @abstractmethod
    def get_or_create_tolerance_config(self, tenant_id: int, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Return the raw config row, creating it from defaults if it does not exist."""
        pass


class AuditSink(ABC):
    """Append-only audit trail."""

    @abstractmethod
    def append(self, entry: AuditEntry) -> int:
        pass

    @abstractmethod
    def list_entries(self, tenant_id: int, entity_id: Optional[int] = None) -> List[AuditEntry]:
        pass
