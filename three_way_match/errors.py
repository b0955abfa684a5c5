"""
Exceptions raised by the three-way match engine.
"""


class MatchEngineError(Exception):
    """Base exception for three-way match operations."""
    pass


class InvoiceNotFound(MatchEngineError):
    """Raised when the invoice does not exist for the requesting tenant."""

    def __init__(self, invoice_id: int, tenant_id: int):
        self.invoice_id = invoice_id
        self.tenant_id = tenant_id
        super().__init__(f"Invoice {invoice_id} not found for tenant {tenant_id}")


class ConfigurationError(MatchEngineError):
    """Raised when process configuration is invalid."""
    pass


class ReceiptAlreadyLinked(MatchEngineError):
    """Raised when the goods receipt was linked to another invoice while the match was running."""

    def __init__(self, receipt_id: int, invoice_id: int):
        self.receipt_id = receipt_id
        self.invoice_id = invoice_id
        super().__init__(
            f"Goods receipt {receipt_id} is already linked to another invoice; re-run the match for invoice {invoice_id}"
        )
