"""
Document Loader
Fetches the invoice and the best candidate purchase order and goods receipt
for the same supplier and tenant.
"""

import asyncio

from three_way_match.errors import InvoiceNotFound
from three_way_match.state import MatchState
from three_way_match.storage.base import DocumentStore
from three_way_match.utils.logging import setup_logging, log_node_action


logger = setup_logging(__name__)


def inherit_fiscal_class(state: MatchState) -> None:
    """Fill a missing invoice fiscal class from the order, then the receipt."""
    if state.invoice.fiscal_class is not None:
        return
    for origin in (state.order, state.receipt):
        if origin is not None and origin.fiscal_class is not None:
            state.invoice.fiscal_class = origin.fiscal_class
            return


async def load_documents_node(state: MatchState, store: DocumentStore) -> MatchState:
    """
    Loader node.

    Raises InvoiceNotFound before anything is written. A missing order or
    receipt is a valid business state and is left as None.

    Updates state:
    - invoice
    - order
    - receipt
    """
    logger.info(f"[Loader] Loading documents for invoice {state.invoice_id}")

    invoice = await asyncio.to_thread(store.get_invoice, state.invoice_id, state.tenant_id)
    if invoice is None:
        logger.error(f"[Loader] Invoice {state.invoice_id} not found for tenant {state.tenant_id}")
        raise InvoiceNotFound(state.invoice_id, state.tenant_id)

    # The two lookups are independent reads
    order, receipt = await asyncio.gather(
        asyncio.to_thread(store.find_latest_order, state.tenant_id, invoice.supplier_id),
        asyncio.to_thread(store.find_open_receipt, state.tenant_id, invoice.supplier_id, invoice.id),
    )

    state.invoice = invoice
    state.order = order
    state.receipt = receipt
    inherit_fiscal_class(state)

    log_node_action(
        logger,
        "Loader",
        "documents_loaded",
        {
            "invoice_id": invoice.id,
            "purchase_order_id": order.id if order else None,
            "goods_receipt_id": receipt.id if receipt else None,
        },
    )
    state.add_reasoning(
        node_name="Loader",
        message=(
            f"Invoice {invoice.number} ({len(invoice.lines)} lines); "
            f"order: {order.number if order else 'none found'}; "
            f"receipt: {receipt.number if receipt else 'none found'}"
        ),
    )
    return state
