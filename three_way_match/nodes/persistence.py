"""
Result Upserter and Auto-Link
Writes the verdict, replaces its exception set and, on a full match, links
the goods receipt to the invoice. All three happen in one transaction, so a
stored verdict and its receipt link never disagree.
"""

import asyncio

from three_way_match.schemas.match import MatchResult
from three_way_match.state import MatchState
from three_way_match.storage.base import DocumentStore
from three_way_match.utils.logging import setup_logging, log_node_action


logger = setup_logging(__name__)


def build_match_result(state: MatchState) -> MatchResult:
    return MatchResult(
        tenant_id=state.tenant_id,
        invoice_id=state.invoice_id,
        purchase_order_id=state.order.id if state.order else None,
        goods_receipt_id=state.receipt.id if state.receipt else None,
        order_invoice=state.order_invoice,
        receipt_invoice=state.receipt_invoice,
        order_receipt=state.order_receipt,
        fully_matched=state.fully_matched,
        status=state.status,
        exceptions=state.exceptions,
    )


async def persist_result_node(state: MatchState, store: DocumentStore) -> MatchState:
    """
    Result Upserter node.

    Storage errors propagate to the caller; the transaction is rolled back
    and the previously stored verdict stays intact. ReceiptAlreadyLinked
    means another invoice took the receipt after it was loaded; a re-run
    sees the receipt as unavailable.

    Updates state:
    - match_result
    - receipt_linked
    """
    link_receipt = state.fully_matched and state.receipt is not None

    saved = await asyncio.to_thread(store.save_match_result, build_match_result(state), link_receipt)

    state.match_result = saved
    state.receipt_linked = link_receipt

    log_node_action(
        logger,
        "ResultUpserter",
        "match_result_saved",
        {
            "match_result_id": saved.id,
            "status": saved.status.value,
            "exception_count": len(saved.exceptions),
            "receipt_linked": link_receipt,
        },
    )
    state.add_reasoning(
        node_name="ResultUpserter",
        message=(
            f"Saved match result {saved.id} with {len(saved.exceptions)} exception(s)"
            + (f"; receipt {state.receipt.number} linked" if link_receipt else "")
        ),
    )
    return state
