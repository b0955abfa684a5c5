"""
Verdict Resolver
Folds the three pairwise outcomes and the exception count into one status.
"""

from typing import Tuple

from three_way_match.schemas.match import MatchStatus, Outcome
from three_way_match.state import MatchState
from three_way_match.utils.logging import setup_logging


logger = setup_logging(__name__)


def resolve_verdict(
    order_invoice: Outcome,
    receipt_invoice: Outcome,
    order_receipt: Outcome,
    exception_count: int,
) -> Tuple[bool, MatchStatus]:
    """
    Returns:
        (fully_matched, status)

    MATCH_OK only when all three comparisons passed. Otherwise DISCREPANCY
    if anything was flagged, PENDING if not (e.g. an incomplete delivery
    with a consistent invoice).
    """
    fully_matched = all(
        outcome is Outcome.PASS for outcome in (order_invoice, receipt_invoice, order_receipt)
    )
    if fully_matched:
        return True, MatchStatus.MATCH_OK
    if exception_count > 0:
        return False, MatchStatus.DISCREPANCY
    return False, MatchStatus.PENDING


async def resolve_verdict_node(state: MatchState) -> MatchState:
    """
    Verdict Resolver node.

    Updates state:
    - fully_matched
    - status
    """
    state.fully_matched, state.status = resolve_verdict(
        state.order_invoice,
        state.receipt_invoice,
        state.order_receipt,
        len(state.exceptions),
    )

    logger.info(
        f"[VerdictResolver] Invoice {state.invoice_id}: {state.status.value} "
        f"(fully matched: {state.fully_matched}, exceptions: {len(state.exceptions)})"
    )
    state.add_reasoning(
        node_name="VerdictResolver",
        message=f"Status {state.status.value}, fully matched: {state.fully_matched}",
    )
    return state
