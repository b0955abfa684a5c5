"""
Main entry point for the three-way match engine.
"""

import asyncio
from typing import Optional, Union

from three_way_match.config import get_config
from three_way_match.errors import InvoiceNotFound
from three_way_match.graph import build_match_graph
from three_way_match.schemas.match import (
    MatchRequest,
    MatchResultPage,
    MatchRunOutput,
    MatchStatus,
    MatchSummary,
    PaymentEligibility,
)
from three_way_match.state import MatchState
from three_way_match.storage.base import AuditSink, ConfigStore, DocumentStore
from three_way_match.storage.sqlite_store import SQLiteStore
from three_way_match.tolerance import resolve_tolerance_config
from three_way_match.utils import dict_to_json_string
from three_way_match.utils.logging import setup_logging, log_node_action


logger = setup_logging(__name__)
config = get_config()


def get_store(db_path: str = None) -> SQLiteStore:
    """Open the SQLite store, creating the schema if needed."""
    store = SQLiteStore(db_path or config.DATABASE_PATH, busy_timeout_ms=config.SQLITE_BUSY_TIMEOUT_MS)
    store.init_db()
    return store


def build_output(state: MatchState) -> MatchRunOutput:
    """Build the run output from the final state."""
    summary = MatchSummary(
        order_invoice_outcome=state.order_invoice,
        receipt_invoice_outcome=state.receipt_invoice,
        order_receipt_outcome=state.order_receipt,
        fully_matched=state.fully_matched,
        status=state.status,
        exception_count=len(state.exceptions),
        receipt_linked=state.receipt_linked,
        audit_recorded=state.audit_recorded,
    )
    return MatchRunOutput(
        match_result=state.match_result,
        exceptions=state.match_result.exceptions,
        summary=summary,
    )


async def run_three_way_match(
    invoice_id: int,
    tenant_id: int,
    store: DocumentStore,
    actor_id: Optional[int] = None,
    config_store: Optional[ConfigStore] = None,
    audit_sink: Optional[AuditSink] = None,
) -> MatchRunOutput:
    """
    Run the three-way match for one invoice and persist the verdict.

    Re-running on unchanged documents and tolerances produces the same
    verdict and exception list, so callers may retry after a failure.

    Args:
        invoice_id: Invoice to reconcile
        tenant_id: Tenant from the authenticated session
        store: Document storage
        actor_id: User running the match, recorded in the audit trail
        config_store: Tolerance storage (defaults to store)
        audit_sink: Audit trail (defaults to store)

    Returns:
        MatchRunOutput with the stored result, its exceptions and a summary

    Raises:
        InvoiceNotFound: the invoice does not exist for the tenant
    """
    config_store = config_store or store
    tolerance = await asyncio.to_thread(resolve_tolerance_config, config_store, tenant_id)

    state = MatchState(
        invoice_id=invoice_id,
        tenant_id=tenant_id,
        actor_id=actor_id,
        tolerance=tolerance,
    )

    logger.info(f"Starting three-way match for invoice {invoice_id} (tenant {tenant_id})")

    graph = build_match_graph(store, audit_sink)
    result = await graph.ainvoke(state, config={"recursion_limit": config.GRAPH_RECURSION_LIMIT})
    final_state = MatchState(**result) if isinstance(result, dict) else result

    output = build_output(final_state)

    logger.info(
        f"Three-way match complete for invoice {invoice_id}: {output.summary.status.value} "
        f"({output.summary.exception_count} exception(s))"
    )
    log_node_action(logger, "Workflow", "run_complete", final_state.get_summary())
    logger.debug(final_state.get_reasoning())

    return output


def check_payment_eligibility(
    invoice_id: int,
    tenant_id: int,
    store: DocumentStore,
    config_store: Optional[ConfigStore] = None,
) -> PaymentEligibility:
    """
    Decide whether an invoice may be paid from its stored verdict.

    Nothing is recomputed. Without a MATCH_OK verdict, payment is allowed
    only if the tenant allows payment without match, and then needs approval.
    """
    config_store = config_store or store

    if store.get_invoice(invoice_id, tenant_id) is None:
        raise InvoiceNotFound(invoice_id, tenant_id)

    tolerance = resolve_tolerance_config(config_store, tenant_id)
    result = store.get_match_result(invoice_id, tenant_id)
    allow = tolerance.allow_payment_without_match

    if result is None:
        return PaymentEligibility(
            invoice_id=invoice_id,
            eligible=allow,
            requires_approval=True,
            reason="No three-way match has been run for this invoice",
        )

    if result.status is MatchStatus.MATCH_OK:
        return PaymentEligibility(
            invoice_id=invoice_id,
            eligible=True,
            requires_approval=False,
            reason="Three-way match OK",
            status=result.status,
        )

    if result.status is MatchStatus.DISCREPANCY:
        reason = f"{len(result.exceptions)} match exception(s) recorded"
    else:
        reason = "Match pending: order not fully received"

    if not allow:
        reason += "; payment without match is not allowed"

    return PaymentEligibility(
        invoice_id=invoice_id,
        eligible=allow,
        requires_approval=True,
        reason=reason,
        status=result.status,
    )


async def process_match_request(
    request: MatchRequest,
    tenant_id: int,
    store: DocumentStore,
    actor_id: Optional[int] = None,
    config_store: Optional[ConfigStore] = None,
    audit_sink: Optional[AuditSink] = None,
) -> Union[MatchRunOutput, PaymentEligibility]:
    """Dispatch a match invocation: eligibility check only, or a full run."""
    if request.check_payment_eligibility_only:
        return await asyncio.to_thread(
            check_payment_eligibility, request.invoice_id, tenant_id, store, config_store,
        )

    return await run_three_way_match(
        invoice_id=request.invoice_id,
        tenant_id=tenant_id,
        store=store,
        actor_id=actor_id,
        config_store=config_store,
        audit_sink=audit_sink,
    )


def list_match_results(
    tenant_id: int,
    store: DocumentStore,
    status: Optional[MatchStatus] = None,
    page: int = 1,
    page_size: Optional[int] = None,
) -> MatchResultPage:
    """List the tenant's stored results, most recently updated first."""
    page = max(page, 1)
    page_size = min(max(page_size or config.LIST_PAGE_SIZE, 1), config.LIST_MAX_PAGE_SIZE)
    return store.list_match_results(tenant_id, status=status, page=page, page_size=page_size)


def format_output_json(output: Union[MatchRunOutput, PaymentEligibility]) -> str:
    """Format output as JSON string."""
    return dict_to_json_string(output.model_dump(mode="json"))


if __name__ == "__main__":
    # Example usage
    import sys

    if len(sys.argv) > 2:
        request = MatchRequest(
            invoice_id=int(sys.argv[1]),
            check_payment_eligibility_only="--eligibility" in sys.argv[3:],
        )
        output = asyncio.run(process_match_request(request, int(sys.argv[2]), get_store()))
        print(format_output_json(output))
    else:
        print("Usage: python -m three_way_match.main <invoice_id> <tenant_id> [--eligibility]")
