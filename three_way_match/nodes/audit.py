"""
Audit Recorder
Appends one audit trail entry per run. Best-effort: a failed append is
logged and does not undo the committed verdict.
"""

import asyncio

from three_way_match.schemas.match import AuditEntry
from three_way_match.state import MatchState
from three_way_match.storage.base import AuditSink
from three_way_match.utils.logging import setup_logging


logger = setup_logging(__name__)


def build_audit_entry(state: MatchState) -> AuditEntry:
    return AuditEntry(
        entity="match_result",
        entity_id=state.match_result.id if state.match_result else None,
        action="EXECUTE_MATCH",
        status=state.status,
        exception_count=len(state.exceptions),
        purchase_order_id=state.order.id if state.order else None,
        goods_receipt_id=state.receipt.id if state.receipt else None,
        tenant_id=state.tenant_id,
        actor_id=state.actor_id,
    )


async def record_audit_node(state: MatchState, audit_sink: AuditSink) -> MatchState:
    """
    Audit Recorder node.

    Updates state:
    - audit_recorded
    - audit_error (when the append failed)
    """
    entry = build_audit_entry(state)

    try:
        await asyncio.to_thread(audit_sink.append, entry)
    except Exception as e:
        logger.exception(f"[AuditRecorder] Failed to record audit entry for invoice {state.invoice_id}: {e}")
        state.audit_recorded = False
        state.audit_error = str(e)
        state.add_reasoning(node_name="AuditRecorder", message=f"Audit entry not recorded: {e}")
        return state

    state.audit_recorded = True
    state.add_reasoning(
        node_name="AuditRecorder",
        message=f"Recorded {entry.action} ({entry.status.value}, {entry.exception_count} exception(s))",
    )
    return state
