"""
LangGraph orchestration for the three-way match workflow.
Defines the graph structure and node order.
"""

from typing import Optional
from langgraph.graph import StateGraph, END
from three_way_match.state import MatchState
from three_way_match.nodes.loader import load_documents_node
from three_way_match.nodes.pairwise import match_documents_node
from three_way_match.nodes.verdict import resolve_verdict_node
from three_way_match.nodes.persistence import persist_result_node
from three_way_match.nodes.audit import record_audit_node
from three_way_match.storage.base import AuditSink, DocumentStore


def build_match_graph(store: DocumentStore, audit_sink: Optional[AuditSink] = None):
    """
    Build the LangGraph workflow for one three-way match run.

    Flow:
    1. Loader - invoice, latest order, open receipt
    2. Pairwise Matcher - three comparisons, exceptions collected
    3. Verdict Resolver - fully matched flag and status
    4. Result Upserter - verdict, exceptions and receipt link in one transaction
    5. Audit Recorder - best-effort trail entry

    Any error raised before the audit node aborts the run.
    """
    audit_sink = audit_sink or store

    async def loader(state: MatchState) -> MatchState:
        return await load_documents_node(state, store)

    async def persist(state: MatchState) -> MatchState:
        return await persist_result_node(state, store)

    async def audit(state: MatchState) -> MatchState:
        return await record_audit_node(state, audit_sink)

    graph = StateGraph(MatchState)

    graph.add_node("loader", loader)
    graph.add_node("pairwise_matcher", match_documents_node)
    graph.add_node("verdict_resolver", resolve_verdict_node)
    graph.add_node("result_upserter", persist)
    graph.add_node("audit_recorder", audit)

    graph.set_entry_point("loader")

    graph.add_edge("loader", "pairwise_matcher")
    graph.add_edge("pairwise_matcher", "verdict_resolver")
    graph.add_edge("verdict_resolver", "result_upserter")
    graph.add_edge("result_upserter", "audit_recorder")
    graph.add_edge("audit_recorder", END)

    return graph.compile()
