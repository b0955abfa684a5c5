"""
Tests for the document loader node.
"""

import pytest
from unittest.mock import Mock

from three_way_match.errors import InvoiceNotFound
from three_way_match.nodes.loader import inherit_fiscal_class, load_documents_node
from three_way_match.schemas.documents import FiscalClass, GoodsReceipt, Invoice, PurchaseOrder
from three_way_match.schemas.match import ToleranceConfig
from three_way_match.state import MatchState
from three_way_match.storage.base import DocumentStore


@pytest.fixture
def sample_state():
    return MatchState(invoice_id=5, tenant_id=1, tolerance=ToleranceConfig(tenant_id=1))


@pytest.fixture
def mock_store():
    store = Mock(spec=DocumentStore)
    store.get_invoice.return_value = Invoice(id=5, tenant_id=1, supplier_id=10, number="FC-A-0005", total=100.0)
    store.find_latest_order.return_value = PurchaseOrder(
        id=3, tenant_id=1, supplier_id=10, number="PO-0003", fiscal_class=FiscalClass.EXTENDED,
    )
    store.find_open_receipt.return_value = None
    return store


@pytest.mark.asyncio
async def test_loads_candidates_for_invoice_supplier(sample_state, mock_store):
    state = await load_documents_node(sample_state, mock_store)

    mock_store.get_invoice.assert_called_once_with(5, 1)
    mock_store.find_latest_order.assert_called_once_with(1, 10)
    mock_store.find_open_receipt.assert_called_once_with(1, 10, 5)
    assert state.order.number == "PO-0003"
    assert state.receipt is None
    assert "none found" in state.get_reasoning()


@pytest.mark.asyncio
async def test_missing_invoice_stops_before_lookups(sample_state, mock_store):
    mock_store.get_invoice.return_value = None

    with pytest.raises(InvoiceNotFound) as exc_info:
        await load_documents_node(sample_state, mock_store)

    assert exc_info.value.invoice_id == 5
    mock_store.find_latest_order.assert_not_called()
    mock_store.find_open_receipt.assert_not_called()


@pytest.mark.asyncio
async def test_fiscal_class_inherited_from_order(sample_state, mock_store):
    state = await load_documents_node(sample_state, mock_store)

    assert state.invoice.fiscal_class == FiscalClass.EXTENDED


def test_fiscal_class_falls_back_to_receipt_and_keeps_own(sample_state):
    sample_state.invoice = Invoice(id=5, tenant_id=1, supplier_id=10, number="FC-A-0005")
    sample_state.receipt = GoodsReceipt(
        id=7, tenant_id=1, supplier_id=10, number="GR-0007", fiscal_class=FiscalClass.STANDARD,
    )

    inherit_fiscal_class(sample_state)
    assert sample_state.invoice.fiscal_class == FiscalClass.STANDARD

    sample_state.invoice.fiscal_class = FiscalClass.EXTENDED
    inherit_fiscal_class(sample_state)
    assert sample_state.invoice.fiscal_class == FiscalClass.EXTENDED


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
