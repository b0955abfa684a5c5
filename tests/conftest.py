"""
Shared fixtures: a throwaway SQLite store and a seeder for purchasing documents.
"""

import os

os.environ.setdefault("ENV", "test")

import pytest

from three_way_match.schemas.documents import (
    GoodsReceipt,
    Invoice,
    InvoiceLine,
    OrderLine,
    PurchaseOrder,
    ReceiptLine,
)
from three_way_match.storage.sqlite_store import SQLiteStore


TENANT_ID = 1
SUPPLIER_ID = 10


def default_invoice_lines():
    return [
        InvoiceLine(product_ref="WID-A", description="Widget A", quantity=100, unit_price=10.0),
        InvoiceLine(product_ref="GEAR-B", description="Gear B", quantity=10, unit_price=500.0),
    ]


@pytest.fixture
def store(tmp_path):
    """Fresh database per test."""
    store = SQLiteStore(str(tmp_path / "match.db"))
    store.init_db()
    return store


@pytest.fixture
def seed(store):
    """
    Seed an order (Widget A 100 @ 10, Gear B 10 @ 500), a receipt that
    accepted everything, and an invoice billing the order exactly.

    Returns (order, receipt, invoice); order or receipt is None when disabled.
    """

    def _seed(
        invoice_lines=None,
        invoice_total=6000.0,
        received=None,
        with_order=True,
        with_receipt=True,
        tenant_id=TENANT_ID,
        supplier_id=SUPPLIER_ID,
    ):
        order = None
        if with_order:
            order = store.add_purchase_order(PurchaseOrder(
                tenant_id=tenant_id,
                supplier_id=supplier_id,
                number="PO-0001",
                total=6000.0,
                lines=[
                    OrderLine(product_ref="WID-A", description="Widget A", ordered_qty=100, unit_price=10.0),
                    OrderLine(product_ref="GEAR-B", description="Gear B", ordered_qty=10, unit_price=500.0),
                ],
            ))

        receipt = None
        if with_receipt:
            received = received or {"WID-A": 100, "GEAR-B": 10}
            order_line_ids = {line.product_ref: line.id for line in order.lines} if order else {}
            receipt = store.add_goods_receipt(GoodsReceipt(
                tenant_id=tenant_id,
                supplier_id=supplier_id,
                number="GR-0001",
                purchase_order_id=order.id if order else None,
                lines=[
                    ReceiptLine(
                        order_line_id=order_line_ids.get(ref),
                        product_ref=ref,
                        accepted_qty=qty,
                    )
                    for ref, qty in received.items()
                ],
            ))

        invoice = store.add_invoice(Invoice(
            tenant_id=tenant_id,
            supplier_id=supplier_id,
            number="FC-A-0001",
            total=invoice_total,
            lines=invoice_lines if invoice_lines is not None else default_invoice_lines(),
        ))
        return order, receipt, invoice

    return _seed
