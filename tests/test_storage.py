"""
Tests for the SQLite store: lookups, atomic upsert and listing.
"""

import sqlite3
from datetime import datetime, timedelta

import pytest
from three_way_match.errors import ReceiptAlreadyLinked
from three_way_match.schemas.documents import GoodsReceipt, OrderStatus, PurchaseOrder, ReceiptStatus
from three_way_match.schemas.match import (
    AuditEntry,
    ExceptionKind,
    MatchException,
    MatchResult,
    MatchStatus,
    Outcome,
    Pairing,
)


TENANT_ID = 1
SUPPLIER_ID = 10


def make_exception(kind=ExceptionKind.QUANTITY_MISMATCH, field="line[WID-A].quantity"):
    return MatchException(
        kind=kind,
        pairing=Pairing.ORDER_INVOICE,
        field=field,
        expected="100",
        actual="93",
        difference=7.0,
        percent_difference=7.0,
        affected_amount=70.0,
    )


def make_result(invoice, receipt=None, exceptions=None, status=MatchStatus.DISCREPANCY):
    exceptions = exceptions if exceptions is not None else [make_exception()]
    return MatchResult(
        tenant_id=invoice.tenant_id,
        invoice_id=invoice.id,
        goods_receipt_id=receipt.id if receipt else None,
        order_invoice=Outcome.FAIL if exceptions else Outcome.PASS,
        receipt_invoice=Outcome.PASS,
        order_receipt=Outcome.PASS,
        fully_matched=status == MatchStatus.MATCH_OK,
        status=status,
        exceptions=exceptions,
    )


class TestLookups:

    def test_invoice_scoped_to_tenant(self, store, seed):
        _, _, invoice = seed()

        assert store.get_invoice(invoice.id, TENANT_ID).number == "FC-A-0001"
        assert store.get_invoice(invoice.id, TENANT_ID + 1) is None

    def test_latest_matchable_order(self, store, seed):
        older, _, _ = seed()
        now = datetime.utcnow()
        newer = store.add_purchase_order(PurchaseOrder(
            tenant_id=TENANT_ID, supplier_id=SUPPLIER_ID, number="PO-0002",
            status=OrderStatus.CONFIRMED, created_at=now + timedelta(days=1),
        ))
        store.add_purchase_order(PurchaseOrder(
            tenant_id=TENANT_ID, supplier_id=SUPPLIER_ID, number="PO-DRAFT",
            status=OrderStatus.DRAFT, created_at=now + timedelta(days=2),
        ))
        store.add_purchase_order(PurchaseOrder(
            tenant_id=TENANT_ID, supplier_id=SUPPLIER_ID + 1, number="PO-OTHER",
            created_at=now + timedelta(days=3),
        ))

        found = store.find_latest_order(TENANT_ID, SUPPLIER_ID)

        assert found.id == newer.id
        assert found.id != older.id

    def test_open_receipt_skips_other_invoices(self, store, seed):
        _, receipt, invoice = seed()
        other_invoice = store.add_invoice(invoice.model_copy(update={"id": None, "number": "FC-A-0002"}))
        store.add_goods_receipt(GoodsReceipt(
            tenant_id=TENANT_ID, supplier_id=SUPPLIER_ID, number="GR-LINKED",
            invoice_id=other_invoice.id, invoiced=True,
            created_at=datetime.utcnow() + timedelta(days=1),
        ))
        store.add_goods_receipt(GoodsReceipt(
            tenant_id=TENANT_ID, supplier_id=SUPPLIER_ID, number="GR-DRAFT",
            status=ReceiptStatus.DRAFT, created_at=datetime.utcnow() + timedelta(days=2),
        ))

        found = store.find_open_receipt(TENANT_ID, SUPPLIER_ID, invoice.id)

        assert found.id == receipt.id
        assert [line.product_ref for line in found.lines] == ["WID-A", "GEAR-B"]

    def test_receipt_linked_to_same_invoice_still_found(self, store, seed):
        _, receipt, invoice = seed()
        store.save_match_result(make_result(invoice, receipt, [], MatchStatus.MATCH_OK), link_receipt=True)

        found = store.find_open_receipt(TENANT_ID, SUPPLIER_ID, invoice.id)

        assert found.id == receipt.id
        assert found.invoice_id == invoice.id
        assert found.invoiced is True


class TestSaveMatchResult:

    def test_upsert_replaces_exceptions(self, store, seed):
        _, _, invoice = seed()
        first = store.save_match_result(make_result(invoice, exceptions=[
            make_exception(),
            make_exception(ExceptionKind.PRICE_MISMATCH, "line[WID-A].unit_price"),
        ]))

        second = store.save_match_result(make_result(invoice, exceptions=[make_exception()]))

        assert second.id == first.id
        assert "id" not in second.exceptions[0].model_dump()
        stored = store.get_match_result(invoice.id, TENANT_ID)
        assert len(stored.exceptions) == 1
        assert stored.exceptions[0].kind == ExceptionKind.QUANTITY_MISMATCH
        assert stored.exceptions[0].within_tolerance is False

    def test_link_receipt(self, store, seed):
        _, receipt, invoice = seed()

        store.save_match_result(make_result(invoice, receipt, [], MatchStatus.MATCH_OK), link_receipt=True)
        store.save_match_result(make_result(invoice, receipt, [], MatchStatus.MATCH_OK), link_receipt=True)

        linked = store.get_goods_receipt(receipt.id, TENANT_ID)
        assert linked.invoice_id == invoice.id
        assert linked.invoiced is True

    def test_receipt_linked_elsewhere_is_not_taken_over(self, store, seed):
        """A MATCH_OK for a second invoice on an already linked receipt rolls back."""
        _, receipt, invoice = seed()
        other_invoice = store.add_invoice(invoice.model_copy(update={"id": None, "number": "FC-A-0002"}))
        store.save_match_result(make_result(invoice, receipt, [], MatchStatus.MATCH_OK), link_receipt=True)

        with pytest.raises(ReceiptAlreadyLinked) as exc_info:
            store.save_match_result(
                make_result(other_invoice, receipt, [], MatchStatus.MATCH_OK), link_receipt=True,
            )

        assert exc_info.value.receipt_id == receipt.id
        assert store.get_match_result(other_invoice.id, TENANT_ID) is None
        assert store.get_goods_receipt(receipt.id, TENANT_ID).invoice_id == invoice.id

    def test_failed_write_leaves_previous_result_intact(self, store, seed):
        """Verdict, exceptions and receipt link commit together or not at all."""
        _, receipt, invoice = seed()
        store.save_match_result(make_result(invoice, receipt, [make_exception()]))

        with store.get_db() as conn:
            conn.execute(
                """CREATE TRIGGER fail_price_exceptions BEFORE INSERT ON match_exceptions
                   WHEN NEW.kind = 'PRICE_MISMATCH'
                   BEGIN SELECT RAISE(ABORT, 'simulated storage failure'); END"""
            )

        with pytest.raises(sqlite3.DatabaseError):
            store.save_match_result(
                make_result(invoice, receipt, [
                    make_exception(ExceptionKind.PRICE_MISMATCH, "line[WID-A].unit_price"),
                ]),
                link_receipt=True,
            )

        stored = store.get_match_result(invoice.id, TENANT_ID)
        assert stored.status == MatchStatus.DISCREPANCY
        assert [e.kind for e in stored.exceptions] == [ExceptionKind.QUANTITY_MISMATCH]
        assert store.get_goods_receipt(receipt.id, TENANT_ID).invoice_id is None


class TestListing:

    def test_listing_joins_documents(self, store, seed):
        order, receipt, invoice = seed()
        store.save_match_result(make_result(invoice, receipt).model_copy(
            update={"purchase_order_id": order.id}
        ))

        result_page = store.list_match_results(TENANT_ID)

        assert result_page.total == 1
        item = result_page.items[0]
        assert item.invoice_number == "FC-A-0001"
        assert item.purchase_order_number == "PO-0001"
        assert item.goods_receipt_number == "GR-0001"
        assert item.supplier_id == SUPPLIER_ID
        assert item.exception_count == 1

    def test_status_filter_and_pagination(self, store, seed):
        for index in range(5):
            _, _, invoice = seed(with_order=False, with_receipt=False)
            status = MatchStatus.MATCH_OK if index % 2 == 0 else MatchStatus.DISCREPANCY
            store.save_match_result(make_result(invoice, exceptions=[] if index % 2 == 0 else None, status=status))

        ok_page = store.list_match_results(TENANT_ID, status=MatchStatus.MATCH_OK)
        first_page = store.list_match_results(TENANT_ID, page=1, page_size=2)
        last_page = store.list_match_results(TENANT_ID, page=3, page_size=2)

        assert ok_page.total == 3
        assert all(item.status == MatchStatus.MATCH_OK for item in ok_page.items)
        assert first_page.total == 5
        assert len(first_page.items) == 2
        assert len(last_page.items) == 1

    def test_listing_is_tenant_scoped(self, store, seed):
        _, _, invoice = seed(with_order=False, with_receipt=False)
        store.save_match_result(make_result(invoice))

        assert store.list_match_results(TENANT_ID + 1).total == 0


class TestAuditLog:

    def test_entries_round_trip(self, store):
        store.append(AuditEntry(
            entity_id=42, status=MatchStatus.DISCREPANCY, exception_count=2,
            purchase_order_id=1, tenant_id=TENANT_ID, actor_id=7,
        ))

        entries = store.list_entries(TENANT_ID, entity_id=42)

        assert len(entries) == 1
        assert entries[0].action == "EXECUTE_MATCH"
        assert entries[0].exception_count == 2
        assert entries[0].actor_id == 7


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
