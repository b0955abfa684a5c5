"""
SQLite-backed document, configuration and audit storage.

Every public method opens its own connection, so the store can be used from
worker threads. Writes that must be atomic run inside BEGIN IMMEDIATE, which
takes the database write lock up front and serializes concurrent match runs.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from three_way_match.errors import ReceiptAlreadyLinked
from three_way_match.schemas.documents import (
    MATCHABLE_ORDER_STATUSES,
    GoodsReceipt,
    Invoice,
    InvoiceLine,
    OrderLine,
    PurchaseOrder,
    ReceiptLine,
    ReceiptStatus,
)
from three_way_match.schemas.match import (
    AuditEntry,
    MatchException,
    MatchResult,
    MatchResultListItem,
    MatchResultPage,
    MatchStatus,
)
from three_way_match.storage.base import AuditSink, ConfigStore, DocumentStore
from three_way_match.utils.logging import setup_logging


logger = setup_logging(__name__)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS purchase_orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL,
        supplier_id INTEGER NOT NULL,
        number TEXT NOT NULL,
        total REAL,
        status TEXT NOT NULL DEFAULT 'sent',
        fiscal_class TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS purchase_order_lines (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER NOT NULL,
        product_ref TEXT,
        description TEXT DEFAULT '',
        ordered_qty REAL NOT NULL,
        pending_qty REAL DEFAULT 0,
        unit_price REAL NOT NULL,
        FOREIGN KEY (order_id) REFERENCES purchase_orders(id)
    );

    CREATE TABLE IF NOT EXISTS invoices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL,
        supplier_id INTEGER NOT NULL,
        number TEXT NOT NULL,
        total REAL,
        fiscal_class TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS invoice_lines (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        invoice_id INTEGER NOT NULL,
        product_ref TEXT,
        description TEXT DEFAULT '',
        quantity REAL NOT NULL,
        unit_price REAL NOT NULL,
        FOREIGN KEY (invoice_id) REFERENCES invoices(id)
    );

    CREATE TABLE IF NOT EXISTS goods_receipts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL,
        supplier_id INTEGER NOT NULL,
        number TEXT NOT NULL,
        purchase_order_id INTEGER,
        status TEXT NOT NULL DEFAULT 'confirmed',
        invoice_id INTEGER,  -- back-reference set by auto-link
        invoiced INTEGER DEFAULT 0,
        fiscal_class TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (purchase_order_id) REFERENCES purchase_orders(id),
        FOREIGN KEY (invoice_id) REFERENCES invoices(id)
    );

    CREATE TABLE IF NOT EXISTS goods_receipt_lines (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        receipt_id INTEGER NOT NULL,
        order_line_id INTEGER,
        product_ref TEXT,
        description TEXT DEFAULT '',
        accepted_qty REAL NOT NULL,
        FOREIGN KEY (receipt_id) REFERENCES goods_receipts(id)
    );

    -- Values are not type-checked here; the tolerance provider validates them
    CREATE TABLE IF NOT EXISTS tolerance_configs (
        tenant_id INTEGER PRIMARY KEY,
        quantity_tolerance_pct,
        price_tolerance_pct,
        allow_payment_without_match,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS match_results (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL,
        invoice_id INTEGER NOT NULL,
        purchase_order_id INTEGER,
        goods_receipt_id INTEGER,
        order_invoice TEXT NOT NULL DEFAULT 'unknown',
        receipt_invoice TEXT NOT NULL DEFAULT 'unknown',
        order_receipt TEXT NOT NULL DEFAULT 'unknown',
        fully_matched INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'PENDING',
        exceptions_snapshot TEXT,  -- JSON array, replaced on every run
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(tenant_id, invoice_id),
        FOREIGN KEY (invoice_id) REFERENCES invoices(id)
    );

    CREATE TABLE IF NOT EXISTS match_exceptions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        match_result_id INTEGER NOT NULL,
        kind TEXT NOT NULL,
        pairing TEXT NOT NULL,
        field TEXT NOT NULL,
        expected TEXT,
        actual TEXT,
        difference REAL,
        percent_difference REAL,
        within_tolerance INTEGER DEFAULT 0,
        affected_amount REAL,
        FOREIGN KEY (match_result_id) REFERENCES match_results(id)
    );

    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL,
        entity TEXT NOT NULL,
        entity_id INTEGER,
        action TEXT NOT NULL,
        payload TEXT,  -- JSON blob
        actor_id INTEGER,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_orders_supplier ON purchase_orders(tenant_id, supplier_id);
    CREATE INDEX IF NOT EXISTS idx_receipts_supplier ON goods_receipts(tenant_id, supplier_id);
    CREATE INDEX IF NOT EXISTS idx_match_results_status ON match_results(tenant_id, status);
    CREATE INDEX IF NOT EXISTS idx_match_exceptions_result ON match_exceptions(match_result_id);
"""


def _now() -> str:
    return datetime.utcnow().isoformat()


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class SQLiteStore(DocumentStore, ConfigStore, AuditSink):
    """Reference storage implementation for all engine collaborators."""

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000):
        self.db_path = str(db_path)
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def get_db(self, immediate: bool = False):
        """Context manager for database connections. Commits on success, rolls back on error."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_ms / 1000)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with self.get_db() as conn:
            # WAL lets lookups proceed while a match result is being written
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)

        logger.info(f"Initialized match database at {self.db_path}")

    # ------------------------------------------------------------------
    # Document writes (used by the purchasing module and fixtures)
    # ------------------------------------------------------------------

    def add_purchase_order(self, order: PurchaseOrder) -> PurchaseOrder:
        with self.get_db() as conn:
            cursor = conn.execute(
                """INSERT INTO purchase_orders
                   (tenant_id, supplier_id, number, total, status, fiscal_class, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (order.tenant_id, order.supplier_id, order.number, order.total,
                 _enum_value(order.status), _enum_value(order.fiscal_class), order.created_at.isoformat()),
            )
            order_id = cursor.lastrowid
            lines = []
            for line in order.lines:
                line_cursor = conn.execute(
                    """INSERT INTO purchase_order_lines
                       (order_id, product_ref, description, ordered_qty, pending_qty, unit_price)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (order_id, line.product_ref, line.description, line.ordered_qty,
                     line.pending_qty, line.unit_price),
                )
                lines.append(line.model_copy(update={"id": line_cursor.lastrowid}))
        return order.model_copy(update={"id": order_id, "lines": lines})

    def add_invoice(self, invoice: Invoice) -> Invoice:
        with self.get_db() as conn:
            cursor = conn.execute(
                """INSERT INTO invoices (tenant_id, supplier_id, number, total, fiscal_class, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (invoice.tenant_id, invoice.supplier_id, invoice.number, invoice.total,
                 _enum_value(invoice.fiscal_class), invoice.created_at.isoformat()),
            )
            invoice_id = cursor.lastrowid
            lines = []
            for line in invoice.lines:
                line_cursor = conn.execute(
                    """INSERT INTO invoice_lines (invoice_id, product_ref, description, quantity, unit_price)
                       VALUES (?, ?, ?, ?, ?)""",
                    (invoice_id, line.product_ref, line.description, line.quantity, line.unit_price),
                )
                lines.append(line.model_copy(update={"id": line_cursor.lastrowid}))
        return invoice.model_copy(update={"id": invoice_id, "lines": lines})

    def add_goods_receipt(self, receipt: GoodsReceipt) -> GoodsReceipt:
        with self.get_db() as conn:
            cursor = conn.execute(
                """INSERT INTO goods_receipts
                   (tenant_id, supplier_id, number, purchase_order_id, status, invoice_id,
                    invoiced, fiscal_class, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (receipt.tenant_id, receipt.supplier_id, receipt.number, receipt.purchase_order_id,
                 _enum_value(receipt.status), receipt.invoice_id, int(receipt.invoiced),
                 _enum_value(receipt.fiscal_class), receipt.created_at.isoformat()),
            )
            receipt_id = cursor.lastrowid
            lines = []
            for line in receipt.lines:
                line_cursor = conn.execute(
                    """INSERT INTO goods_receipt_lines
                       (receipt_id, order_line_id, product_ref, description, accepted_qty)
                       VALUES (?, ?, ?, ?, ?)""",
                    (receipt_id, line.order_line_id, line.product_ref, line.description, line.accepted_qty),
                )
                lines.append(line.model_copy(update={"id": line_cursor.lastrowid}))
        return receipt.model_copy(update={"id": receipt_id, "lines": lines})

    def get_goods_receipt(self, receipt_id: int, tenant_id: int) -> Optional[GoodsReceipt]:
        with self.get_db() as conn:
            row = conn.execute(
                "SELECT * FROM goods_receipts WHERE id = ? AND tenant_id = ?",
                (receipt_id, tenant_id),
            ).fetchone()
            return self._build_receipt(conn, row) if row else None

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_id: int, tenant_id: int) -> Optional[Invoice]:
        with self.get_db() as conn:
            row = conn.execute(
                "SELECT * FROM invoices WHERE id = ? AND tenant_id = ?",
                (invoice_id, tenant_id),
            ).fetchone()
            if not row:
                return None
            lines = conn.execute(
                """SELECT id, product_ref, description, quantity, unit_price
                   FROM invoice_lines WHERE invoice_id = ? ORDER BY id""",
                (invoice_id,),
            ).fetchall()
            return Invoice(**dict(row), lines=[InvoiceLine(**dict(line)) for line in lines])

    def find_latest_order(self, tenant_id: int, supplier_id: int) -> Optional[PurchaseOrder]:
        statuses = [status.value for status in MATCHABLE_ORDER_STATUSES]
        placeholders = ",".join("?" * len(statuses))
        with self.get_db() as conn:
            row = conn.execute(
                f"""SELECT * FROM purchase_orders
                    WHERE tenant_id = ? AND supplier_id = ? AND status IN ({placeholders})
                    ORDER BY created_at DESC, id DESC LIMIT 1""",
                (tenant_id, supplier_id, *statuses),
            ).fetchone()
            if not row:
                return None
            lines = conn.execute(
                """SELECT id, product_ref, description, ordered_qty, pending_qty, unit_price
                   FROM purchase_order_lines WHERE order_id = ? ORDER BY id""",
                (row["id"],),
            ).fetchall()
            return PurchaseOrder(**dict(row), lines=[OrderLine(**dict(line)) for line in lines])

    def find_open_receipt(self, tenant_id: int, supplier_id: int, invoice_id: int) -> Optional[GoodsReceipt]:
        with self.get_db() as conn:
            row = conn.execute(
                """SELECT * FROM goods_receipts
                   WHERE tenant_id = ? AND supplier_id = ? AND status = ?
                     AND (invoice_id IS NULL OR invoice_id = ?)
                   ORDER BY (invoice_id IS NOT NULL) DESC, created_at DESC, id DESC
                   LIMIT 1""",
                (tenant_id, supplier_id, ReceiptStatus.CONFIRMED.value, invoice_id),
            ).fetchone()
            return self._build_receipt(conn, row) if row else None

    def get_match_result(self, invoice_id: int, tenant_id: int) -> Optional[MatchResult]:
        with self.get_db() as conn:
            row = conn.execute(
                "SELECT * FROM match_results WHERE invoice_id = ? AND tenant_id = ?",
                (invoice_id, tenant_id),
            ).fetchone()
            return self._build_match_result(conn, row) if row else None

    def save_match_result(self, result: MatchResult, link_receipt: bool = False) -> MatchResult:
        now = _now()
        snapshot = json.dumps([
            exc.model_dump(mode="json", exclude={"id"}) for exc in result.exceptions
        ])
        values = (
            result.purchase_order_id,
            result.goods_receipt_id,
            result.order_invoice.value,
            result.receipt_invoice.value,
            result.order_receipt.value,
            int(result.fully_matched),
            result.status.value,
            snapshot,
        )

        with self.get_db(immediate=True) as conn:
            existing = conn.execute(
                "SELECT id FROM match_results WHERE tenant_id = ? AND invoice_id = ?",
                (result.tenant_id, result.invoice_id),
            ).fetchone()

            if existing:
                result_id = existing["id"]
                conn.execute(
                    """UPDATE match_results
                       SET purchase_order_id = ?, goods_receipt_id = ?, order_invoice = ?,
                           receipt_invoice = ?, order_receipt = ?, fully_matched = ?, status = ?,
                           exceptions_snapshot = ?, updated_at = ?
                       WHERE id = ?""",
                    (*values, now, result_id),
                )
                conn.execute("DELETE FROM match_exceptions WHERE match_result_id = ?", (result_id,))
            else:
                cursor = conn.execute(
                    """INSERT INTO match_results
                       (purchase_order_id, goods_receipt_id, order_invoice, receipt_invoice,
                        order_receipt, fully_matched, status, exceptions_snapshot,
                        tenant_id, invoice_id, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (*values, result.tenant_id, result.invoice_id, now, now),
                )
                result_id = cursor.lastrowid

            conn.executemany(
                """INSERT INTO match_exceptions
                   (match_result_id, kind, pairing, field, expected, actual, difference,
                    percent_difference, within_tolerance, affected_amount)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (result_id, exc.kind.value, exc.pairing.value, exc.field, exc.expected, exc.actual,
                     exc.difference, exc.percent_difference, int(exc.within_tolerance), exc.affected_amount)
                    for exc in result.exceptions
                ],
            )

            if link_receipt and result.goods_receipt_id is not None:
                # A concurrent run may have linked the receipt since it was loaded
                cursor = conn.execute(
                    """UPDATE goods_receipts SET invoice_id = ?, invoiced = 1
                       WHERE id = ? AND tenant_id = ? AND (invoice_id IS NULL OR invoice_id = ?)""",
                    (result.invoice_id, result.goods_receipt_id, result.tenant_id, result.invoice_id),
                )
                if cursor.rowcount == 0:
                    raise ReceiptAlreadyLinked(result.goods_receipt_id, result.invoice_id)

            row = conn.execute("SELECT * FROM match_results WHERE id = ?", (result_id,)).fetchone()
            return self._build_match_result(conn, row)

    def list_match_results(
        self,
        tenant_id: int,
        status: Optional[MatchStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> MatchResultPage:
        where = "WHERE mr.tenant_id = ?"
        params: List[Any] = [tenant_id]
        if status is not None:
            where += " AND mr.status = ?"
            params.append(_enum_value(status))

        with self.get_db() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM match_results mr {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"""SELECT mr.id, mr.invoice_id, mr.purchase_order_id, mr.goods_receipt_id,
                           mr.order_invoice, mr.receipt_invoice, mr.order_receipt,
                           mr.fully_matched, mr.status, mr.updated_at,
                           i.number AS invoice_number, i.total AS invoice_total, i.supplier_id,
                           po.number AS purchase_order_number, po.total AS purchase_order_total,
                           gr.number AS goods_receipt_number,
                           (SELECT COUNT(*) FROM match_exceptions me
                             WHERE me.match_result_id = mr.id) AS exception_count
                    FROM match_results mr
                    JOIN invoices i ON i.id = mr.invoice_id
                    LEFT JOIN purchase_orders po ON po.id = mr.purchase_order_id
                    LEFT JOIN goods_receipts gr ON gr.id = mr.goods_receipt_id
                    {where}
                    ORDER BY mr.updated_at DESC, mr.id DESC
                    LIMIT ? OFFSET ?""",
                (*params, page_size, (page - 1) * page_size),
            ).fetchall()

        return MatchResultPage(
            items=[MatchResultListItem(**dict(row)) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
        )

    # ------------------------------------------------------------------
    # ConfigStore
    # ------------------------------------------------------------------

    def get_or_create_tolerance_config(self, tenant_id: int, defaults: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        with self.get_db(immediate=True) as conn:
            conn.execute(
                """INSERT OR IGNORE INTO tolerance_configs
                   (tenant_id, quantity_tolerance_pct, price_tolerance_pct,
                    allow_payment_without_match, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (tenant_id, defaults["quantity_tolerance_pct"], defaults["price_tolerance_pct"],
                 int(defaults["allow_payment_without_match"]), now, now),
            )
            row = conn.execute(
                "SELECT * FROM tolerance_configs WHERE tenant_id = ?", (tenant_id,)
            ).fetchone()
            return dict(row)

    def update_tolerance_config(
        self,
        tenant_id: int,
        quantity_tolerance_pct: Any = None,
        price_tolerance_pct: Any = None,
        allow_payment_without_match: Optional[bool] = None,
    ) -> None:
        """Change stored tolerances. Values are stored as given and validated on read."""
        updates = {
            "quantity_tolerance_pct": quantity_tolerance_pct,
            "price_tolerance_pct": price_tolerance_pct,
            "allow_payment_without_match": (
                int(allow_payment_without_match) if allow_payment_without_match is not None else None
            ),
        }
        updates = {column: value for column, value in updates.items() if value is not None}
        if not updates:
            return

        assignments = ", ".join(f"{column} = ?" for column in updates)
        with self.get_db() as conn:
            conn.execute(
                f"UPDATE tolerance_configs SET {assignments}, updated_at = ? WHERE tenant_id = ?",
                (*updates.values(), _now(), tenant_id),
            )

    # ------------------------------------------------------------------
    # AuditSink
    # ------------------------------------------------------------------

    def append(self, entry: AuditEntry) -> int:
        payload = json.dumps({
            "status": entry.status.value,
            "exception_count": entry.exception_count,
            "purchase_order_id": entry.purchase_order_id,
            "goods_receipt_id": entry.goods_receipt_id,
        })
        with self.get_db() as conn:
            cursor = conn.execute(
                """INSERT INTO audit_log (tenant_id, entity, entity_id, action, payload, actor_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (entry.tenant_id, entry.entity, entry.entity_id, entry.action, payload,
                 entry.actor_id, entry.created_at.isoformat()),
            )
            return cursor.lastrowid

    def list_entries(self, tenant_id: int, entity_id: Optional[int] = None) -> List[AuditEntry]:
        query = "SELECT * FROM audit_log WHERE tenant_id = ?"
        params: List[Any] = [tenant_id]
        if entity_id is not None:
            query += " AND entity_id = ?"
            params.append(entity_id)

        with self.get_db() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()

        entries = []
        for row in rows:
            payload = json.loads(row["payload"] or "{}")
            entries.append(AuditEntry(
                entity=row["entity"],
                entity_id=row["entity_id"],
                action=row["action"],
                tenant_id=row["tenant_id"],
                actor_id=row["actor_id"],
                created_at=row["created_at"],
                **payload,
            ))
        return entries

    # ------------------------------------------------------------------
    # Row builders
    # ------------------------------------------------------------------

    def _build_receipt(self, conn: sqlite3.Connection, row: sqlite3.Row) -> GoodsReceipt:
        lines = conn.execute(
            """SELECT id, order_line_id, product_ref, description, accepted_qty
               FROM goods_receipt_lines WHERE receipt_id = ? ORDER BY id""",
            (row["id"],),
        ).fetchall()
        return GoodsReceipt(**dict(row), lines=[ReceiptLine(**dict(line)) for line in lines])

    def _build_match_result(self, conn: sqlite3.Connection, row: sqlite3.Row) -> MatchResult:
        exception_rows = conn.execute(
            """SELECT id, kind, pairing, field, expected, actual, difference,
                      percent_difference, within_tolerance, affected_amount
               FROM match_exceptions WHERE match_result_id = ? ORDER BY id""",
            (row["id"],),
        ).fetchall()
        data = dict(row)
        data.pop("exceptions_snapshot", None)
        return MatchResult(
            **data,
            exceptions=[MatchException(**dict(exc)) for exc in exception_rows],
        )
