"""
Pairwise Matcher
Runs the three comparisons of a three-way match and collects the
discrepancies they emit.

Order <-> Invoice    totals, line presence, quantities and unit prices
Receipt <-> Invoice  received quantities against billed quantities
Order <-> Receipt    delivery completeness; no exceptions, outcome only

A value breaches its band when its percent difference is strictly greater
than the tolerance. Only breaches become exceptions, so widening a
tolerance can never add one.
"""

from typing import List, Optional, Tuple
from rapidfuzz import fuzz

from three_way_match.config import get_config
from three_way_match.schemas.documents import (
    GoodsReceipt,
    Invoice,
    InvoiceLine,
    OrderLine,
    PurchaseOrder,
)
from three_way_match.schemas.match import (
    ExceptionKind,
    MatchException,
    Outcome,
    Pairing,
    ToleranceConfig,
)
from three_way_match.state import MatchState
from three_way_match.utils import absolute_difference, format_number, percent_difference, safe_divide
from three_way_match.utils.logging import setup_logging, log_match_exception


logger = setup_logging(__name__)
config = get_config()


class ExceptionCollector:
    """Accumulates exceptions in emission order. No deduplication."""

    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        self._items: List[MatchException] = []

    def add(self, exception: MatchException) -> None:
        self._items.append(exception)
        log_match_exception(
            logger,
            self.invoice_id,
            exception.kind.value,
            exception.field,
            exception.percent_difference,
        )

    def extend(self, exceptions: List[MatchException]) -> None:
        for exception in exceptions:
            self.add(exception)

    @property
    def items(self) -> List[MatchException]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


def line_key(product_ref: Optional[str], description: str) -> str:
    return product_ref or description.strip()


def _variance_exception(
    kind: ExceptionKind,
    pairing: Pairing,
    field: str,
    expected: Optional[float],
    actual: Optional[float],
    affected_per_unit: float = 1.0,
) -> MatchException:
    difference = absolute_difference(expected, actual)
    return MatchException(
        kind=kind,
        pairing=pairing,
        field=field,
        expected=format_number(expected),
        actual=format_number(actual),
        difference=difference,
        percent_difference=percent_difference(expected, actual, config.PERCENT_PRECISION),
        within_tolerance=False,
        affected_amount=round(difference * affected_per_unit, 2),
    )


def _descriptions_overlap(order_description: str, invoice_description: str) -> bool:
    needle = order_description.strip().lower()
    haystack = invoice_description.strip().lower()
    if not needle or not haystack:
        return False
    return needle in haystack or haystack in needle


def find_invoice_line(
    order_line: OrderLine,
    invoice_lines: List[InvoiceLine],
    fuzzy_threshold: Optional[float] = None,
) -> Optional[InvoiceLine]:
    """
    Find the invoice line billing an order line.

    1. Product reference equality.
    2. Case-insensitive substring match between descriptions, in either
       direction. Heuristic: "Widget" will match "Widget A" and "Widget B"
       alike and the first invoice line wins.
    3. RapidFuzz token-set similarity >= fuzzy_threshold, when configured.

    Steps 2 and 3 never pair lines whose product references disagree.
    """
    if order_line.product_ref:
        for line in invoice_lines:
            if line.product_ref == order_line.product_ref:
                return line

    candidates = [
        line for line in invoice_lines
        if not (line.product_ref and order_line.product_ref)
    ]

    for line in candidates:
        if _descriptions_overlap(order_line.description, line.description):
            return line

    if fuzzy_threshold and order_line.description.strip():
        best_line, best_score = None, 0.0
        for line in candidates:
            if not line.description.strip():
                continue
            score = fuzz.token_set_ratio(order_line.description.upper(), line.description.upper())
            if score > best_score:
                best_line, best_score = line, score
        if best_line is not None and best_score >= fuzzy_threshold:
            logger.debug(
                f"[PairwiseMatcher] Fuzzy-aligned '{order_line.description}' to "
                f"'{best_line.description}' (score: {best_score:.1f})"
            )
            return best_line

    return None


def compare_order_invoice(
    order: Optional[PurchaseOrder],
    invoice: Invoice,
    tolerance: ToleranceConfig,
    fuzzy_threshold: Optional[float] = None,
) -> Tuple[Outcome, List[MatchException]]:
    """
    Compare the purchase order against the invoice.

    Returns:
        (outcome, exceptions)
        - UNKNOWN with a NO_ORDER exception when there is no order
        - PASS when nothing breached, FAIL otherwise
    """
    pairing = Pairing.ORDER_INVOICE

    if order is None:
        return Outcome.UNKNOWN, [
            MatchException(
                kind=ExceptionKind.NO_ORDER,
                pairing=pairing,
                field="purchase_order",
                actual=invoice.number,
                affected_amount=invoice.total,
            )
        ]

    exceptions: List[MatchException] = []

    # Totals, under the price band
    if percent_difference(order.total, invoice.total, config.PERCENT_PRECISION) > tolerance.price_tolerance_pct:
        exceptions.append(_variance_exception(
            ExceptionKind.TOTAL_MISMATCH, pairing, "total", order.total, invoice.total,
        ))

    for order_line in order.lines:
        key = line_key(order_line.product_ref, order_line.description)
        invoice_line = find_invoice_line(order_line, invoice.lines, fuzzy_threshold)

        if invoice_line is None:
            exceptions.append(MatchException(
                kind=ExceptionKind.ITEM_MISSING,
                pairing=pairing,
                field=f"line[{key}]",
                expected=format_number(order_line.ordered_qty),
                actual=None,
                difference=order_line.ordered_qty,
                percent_difference=100.0,
                affected_amount=round(order_line.ordered_qty * order_line.unit_price, 2),
            ))
            continue

        qty_pct = percent_difference(order_line.ordered_qty, invoice_line.quantity, config.PERCENT_PRECISION)
        if qty_pct > tolerance.quantity_tolerance_pct:
            exceptions.append(_variance_exception(
                ExceptionKind.QUANTITY_MISMATCH, pairing, f"line[{key}].quantity",
                order_line.ordered_qty, invoice_line.quantity,
                affected_per_unit=order_line.unit_price,
            ))

        price_pct = percent_difference(order_line.unit_price, invoice_line.unit_price, config.PERCENT_PRECISION)
        if price_pct > tolerance.price_tolerance_pct:
            exceptions.append(_variance_exception(
                ExceptionKind.PRICE_MISMATCH, pairing, f"line[{key}].unit_price",
                order_line.unit_price, invoice_line.unit_price,
                affected_per_unit=invoice_line.quantity,
            ))

    return (Outcome.FAIL if exceptions else Outcome.PASS), exceptions


def compare_receipt_invoice(
    receipt: Optional[GoodsReceipt],
    invoice: Invoice,
    tolerance: ToleranceConfig,
) -> Tuple[Outcome, List[MatchException]]:
    """
    Compare received quantities against billed quantities.

    Received lines that the invoice does not bill are skipped: partial
    invoicing is legitimate.
    """
    pairing = Pairing.RECEIPT_INVOICE

    if receipt is None:
        return Outcome.UNKNOWN, [
            MatchException(
                kind=ExceptionKind.NO_RECEIPT,
                pairing=pairing,
                field="goods_receipt",
                actual=invoice.number,
                affected_amount=invoice.total,
            )
        ]

    exceptions: List[MatchException] = []
    invoice_by_ref = {}
    for line in invoice.lines:
        if line.product_ref:
            invoice_by_ref.setdefault(line.product_ref, line)

    for received in receipt.lines:
        invoice_line = invoice_by_ref.get(received.product_ref) if received.product_ref else None
        if invoice_line is None:
            continue

        qty_pct = percent_difference(received.accepted_qty, invoice_line.quantity, config.PERCENT_PRECISION)
        if qty_pct > tolerance.quantity_tolerance_pct:
            exceptions.append(_variance_exception(
                ExceptionKind.QUANTITY_MISMATCH, pairing,
                f"line[{line_key(received.product_ref, received.description)}].quantity",
                received.accepted_qty, invoice_line.quantity,
                affected_per_unit=invoice_line.unit_price,
            ))

    return (Outcome.FAIL if exceptions else Outcome.PASS), exceptions


def compare_order_receipt(
    order: Optional[PurchaseOrder],
    receipt: Optional[GoodsReceipt],
    min_ratio: float = 0.95,
) -> Outcome:
    """
    Check that the receipt covers the order.

    An order line fails when nothing was received for it while quantity is
    still pending, or when received / ordered falls under min_ratio.
    Receipt lines are linked by order line id; only lines without one fall
    back to the product reference. Accepted quantities are summed.
    """
    if order is None or receipt is None:
        return Outcome.UNKNOWN

    outcome = Outcome.PASS
    for order_line in order.lines:
        received_lines = [
            received for received in receipt.lines
            if (received.order_line_id is not None and received.order_line_id == order_line.id)
            or (
                received.order_line_id is None
                and order_line.product_ref
                and received.product_ref == order_line.product_ref
            )
        ]

        if not received_lines:
            if order_line.pending_qty > 0:
                logger.debug(
                    f"[PairwiseMatcher] Order line {line_key(order_line.product_ref, order_line.description)} "
                    f"not received, {order_line.pending_qty} pending"
                )
                outcome = Outcome.FAIL
            continue

        received_qty = sum(received.accepted_qty for received in received_lines)
        ratio = round(safe_divide(received_qty, order_line.ordered_qty, default=1.0), 6)
        if ratio < min_ratio:
            logger.debug(
                f"[PairwiseMatcher] Order line {line_key(order_line.product_ref, order_line.description)} "
                f"received {ratio:.1%} < {min_ratio:.0%}"
            )
            outcome = Outcome.FAIL

    return outcome


async def match_documents_node(state: MatchState) -> MatchState:
    """
    Pairwise Matcher node.

    The comparisons are pure functions over already-loaded documents and run
    sequentially.

    Updates state:
    - order_invoice, receipt_invoice, order_receipt
    - exceptions (fresh list, never merged with a previous run)
    """
    logger.info(f"[PairwiseMatcher] Comparing documents for invoice {state.invoice_id}")

    collector = ExceptionCollector(state.invoice_id)

    order_invoice, order_invoice_exceptions = compare_order_invoice(
        state.order, state.invoice, state.tolerance, config.DESCRIPTION_FUZZY_THRESHOLD,
    )
    collector.extend(order_invoice_exceptions)

    receipt_invoice, receipt_invoice_exceptions = compare_receipt_invoice(
        state.receipt, state.invoice, state.tolerance,
    )
    collector.extend(receipt_invoice_exceptions)

    order_receipt = compare_order_receipt(state.order, state.receipt, config.ORDER_RECEIPT_MIN_RATIO)

    state.order_invoice = order_invoice
    state.receipt_invoice = receipt_invoice
    state.order_receipt = order_receipt
    state.exceptions = collector.items

    state.add_reasoning(
        node_name="PairwiseMatcher",
        message=(
            f"order/invoice {order_invoice.value}, receipt/invoice {receipt_invoice.value}, "
            f"order/receipt {order_receipt.value}; {len(collector)} exception(s)"
        ),
    )
    return state
