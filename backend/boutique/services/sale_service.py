# Overview: Order lifecycle and sale completion; sequences reservation, deduction and status changes.

"""
Sale-Completion Orchestrator

Entry points for checkout, POS, and payment callbacks.

Order status machine:

    pending ──> processing ──> completed ──> refunded
       │  └──────────────────────^
       └──────────┴──> failed | cancelled

completed, failed, cancelled and refunded never move back to an earlier
state. A refund does not put units back into stock.

POLICY: once money has changed hands the order completes. A line whose stock
commit fails (insufficient stock, store error) is logged for reconciliation
and the remaining lines are still processed.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Order, OrderItem, Product, Transaction
from ..models.orders import (
    SALE_TYPES,
    SALE_TYPE_ONLINE,
    SALE_TYPE_POS,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
    ORDER_FAILED,
    ORDER_REFUNDED,
    TX_SUCCESS,
    TX_FAILED,
)
from ..models.inventory import GRANULARITY_GENERAL
from ..time_utils import utcnow
from . import stock_ledger
from .availability_service import available_for
from .concurrency import run_with_retry
from .deduction_service import apply_deduction, draws_from_general
from .reservation_service import reserve_stock, release_stock
from .stock_ledger import InsufficientStockError


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderStateError(OrderError):
    """Requested status change is not allowed from the current status."""


ALLOWED_TRANSITIONS = {
    ORDER_PENDING: {ORDER_PROCESSING, ORDER_COMPLETED, ORDER_FAILED, ORDER_CANCELLED},
    ORDER_PROCESSING: {ORDER_COMPLETED, ORDER_FAILED, ORDER_CANCELLED},
    ORDER_COMPLETED: {ORDER_REFUNDED},
    ORDER_FAILED: set(),
    ORDER_CANCELLED: set(),
    ORDER_REFUNDED: set(),
}

OPEN_STATUSES = (ORDER_PENDING, ORDER_PROCESSING)


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def _get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderError("Order not found", details={"order_id": order_id})
    return order


def _claim(order_id: int, new_status: str, from_statuses) -> bool:
    """
    Move an order to new_status iff it is still in one of from_statuses.

    Single guarded UPDATE, so two deliveries of the same webhook cannot both
    win. Does not commit.
    """
    values = {"status": new_status}
    if new_status == ORDER_COMPLETED:
        values["completed_at"] = utcnow()
    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status.in_(from_statuses))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def _transition(order_id: int, new_status: str) -> Order:
    def _op():
        order = _get_order(order_id)
        current = order.status
        if not can_transition(current, new_status):
            raise OrderStateError(
                f"Cannot move order from {current} to {new_status}",
                details={"order_id": order_id, "status": current, "requested": new_status},
            )
        if not _claim(order_id, new_status, (current,)):
            db.session.rollback()
            raise OrderStateError("Order status changed concurrently", details={"order_id": order_id})
        db.session.commit()
        return _get_order(order_id)

    return run_with_retry(_op)


# =============================================================================
# CHECKOUT
# =============================================================================

def _normalize_items(items: list[dict]) -> list[dict]:
    if not items:
        raise OrderError("Order must contain at least one item")

    lines = []
    for raw in items:
        product_id = raw.get("product_id")
        quantity = raw.get("quantity")
        try:
            stock_ledger.require_positive_quantity(quantity)
            size = stock_ledger.normalize_size(raw.get("size"))
        except ValueError as e:
            raise OrderError(str(e), details={"product_id": product_id})
        color = stock_ledger.normalize_color(raw.get("color"))

        product = db.session.get(Product, product_id) if product_id is not None else None
        if product is None:
            raise OrderError("Product not found", details={"product_id": product_id})
        if not product.is_active:
            raise OrderError("Product is not available", details={"product_id": product_id})

        lines.append({
            "product": product,
            "quantity": quantity,
            "size": size,
            "color": color,
        })
    return lines


def _check_availability(lines: list[dict]) -> None:
    short = []
    for line in lines:
        available = available_for(line["product"].id, line["size"], line["color"])
        if available is not None and available < line["quantity"]:
            short.append({
                "product_id": line["product"].id,
                "size": line["size"],
                "color": line["color"],
                "requested": line["quantity"],
                "available": available,
            })
    if short:
        raise InsufficientStockError("Insufficient stock", details={"items": short})


def _reserve_lines(lines: list[dict]) -> list[tuple[int, int]]:
    """
    Hold general stock for the lines the general row will serve and record
    the held quantity on each line as line["held"].

    Lines sold from a size or color row are not held; only the deduction
    guard protects them. A general row that cannot cover the line is not
    held either when the size sweep can still supply it.
    """
    reserved: list[tuple[int, int]] = []
    for line in lines:
        product_id = line["product"].id
        line["held"] = 0
        if not draws_from_general(product_id, line["size"], line["color"]):
            continue
        if reserve_stock(product_id, line["quantity"]):
            line["held"] = line["quantity"]
            reserved.append((product_id, line["quantity"]))
            continue
        available = available_for(product_id, line["size"], line["color"])
        if available is not None and available >= line["quantity"]:
            continue
        _release_all(reserved)
        raise InsufficientStockError(
            "Insufficient stock",
            details={"items": [{
                "product_id": product_id,
                "size": line["size"],
                "color": line["color"],
                "requested": line["quantity"],
                "available": available,
            }]},
        )
    return reserved


def _release_all(reserved: list[tuple[int, int]]) -> None:
    for product_id, quantity in reserved:
        try:
            release_stock(product_id, quantity)
        except SQLAlchemyError:
            current_app.logger.exception(
                "Failed to release reservation: product=%s quantity=%s", product_id, quantity
            )


def create_order(
    items: list[dict],
    *,
    sale_type: str = SALE_TYPE_ONLINE,
    user_id: str | None = None,
    seller_id: str | None = None,
    payment_method: str | None = None,
    payment_reference: str | None = None,
    social_platform: str | None = None,
) -> Order:
    """
    Create an order from [{product_id, quantity, size?, color?}, ...].

    online: every line is checked against the slot it would deduct from and
    lines the general row will serve are reserved there, all before any
    payment is attempted. Each line records its hold. Raises
    InsufficientStockError (nothing left reserved) when a line is short.
    The order starts pending.

    pos: the same availability check runs, then the sale is confirmed at
    the till: the order is completed immediately and stock is deducted.
    """
    if sale_type not in SALE_TYPES:
        raise OrderError(f"sale_type must be one of {', '.join(SALE_TYPES)}")

    lines = _normalize_items(items)

    _check_availability(lines)
    reserved: list[tuple[int, int]] = []
    if sale_type == SALE_TYPE_ONLINE:
        reserved = _reserve_lines(lines)

    try:
        order = Order(
            user_id=user_id,
            seller_id=seller_id,
            sale_type=sale_type,
            social_platform=social_platform,
            status=ORDER_PENDING,
            payment_method=payment_method,
            payment_reference=payment_reference,
        )
        now = utcnow()
        total = 0
        for line in lines:
            unit_price = line["product"].effective_price_cents(now)
            line_total = unit_price * line["quantity"]
            total += line_total
            order.items.append(OrderItem(
                product_id=line["product"].id,
                quantity=line["quantity"],
                unit_price_cents=unit_price,
                line_total_cents=line_total,
                size=line["size"],
                color=line["color"],
                reserved_quantity=line.get("held", 0),
            ))
        order.total_cents = total
        db.session.add(order)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        _release_all(reserved)
        raise

    current_app.logger.info(
        "Created %s order %s: %d item(s), total_cents=%s", sale_type, order.id, len(lines), total
    )

    if sale_type == SALE_TYPE_POS:
        return complete_sale(order.id)
    return order


# =============================================================================
# COMPLETION / FAILURE
# =============================================================================

def complete_sale(order_id: int) -> Order:
    """
    Commit stock for every line and mark the order completed.

    Idempotent: an already-completed order is returned unchanged. The order
    is claimed with a guarded status update before any stock moves, so a
    retried webhook cannot deduct twice.
    """
    order = _get_order(order_id)
    if order.status == ORDER_COMPLETED:
        current_app.logger.info("Order %s already completed; skipping", order_id)
        return order
    if order.status not in OPEN_STATUSES:
        raise OrderStateError(
            f"Cannot complete order with status {order.status}",
            details={"order_id": order_id, "status": order.status},
        )

    lines = [(i.id, i.product_id, i.quantity, i.size, i.color, i.reserved_quantity or 0) for i in order.items]
    seller_id = order.seller_id

    def _op():
        claimed = _claim(order_id, ORDER_COMPLETED, OPEN_STATUSES)
        db.session.commit()
        return claimed

    if not run_with_retry(_op):
        order = _get_order(order_id)
        if order.status == ORDER_COMPLETED:
            current_app.logger.info("Order %s completed concurrently; skipping", order_id)
            return order
        raise OrderStateError(
            f"Cannot complete order with status {order.status}",
            details={"order_id": order_id, "status": order.status},
        )

    failed_items = []
    leftover_holds = []
    for item_id, product_id, quantity, size, color, held in lines:
        source = None
        try:
            outcome = apply_deduction(
                product_id,
                quantity,
                seller_id,
                size,
                color,
                order_id=order_id,
                reserved=held > 0,
            )
            ok, source = outcome.ok, outcome.source
        except (SQLAlchemyError, ValueError):
            current_app.logger.exception(
                "Stock commit raised for order %s item %s (product=%s quantity=%s size=%s color=%s)",
                order_id, item_id, product_id, quantity, size, color,
            )
            ok = False
        if not ok:
            failed_items.append(item_id)
        # Only a general-row deduction consumes the hold; anything else gives it back.
        if held and not (ok and source == GRANULARITY_GENERAL):
            leftover_holds.append((product_id, held))

    _release_all(leftover_holds)

    if failed_items:
        current_app.logger.error(
            "Order %s completed with %d line(s) not committed to stock: %s",
            order_id, len(failed_items), failed_items,
        )
    else:
        current_app.logger.info("Order %s completed", order_id)

    return _get_order(order_id)


def fail_order(order_id: int, status: str = ORDER_FAILED) -> Order:
    """
    Mark an open order failed or cancelled and give back its reservations.

    Repeating the same outcome is a no-op.
    """
    if status not in (ORDER_FAILED, ORDER_CANCELLED):
        raise OrderError("status must be failed or cancelled")

    order = _get_order(order_id)
    if order.status == status:
        return order
    if order.status not in OPEN_STATUSES:
        raise OrderStateError(
            f"Cannot move order from {order.status} to {status}",
            details={"order_id": order_id, "status": order.status, "requested": status},
        )

    holds = [(i.product_id, i.reserved_quantity) for i in order.items if i.reserved_quantity]

    def _op():
        claimed = _claim(order_id, status, OPEN_STATUSES)
        db.session.commit()
        return claimed

    if not run_with_retry(_op):
        order = _get_order(order_id)
        if order.status == status:
            return order
        raise OrderStateError(
            f"Cannot move order from {order.status} to {status}",
            details={"order_id": order_id, "status": order.status, "requested": status},
        )

    _release_all(holds)

    current_app.logger.info("Order %s marked %s", order_id, status)
    return _get_order(order_id)


def mark_processing(order_id: int, payment_reference: str | None = None) -> Order:
    """Payment initiated with the provider."""
    order = _transition(order_id, ORDER_PROCESSING)
    if payment_reference:
        def _op():
            o = _get_order(order_id)
            o.payment_reference = payment_reference
            db.session.commit()
            return o
        order = run_with_retry(_op)
    return order


def refund_order(order_id: int) -> Order:
    """completed -> refunded. Stock is not restored."""
    return _transition(order_id, ORDER_REFUNDED)


def update_order_status(order_id: int, status: str) -> Order:
    """Route an administrative status change through the matching operation."""
    if status == ORDER_COMPLETED:
        return complete_sale(order_id)
    if status in (ORDER_FAILED, ORDER_CANCELLED):
        return fail_order(order_id, status)
    if status == ORDER_PROCESSING:
        return mark_processing(order_id)
    if status == ORDER_REFUNDED:
        return refund_order(order_id)
    raise OrderError(f"Unsupported status {status}")


# =============================================================================
# PAYMENT CALLBACKS
# =============================================================================

def _upsert_transaction(order_id: int, provider: str, provider_reference: str, amount_cents: int,
                        status: str, metadata: dict | None) -> Transaction:
    def _op():
        tx = db.session.query(Transaction).filter_by(provider_reference=provider_reference).first()
        if tx is None:
            tx = Transaction(
                order_id=order_id,
                payment_provider=provider,
                provider_reference=provider_reference,
            )
            db.session.add(tx)
        tx.amount_cents = amount_cents
        tx.status = status
        tx.details = metadata or {}
        try:
            db.session.commit()
        except IntegrityError:
            # Another delivery inserted the same reference first; retry as an update.
            db.session.rollback()
            tx = db.session.query(Transaction).filter_by(provider_reference=provider_reference).one()
            tx.amount_cents = amount_cents
            tx.status = status
            tx.details = metadata or {}
            db.session.commit()
        return tx

    return run_with_retry(_op)


def record_payment_result(
    *,
    provider: str,
    provider_reference: str,
    success: bool,
    amount_cents: int | None = None,
    order_id: int | None = None,
    payment_reference: str | None = None,
    metadata: dict | None = None,
) -> Transaction:
    """
    Apply a payment provider outcome.

    The order is found by id, or by the payment_reference stored when the
    payment was initiated. Success completes the sale; failure fails the
    order (cancelled when metadata["cancelled_by_user"] is set) and releases
    its reservations. Duplicate deliveries are harmless.
    """
    if order_id is not None:
        order = _get_order(order_id)
    elif payment_reference:
        order = db.session.query(Order).filter_by(payment_reference=payment_reference).first()
        if order is None:
            raise OrderError("Order not found", details={"payment_reference": payment_reference})
    else:
        raise OrderError("order_id or payment_reference required")

    order_id = order.id
    amount = amount_cents if amount_cents is not None else order.total_cents
    tx = _upsert_transaction(
        order_id, provider, provider_reference, amount, TX_SUCCESS if success else TX_FAILED, metadata
    )

    order = _get_order(order_id)
    if success:
        if order.status == ORDER_COMPLETED:
            current_app.logger.info("Duplicate success callback for order %s ignored", order_id)
        elif order.status in OPEN_STATUSES:
            complete_sale(order_id)
        else:
            current_app.logger.error(
                "Payment succeeded for order %s in status %s; needs manual review", order_id, order.status
            )
    else:
        if order.status in OPEN_STATUSES:
            outcome = ORDER_CANCELLED if (metadata or {}).get("cancelled_by_user") else ORDER_FAILED
            fail_order(order_id, outcome)
        else:
            current_app.logger.info(
                "Failure callback for order %s in status %s ignored", order_id, order.status
            )
    return tx
