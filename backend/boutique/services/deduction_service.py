# Overview: Service-layer stock deduction; resolves which stock slot a sale draws from and commits it.

"""
Deduction Resolver

deduct_stock() commits a sale of `quantity` units against the stock ledger.
The slot is chosen at query time, in priority order:

    1. size + color given -> the (size, color) slot; if no such row,
       the (size, -) slot, then the (-, color) slot
    2. color only         -> the (-, color) slot
    3. size only          -> the (size, -) slot
    4. general            -> the (-, -) slot; if absent or short and the
                             request names no size, sweep the size rows
    5. no rows at all     -> untracked, always succeeds

A slot that EXISTS but cannot cover the quantity ends the search with a
failure. Falling through to a coarser slot would sell units that belong to
another size or color.

Size sweep: rows are drained largest-available first. The total is checked
before any row is touched, and every decrement runs inside the same
transaction, so a guard that fails mid-sweep (a concurrent writer got there
first) rolls the whole sweep back. No partial deduction is ever committed.

Each decrement is a single guarded UPDATE (stock_ledger.try_decrement).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, StockLevel
from ..models.inventory import GRANULARITY_GENERAL
from . import stock_ledger
from .concurrency import run_with_retry


@dataclass
class DeductionOutcome:
    ok: bool
    source: str
    reason: str | None = None
    touched: list[tuple[int, int]] = field(default_factory=list)  # (stock_level_id, quantity)


def candidate_slots(size: str | None, color: str | None) -> list[tuple[str | None, str | None]]:
    if size and color:
        return [(size, color), (size, None), (None, color)]
    if color:
        return [(None, color)]
    if size:
        return [(size, None)]
    return []


def draws_from_general(product_id: int, size: str | None, color: str | None) -> bool:
    """
    True when a deduction for this selection would be served by the general
    row: no size/color slot matches it and a general row exists. Only such
    lines are held by the reservation manager.
    """
    size = stock_ledger.normalize_size(size)
    color = stock_ledger.normalize_color(color)
    for slot_size, slot_color in candidate_slots(size, color):
        if stock_ledger.get_slot(product_id, slot_size, slot_color) is not None:
            return False
    return stock_ledger.get_general(product_id) is not None


def _deduct_row(row: StockLevel, quantity: int, *, reserved: bool, order_id, seller_id) -> bool:
    # Only the general row ever carries a reservation placed for this sale.
    count_reserved = reserved and row.granularity == GRANULARITY_GENERAL
    if not stock_ledger.try_decrement(row.id, quantity, count_reserved=count_reserved):
        return False
    stock_ledger.record_movement(row, quantity, order_id=order_id, seller_id=seller_id)
    return True


def _sweep_sizes(product_id: int, quantity: int, *, order_id, seller_id) -> DeductionOutcome | None:
    rows = stock_ledger.get_sizes(product_id)
    if not rows:
        return None

    total = sum(r.available for r in rows)
    if total < quantity:
        return DeductionOutcome(False, "size_sweep", reason="insufficient_stock")

    ordered = sorted(rows, key=lambda r: (-r.available, stock_ledger.size_rank(r.size)))
    remaining = quantity
    touched = []
    for row in ordered:
        if remaining == 0:
            break
        take = min(row.available, remaining)
        if take <= 0:
            continue
        if not _deduct_row(row, take, reserved=False, order_id=order_id, seller_id=seller_id):
            # caller rolls back every decrement made so far
            return DeductionOutcome(False, "size_sweep", reason="concurrent_update")
        touched.append((row.id, take))
        remaining -= take

    return DeductionOutcome(True, "size_sweep", touched=touched)


def _resolve(
    product_id: int,
    quantity: int,
    size: str | None,
    color: str | None,
    *,
    reserved: bool,
    order_id: int | None,
    seller_id: str | None,
) -> DeductionOutcome:
    if db.session.get(Product, product_id) is None:
        return DeductionOutcome(False, "none", reason="product_not_found")

    for slot_size, slot_color in candidate_slots(size, color):
        row = stock_ledger.get_slot(product_id, slot_size, slot_color)
        if row is None:
            continue
        if _deduct_row(row, quantity, reserved=reserved, order_id=order_id, seller_id=seller_id):
            return DeductionOutcome(True, row.granularity, touched=[(row.id, quantity)])
        return DeductionOutcome(False, row.granularity, reason="insufficient_stock")

    general = stock_ledger.get_general(product_id)
    if general is not None:
        if _deduct_row(general, quantity, reserved=reserved, order_id=order_id, seller_id=seller_id):
            return DeductionOutcome(True, GRANULARITY_GENERAL, touched=[(general.id, quantity)])

    if size is None:
        swept = _sweep_sizes(product_id, quantity, order_id=order_id, seller_id=seller_id)
        if swept is not None:
            return swept

    if general is not None:
        return DeductionOutcome(False, GRANULARITY_GENERAL, reason="insufficient_stock")

    if not stock_ledger.has_any_rows(product_id):
        return DeductionOutcome(True, "untracked")

    return DeductionOutcome(False, "none", reason="no_matching_stock_row")


def deduct_stock(
    product_id: int,
    quantity: int,
    seller_id: str | None = None,
    size: str | None = None,
    color: str | None = None,
    *,
    order_id: int | None = None,
    reserved: bool = False,
) -> bool:
    """
    Commit a sale against the stock ledger. Returns True on success.

    See apply_deduction for the semantics.
    """
    return apply_deduction(
        product_id,
        quantity,
        seller_id,
        size,
        color,
        order_id=order_id,
        reserved=reserved,
    ).ok


def apply_deduction(
    product_id: int,
    quantity: int,
    seller_id: str | None = None,
    size: str | None = None,
    color: str | None = None,
    *,
    order_id: int | None = None,
    reserved: bool = False,
) -> DeductionOutcome:
    """
    Commit a sale against the stock ledger and report which slot served it.

    Insufficient stock gives ok=False and leaves every row untouched. Store
    errors are logged with the request context and re-raised.

    reserved=True means a general-stock reservation was placed for this sale
    (online checkout); up to `quantity` reserved units then count toward what
    the general row can supply. Without it, units reserved for other orders
    are off limits.
    """
    stock_ledger.require_positive_quantity(quantity)
    size = stock_ledger.normalize_size(size)
    color = stock_ledger.normalize_color(color)

    def _op():
        try:
            outcome = _resolve(
                product_id,
                quantity,
                size,
                color,
                reserved=reserved,
                order_id=order_id,
                seller_id=seller_id,
            )
        except SQLAlchemyError:
            db.session.rollback()
            raise
        if outcome.ok:
            db.session.commit()
        else:
            db.session.rollback()
        return outcome

    try:
        outcome = run_with_retry(_op)
    except SQLAlchemyError:
        current_app.logger.exception(
            "Stock deduction failed: product=%s quantity=%s size=%s color=%s order=%s",
            product_id, quantity, size or "none", color or "none", order_id,
        )
        raise

    if outcome.ok:
        current_app.logger.info(
            "Deducted stock: product=%s quantity=%s size=%s color=%s source=%s order=%s seller=%s",
            product_id, quantity, size or "none", color or "none", outcome.source, order_id, seller_id,
        )
    else:
        current_app.logger.warning(
            "Stock deduction refused: product=%s quantity=%s size=%s color=%s source=%s reason=%s order=%s",
            product_id, quantity, size or "none", color or "none", outcome.source, outcome.reason, order_id,
        )
    return outcome
