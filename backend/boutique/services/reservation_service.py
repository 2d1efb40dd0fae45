# Overview: Service-layer reservation of general stock for orders awaiting payment.

"""
Reservation Manager

Reservations hold units on the general (product-level) row while an online
order waits for the payment provider. They never touch size or color rows:
a sale that later deducts from a size/color slot was protected only by that
deduction's own guard, not by a prior hold.

Timeouts are enforced by whoever owns the pending order; this module only
exposes release_stock for them to call.
"""

from flask import current_app

from ..extensions import db
from . import stock_ledger
from .concurrency import run_with_retry


def reserve_stock(product_id: int, quantity: int) -> bool:
    """
    Hold quantity units of general stock.

    Returns False when stock_quantity - reserved_quantity < quantity.
    A product without a general row has nothing to hold at this
    granularity, so the call succeeds without writing anything.
    """
    stock_ledger.require_positive_quantity(quantity)

    def _op():
        row = stock_ledger.get_general(product_id)
        if row is None:
            current_app.logger.debug("No general stock row for product %s; nothing reserved", product_id)
            return True
        ok = stock_ledger.try_reserve(row.id, quantity)
        db.session.commit()
        return ok

    ok = run_with_retry(_op)
    if not ok:
        current_app.logger.info("Reservation refused: product=%s quantity=%s", product_id, quantity)
    return ok


def release_stock(product_id: int, quantity: int) -> bool:
    """Give back up to quantity reserved units; reserved_quantity never goes below zero."""
    stock_ledger.require_positive_quantity(quantity)

    def _op():
        row = stock_ledger.get_general(product_id)
        if row is None:
            return False
        ok = stock_ledger.try_release(row.id, quantity)
        db.session.commit()
        return ok

    return run_with_retry(_op)
