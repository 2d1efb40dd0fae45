# Overview: Stock ledger primitives; reads and guarded single-statement updates on stock_levels.

"""
Stock ledger store.

Every mutation a sale path performs is ONE conditional UPDATE whose WHERE
clause carries the arithmetic guard, and success is judged by the affected
row count. Nothing here reads a quantity and then writes it back, so
concurrent checkouts, POS sales and webhook retries can all call these
functions without any in-process locking.

No priority or fallback logic lives in this module; see deduction_service.

Functions here never commit. Callers own the transaction (and its retry).
"""

from __future__ import annotations

from sqlalchemy import case, update

from ..extensions import db
from ..models import Product, StockLevel, StockMovement
from ..models.inventory import SIZES
from .concurrency import run_with_retry


class InventoryError(Exception):
    """Raised for inventory operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(InventoryError):
    """Requested quantity exceeds what the matched stock slot can supply."""


def normalize_size(size: str | None) -> str | None:
    if size is None:
        return None
    value = str(size).strip().upper()
    if not value:
        return None
    if value not in SIZES:
        raise ValueError(f"invalid size {size!r}; expected one of {', '.join(SIZES)}")
    return value


def normalize_color(color: str | None) -> str | None:
    if color is None:
        return None
    value = str(color).strip()
    return value or None


def require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError("quantity must be a positive integer")
    return quantity


# =============================================================================
# READS
# =============================================================================

def _slot_query(product_id: int, size: str | None, color: str | None):
    q = db.session.query(StockLevel).filter(StockLevel.product_id == product_id)
    q = q.filter(StockLevel.size.is_(None)) if size is None else q.filter(StockLevel.size == size)
    q = q.filter(StockLevel.color.is_(None)) if color is None else q.filter(StockLevel.color == color)
    return q


def get_slot(product_id: int, size: str | None = None, color: str | None = None) -> StockLevel | None:
    """Exact slot lookup; a None dimension matches only NULL."""
    return _slot_query(product_id, size, color).first()


def get_general(product_id: int) -> StockLevel | None:
    return get_slot(product_id)


def get_sizes(product_id: int) -> list[StockLevel]:
    """Size-only rows in canonical size order."""
    rows = (
        db.session.query(StockLevel)
        .filter(
            StockLevel.product_id == product_id,
            StockLevel.size.isnot(None),
            StockLevel.color.is_(None),
        )
        .all()
    )
    return sorted(rows, key=lambda r: size_rank(r.size))


def get_size_colors(product_id: int) -> list[StockLevel]:
    """Color-only and size+color rows."""
    return (
        db.session.query(StockLevel)
        .filter(StockLevel.product_id == product_id, StockLevel.color.isnot(None))
        .order_by(StockLevel.color, StockLevel.size)
        .all()
    )


def get_all(product_id: int) -> list[StockLevel]:
    return db.session.query(StockLevel).filter(StockLevel.product_id == product_id).all()


def has_any_rows(product_id: int) -> bool:
    return db.session.query(
        db.session.query(StockLevel.id).filter(StockLevel.product_id == product_id).exists()
    ).scalar()


def size_rank(size: str | None) -> int:
    try:
        return SIZES.index(size)
    except ValueError:
        return len(SIZES)


# =============================================================================
# GUARDED UPDATES
# =============================================================================

def try_decrement(row_id: int, quantity: int, *, count_reserved: bool = False) -> bool:
    """
    Commit quantity units out of one stock row, atomically.

    Single statement:
        UPDATE stock_levels
           SET stock_quantity = stock_quantity - :q,
               reserved_quantity = reserved_quantity - min(:q, reserved_quantity)
         WHERE id = :id AND <guard>

    Guard without count_reserved: stock_quantity - reserved_quantity >= :q
    (units held for other pending orders are not for sale).

    Guard with count_reserved: the caller placed a reservation for this sale,
    so up to :q reserved units count as its own:
        stock_quantity >= :q
        AND stock_quantity - reserved_quantity + min(:q, reserved_quantity) >= :q

    Returns True only if a row was actually changed.
    """
    require_positive_quantity(quantity)
    consumed = case(
        (StockLevel.reserved_quantity >= quantity, quantity),
        else_=StockLevel.reserved_quantity,
    )
    if count_reserved:
        guard = (
            StockLevel.stock_quantity >= quantity,
            StockLevel.stock_quantity - StockLevel.reserved_quantity + consumed >= quantity,
        )
    else:
        guard = (StockLevel.stock_quantity - StockLevel.reserved_quantity >= quantity,)

    # Both SET expressions read the pre-update row values.
    stmt = (
        update(StockLevel)
        .where(StockLevel.id == row_id, *guard)
        .values(
            stock_quantity=StockLevel.stock_quantity - quantity,
            reserved_quantity=StockLevel.reserved_quantity - consumed,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def try_reserve(row_id: int, quantity: int) -> bool:
    """Hold quantity units iff stock_quantity - reserved_quantity >= quantity."""
    require_positive_quantity(quantity)
    stmt = (
        update(StockLevel)
        .where(
            StockLevel.id == row_id,
            StockLevel.stock_quantity - StockLevel.reserved_quantity >= quantity,
        )
        .values(reserved_quantity=StockLevel.reserved_quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def try_release(row_id: int, quantity: int) -> bool:
    """Drop quantity units of reservation, floored at zero."""
    require_positive_quantity(quantity)
    stmt = (
        update(StockLevel)
        .where(StockLevel.id == row_id)
        .values(
            reserved_quantity=case(
                (StockLevel.reserved_quantity > quantity, StockLevel.reserved_quantity - quantity),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def record_movement(
    row: StockLevel,
    quantity: int,
    *,
    order_id: int | None = None,
    seller_id: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        product_id=row.product_id,
        stock_level_id=row.id,
        size=row.size,
        color=row.color,
        quantity_delta=-quantity,
        order_id=order_id,
        seller_id=seller_id,
    )
    db.session.add(movement)
    return movement


# =============================================================================
# CONFIGURATION (admin paths, not used by sales)
# =============================================================================

def set_stock(product_id: int, quantity: int, size: str | None = None, color: str | None = None) -> StockLevel:
    """
    Upsert one slot's stock_quantity. Reserved quantity is preserved.

    Does not commit.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise ValueError("stock_quantity must be a non-negative integer")
    size = normalize_size(size)
    color = normalize_color(color)

    row = get_slot(product_id, size, color)
    if row is None:
        row = StockLevel(
            product_id=product_id,
            size=size,
            color=color,
            stock_quantity=quantity,
            reserved_quantity=0,
        )
        db.session.add(row)
    else:
        row.stock_quantity = quantity
    db.session.flush()
    return row


def _replace_rows(existing: list[StockLevel], wanted: dict[tuple, int], product_id: int) -> None:
    keep = set()
    for (size, color), qty in wanted.items():
        keep.add((size, color))
        set_stock(product_id, qty, size=size, color=color)
    for row in existing:
        if (row.size, row.color) not in keep:
            db.session.delete(row)


def configure_product_stock(
    product_id: int,
    stock_quantity: int,
    size_stocks: dict[str, int] | None = None,
    color_stocks: dict[str, int | dict[str, int]] | None = None,
) -> list[StockLevel]:
    """
    Replace a product's stock breakdown.

    - The general row is always upserted to stock_quantity.
    - size_stocks, when given, replaces every size-only row.
    - color_stocks, when given, replaces every color row. A plain int value
      is a color-only row; a {size: qty} value is a set of size+color rows.

    Slots that survive keep their reserved_quantity.
    """
    wanted_sizes = None
    if size_stocks is not None:
        wanted_sizes = {(normalize_size(s), None): q for s, q in size_stocks.items()}
        if (None, None) in wanted_sizes:
            raise ValueError("size must not be blank")

    wanted_colors = None
    if color_stocks is not None:
        wanted_colors = {}
        for color, value in color_stocks.items():
            color_key = normalize_color(color)
            if color_key is None:
                raise ValueError("color must not be blank")
            if isinstance(value, dict):
                for size, qty in value.items():
                    wanted_colors[(normalize_size(size), color_key)] = qty
            else:
                wanted_colors[(None, color_key)] = value

    def _op():
        if db.session.get(Product, product_id) is None:
            raise InventoryError("Product not found", details={"product_id": product_id})
        try:
            set_stock(product_id, stock_quantity)
            if wanted_sizes is not None:
                _replace_rows(get_sizes(product_id), wanted_sizes, product_id)
            if wanted_colors is not None:
                _replace_rows(get_size_colors(product_id), wanted_colors, product_id)
        except ValueError:
            db.session.rollback()
            raise

        db.session.commit()
        return get_all(product_id)

    return run_with_retry(_op)
