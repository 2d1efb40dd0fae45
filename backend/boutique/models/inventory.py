from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

# Canonical size order; also the tie-break order for the size sweep.
SIZES = ("S", "M", "L", "XL", "2XL", "3XL", "4XL", "5XL")

GRANULARITY_GENERAL = "general"
GRANULARITY_SIZE = "size"
GRANULARITY_COLOR = "color"
GRANULARITY_SIZE_COLOR = "size_color"


class StockLevel(db.Model):
    """
    Quantity on hand and quantity reserved for one stock slot of a product.

    One table holds every granularity; the slot is identified by which of
    size/color are set:

        size  color   slot
        ----  -----   ----------------------
        NULL  NULL    general (product-level)
        M     NULL    size
        NULL  red     color only
        M     red     size + color

    Rows are shared mutable state across web checkouts, POS sales and
    payment webhooks. Sale paths only ever change quantities through the
    guarded single-statement updates in services/stock_ledger.py.

    INVARIANTS:
    - stock_quantity >= 0 and reserved_quantity >= 0 (CHECK constraints)
    - reserved_quantity <= stock_quantity is intended but not enforced
    - available = max(0, stock_quantity - reserved_quantity)
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_stock_levels_stock_nonneg"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_stock_levels_reserved_nonneg"),
        db.Index("ix_stock_levels_product_size", "product_id", "size"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    size = db.Column(db.String(8), nullable=True)
    color = db.Column(db.String(64), nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    last_updated = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<StockLevel product_id={self.product_id} size={self.size!r} color={self.color!r} "
            f"stock={self.stock_quantity} reserved={self.reserved_quantity}>"
        )

    @property
    def granularity(self) -> str:
        if self.size is None and self.color is None:
            return GRANULARITY_GENERAL
        if self.color is None:
            return GRANULARITY_SIZE
        if self.size is None:
            return GRANULARITY_COLOR
        return GRANULARITY_SIZE_COLOR

    @property
    def available(self) -> int:
        return max(0, (self.stock_quantity or 0) - (self.reserved_quantity or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "granularity": self.granularity,
            "size": self.size,
            "color": self.color,
            "stock_quantity": self.stock_quantity,
            "reserved_quantity": self.reserved_quantity,
            "available": self.available,
            "last_updated": to_utc_z(self.last_updated),
        }


# One row per (product, size?, color?). NULL dimensions are folded to '' so
# the general row and the color-only rows are unique too.
db.Index(
    "uq_stock_levels_slot",
    StockLevel.product_id,
    db.func.coalesce(StockLevel.size, ""),
    db.func.coalesce(StockLevel.color, ""),
    unique=True,
)


class StockMovement(db.Model):
    """
    Append-only record of a committed deduction.

    WHY: Sale completion never blocks on a failed stock commit, so the
    movement log is what an operator reconciles against when the ledger and
    the order book disagree.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )
    stock_level_id = db.Column(
        db.Integer,
        db.ForeignKey("stock_levels.id", ondelete="SET NULL"),
        nullable=True,
    )
    size = db.Column(db.String(8), nullable=True)
    color = db.Column(db.String(64), nullable=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, nullable=True, index=True)
    seller_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "stock_level_id": self.stock_level_id,
            "size": self.size,
            "color": self.color,
            "quantity_delta": self.quantity_delta,
            "order_id": self.order_id,
            "seller_id": self.seller_id,
            "created_at": to_utc_z(self.created_at),
        }
