from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

SALE_TYPE_ONLINE = "online"
SALE_TYPE_POS = "pos"
SALE_TYPES = (SALE_TYPE_ONLINE, SALE_TYPE_POS)

ORDER_PENDING = "pending"
ORDER_PROCESSING = "processing"
ORDER_COMPLETED = "completed"
ORDER_CANCELLED = "cancelled"
ORDER_FAILED = "failed"
ORDER_REFUNDED = "refunded"

TX_PENDING = "pending"
TX_SUCCESS = "success"
TX_FAILED = "failed"
TX_REVERSED = "reversed"


class Order(db.Model):
    """
    Customer order (online checkout) or POS sale.

    user_id and seller_id are identifiers owned by the external auth and
    employee systems, so they are stored as opaque strings.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    seller_id = db.Column(db.String(64), nullable=True, index=True)

    sale_type = db.Column(db.String(16), nullable=False, default=SALE_TYPE_ONLINE)
    social_platform = db.Column(db.String(32), nullable=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)

    payment_method = db.Column(db.String(32), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} sale_type={self.sale_type} status={self.status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "seller_id": self.seller_id,
            "sale_type": self.sale_type,
            "social_platform": self.social_platform,
            "total_cents": self.total_cents,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line item; size/color are the shopper's selection, not a stock row id."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    size = db.Column(db.String(8), nullable=True)
    color = db.Column(db.String(64), nullable=True)

    # Units held on the general stock row for this line while payment is pending.
    # 0 for POS lines and for lines sold from a size or color row.
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "size": self.size,
            "color": self.color,
            "reserved_quantity": self.reserved_quantity,
        }


class Transaction(db.Model):
    """
    Payment provider outcome for an order.

    Written by the payment-callback path; provider_reference is unique so
    callback retries update the same row.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("provider_reference", name="uq_transactions_provider_reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    payment_provider = db.Column(db.String(32), nullable=False)
    provider_reference = db.Column(db.String(128), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TX_PENDING, index=True)
    # "metadata" is reserved on declarative models
    details = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_provider": self.payment_provider,
            "provider_reference": self.provider_reference,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "metadata": self.details or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
