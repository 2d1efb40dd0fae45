from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..time_utils import utcnow, to_utc_z

PRODUCT_STATUS_ACTIVE = "active"
PRODUCT_STATUS_INACTIVE = "inactive"


class Product(db.Model):
    """
    Product master data.

    Stock is not stored here. A product owns zero or more StockLevel rows
    (general, per-size, per-color, per-size-and-color); a product with no
    rows at all is untracked and always purchasable.

    Prices are authoritative in cents. sale_price_cents applies only while
    the flash-sale window is open (or always, when no window is set).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_status_name", "status", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    price_cents = db.Column(db.Integer, nullable=False)
    sale_price_cents = db.Column(db.Integer, nullable=True)
    flash_sale_start_at = db.Column(db.DateTime(timezone=True), nullable=True)
    flash_sale_end_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    stock_levels = db.relationship(
        "StockLevel",
        backref="product",
        lazy=True,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} status={self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status == PRODUCT_STATUS_ACTIVE

    def flash_sale_open(self, at: datetime | None = None) -> bool:
        if self.sale_price_cents is None:
            return False
        at = at or utcnow()
        if self.flash_sale_start_at is not None and at < self.flash_sale_start_at:
            return False
        if self.flash_sale_end_at is not None and at > self.flash_sale_end_at:
            return False
        return True

    def effective_price_cents(self, at: datetime | None = None) -> int:
        if self.flash_sale_open(at):
            return self.sale_price_cents
        return self.price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "sale_price_cents": self.sale_price_cents,
            "flash_sale_start_at": to_utc_z(self.flash_sale_start_at),
            "flash_sale_end_at": to_utc_z(self.flash_sale_end_at),
            "effective_price_cents": self.effective_price_cents(),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
