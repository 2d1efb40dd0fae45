# Overview: Minimal product catalog operations used by checkout, POS and the CLI.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Product
from ..models.catalog import PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_INACTIVE
from .concurrency import run_with_retry


class CatalogError(Exception):
    """Raised for catalog operation errors."""


def create_product(
    name: str,
    price_cents: int,
    *,
    description: str | None = None,
    sale_price_cents: int | None = None,
    flash_sale_start_at: datetime | None = None,
    flash_sale_end_at: datetime | None = None,
    status: str = PRODUCT_STATUS_ACTIVE,
) -> Product:
    if not name or not name.strip():
        raise CatalogError("name is required")
    if price_cents is None or price_cents < 0:
        raise CatalogError("price_cents must be >= 0")
    if sale_price_cents is not None and sale_price_cents < 0:
        raise CatalogError("sale_price_cents must be >= 0")
    if status not in (PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_INACTIVE):
        raise CatalogError("status must be active or inactive")

    def _op():
        product = Product(
            name=name.strip(),
            description=description,
            price_cents=price_cents,
            sale_price_cents=sale_price_cents,
            flash_sale_start_at=flash_sale_start_at,
            flash_sale_end_at=flash_sale_end_at,
            status=status,
        )
        db.session.add(product)
        db.session.commit()
        return product

    return run_with_retry(_op)


def set_status(product_id: int, status: str) -> Product:
    if status not in (PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_INACTIVE):
        raise CatalogError("status must be active or inactive")

    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise CatalogError("Product not found")
        product.status = status
        db.session.commit()
        return product

    return run_with_retry(_op)
