# Overview: Read-side availability figures derived from live stock_levels rows.

"""
Availability Aggregator

All figures are max(0, stock_quantity - reserved_quantity) per row, summed
or bucketed. There is no cache: every call reads the same rows the
deduction path writes.

None means "untracked": the product has no stock rows and is always
purchasable. It is NOT the same as 0, which is a confirmed stock-out.
"""

from __future__ import annotations

from collections import defaultdict

from ..extensions import db
from ..models import StockLevel
from . import stock_ledger
from .deduction_service import candidate_slots


def get_available_stock(product_id: int) -> int | None:
    """
    Headline availability for a product.

    General row if present, else the sum of size rows, else the sum of
    color rows. None when no rows exist.
    """
    rows = stock_ledger.get_all(product_id)
    if not rows:
        return None
    return _headline(rows)


def _headline(rows: list[StockLevel]) -> int:
    general = [r for r in rows if r.size is None and r.color is None]
    if general:
        return general[0].available
    sizes = [r for r in rows if r.size is not None and r.color is None]
    if sizes:
        return sum(r.available for r in sizes)
    return sum(_color_buckets([r for r in rows if r.color is not None]).values())


def available_by_size(product_id: int) -> dict[str, int]:
    """Size-only rows; when there are none, size+color rows bucketed by size."""
    rows = stock_ledger.get_sizes(product_id)
    buckets: dict[str, int] = defaultdict(int)
    if rows:
        for row in rows:
            buckets[row.size] += row.available
    else:
        for row in stock_ledger.get_size_colors(product_id):
            if row.size is not None:
                buckets[row.size] += row.available
    return {size: buckets[size] for size in sorted(buckets, key=stock_ledger.size_rank)}


def _color_buckets(rows: list[StockLevel]) -> dict[str, int]:
    # A color-only row is that color's total; size+color rows count only without one.
    color_only = {r.color: r.available for r in rows if r.size is None}
    buckets = dict(color_only)
    for row in rows:
        if row.size is not None and row.color not in color_only:
            buckets[row.color] = buckets.get(row.color, 0) + row.available
    return buckets


def available_by_color(product_id: int) -> dict[str, int]:
    """Color-only row per color; when a color has none, its size+color rows summed."""
    return _color_buckets(stock_ledger.get_size_colors(product_id))


def available_for(product_id: int, size: str | None = None, color: str | None = None) -> int | None:
    """
    Availability of the slot deduct_stock() would draw from for the same
    size/color selection. Used as the checkout pre-check.
    """
    size = stock_ledger.normalize_size(size)
    color = stock_ledger.normalize_color(color)

    for slot_size, slot_color in candidate_slots(size, color):
        row = stock_ledger.get_slot(product_id, slot_size, slot_color)
        if row is not None:
            return row.available

    general = stock_ledger.get_general(product_id)
    sizes = stock_ledger.get_sizes(product_id) if size is None else []
    if general is not None or sizes:
        general_available = general.available if general is not None else 0
        # deduct_stock sweeps size rows when the general row is absent or short
        return max(general_available, sum(r.available for r in sizes))

    if not stock_ledger.has_any_rows(product_id):
        return None
    return 0


def get_bulk_available(product_ids: list[int]) -> dict[int, int | None]:
    rows = db.session.query(StockLevel).filter(StockLevel.product_id.in_(product_ids)).all()
    by_product: dict[int, list[StockLevel]] = defaultdict(list)
    for row in rows:
        by_product[row.product_id].append(row)
    return {
        pid: (_headline(by_product[pid]) if by_product.get(pid) else None)
        for pid in product_ids
    }


def stock_summary(product_id: int) -> dict:
    rows = stock_ledger.get_all(product_id)
    general = stock_ledger.get_general(product_id)
    return {
        "product_id": product_id,
        "tracked": bool(rows),
        "available": _headline(rows) if rows else None,
        "general": general.to_dict() if general is not None else None,
        "by_size": available_by_size(product_id),
        "by_color": available_by_color(product_id),
        "rows": [r.to_dict() for r in sorted(rows, key=lambda r: (r.color or "", stock_ledger.size_rank(r.size)))],
    }
