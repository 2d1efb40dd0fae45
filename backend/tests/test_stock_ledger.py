"""
Stock ledger primitive tests.

Verifies:
- Guarded decrement / reserve / release change rows only when the guard holds
- Quantities never go negative
- One row per (product, size, color) slot
- Stock configuration replaces rows and keeps reservations
"""

import pytest
from sqlalchemy.exc import IntegrityError

from boutique.extensions import db
from boutique.models import StockLevel
from boutique.services import stock_ledger

from conftest import make_product, add_stock, slot


# =============================================================================
# GUARDED DECREMENT
# =============================================================================


class TestTryDecrement:

    def test_decrements_when_available(self, db_session, product):
        row = slot(product.id)
        assert stock_ledger.try_decrement(row.id, 5) is True
        db_session.commit()
        assert slot(product.id).stock_quantity == 15

    def test_refuses_when_short(self, db_session, product):
        row = slot(product.id)
        assert stock_ledger.try_decrement(row.id, 21) is False
        db_session.commit()
        assert slot(product.id).stock_quantity == 20

    def test_reserved_units_for_other_orders_are_off_limits(self, db_session):
        p = make_product(db_session)
        row = add_stock(db_session, p.id, 10, reserved=8)
        assert stock_ledger.try_decrement(row.id, 3) is False
        assert stock_ledger.try_decrement(row.id, 2) is True
        db_session.commit()
        after = slot(p.id)
        assert after.stock_quantity == 8
        assert after.reserved_quantity == 6

    def test_count_reserved_lets_sale_use_its_own_hold(self, db_session):
        p = make_product(db_session)
        row = add_stock(db_session, p.id, 10, reserved=10)
        assert stock_ledger.try_decrement(row.id, 4) is False
        assert stock_ledger.try_decrement(row.id, 4, count_reserved=True) is True
        db_session.commit()
        after = slot(p.id)
        assert after.stock_quantity == 6
        assert after.reserved_quantity == 6

    def test_reserved_cleanup_is_capped_at_reserved(self, db_session):
        p = make_product(db_session)
        row = add_stock(db_session, p.id, 10, reserved=2)
        assert stock_ledger.try_decrement(row.id, 5, count_reserved=True) is True
        db_session.commit()
        after = slot(p.id)
        assert after.stock_quantity == 5
        assert after.reserved_quantity == 0

    def test_rejects_non_positive_quantity(self, db_session, product):
        row = slot(product.id)
        with pytest.raises(ValueError):
            stock_ledger.try_decrement(row.id, 0)
        with pytest.raises(ValueError):
            stock_ledger.try_decrement(row.id, -1)


# =============================================================================
# RESERVE / RELEASE
# =============================================================================


class TestReserveRelease:

    def test_reserve_guard(self, db_session, product):
        row = slot(product.id)
        assert stock_ledger.try_reserve(row.id, 20) is True
        assert stock_ledger.try_reserve(row.id, 1) is False
        db_session.commit()
        assert slot(product.id).reserved_quantity == 20

    def test_release_floors_at_zero(self, db_session):
        p = make_product(db_session)
        row = add_stock(db_session, p.id, 10, reserved=3)
        assert stock_ledger.try_release(row.id, 7) is True
        db_session.commit()
        assert slot(p.id).reserved_quantity == 0


# =============================================================================
# SLOTS
# =============================================================================


class TestSlots:

    def test_general_and_color_slots_are_unique(self, db_session, product):
        db_session.add(StockLevel(product_id=product.id, stock_quantity=1, reserved_quantity=0))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

        add_stock(db_session, product.id, 3, color="Red")
        db_session.add(StockLevel(product_id=product.id, color="Red", stock_quantity=1, reserved_quantity=0))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_same_size_different_color_is_allowed(self, db_session, product):
        add_stock(db_session, product.id, 3, size="M", color="Red")
        add_stock(db_session, product.id, 4, size="M", color="Blue")
        assert len(stock_ledger.get_size_colors(product.id)) == 2

    def test_get_sizes_returns_canonical_order(self, db_session):
        p = make_product(db_session)
        for size in ("XL", "S", "2XL", "M"):
            add_stock(db_session, p.id, 1, size=size)
        assert [r.size for r in stock_ledger.get_sizes(p.id)] == ["S", "M", "XL", "2XL"]

    def test_normalize_size(self):
        assert stock_ledger.normalize_size(" m ") == "M"
        assert stock_ledger.normalize_size("") is None
        assert stock_ledger.normalize_size("3xl") == "3XL"
        with pytest.raises(ValueError):
            stock_ledger.normalize_size("XXS")

    def test_negative_stock_is_rejected_by_the_store(self, db_session, product):
        row_id = slot(product.id).id
        with pytest.raises(IntegrityError):
            db.session.execute(
                StockLevel.__table__.update().where(StockLevel.id == row_id).values(stock_quantity=-1)
            )
        db_session.rollback()
        assert slot(product.id).stock_quantity == 20


# =============================================================================
# CONFIGURATION
# =============================================================================


class TestConfigureProductStock:

    def test_sets_general_sizes_and_colors(self, db_session):
        p = make_product(db_session)
        stock_ledger.configure_product_stock(
            p.id,
            12,
            size_stocks={"m": 4, "L": 6},
            color_stocks={"Red": 3, "Blue": {"S": 1, "M": 2}},
        )
        assert slot(p.id).stock_quantity == 12
        assert slot(p.id, "M").stock_quantity == 4
        assert slot(p.id, "L").stock_quantity == 6
        assert slot(p.id, color="Red").stock_quantity == 3
        assert slot(p.id, "M", "Blue").stock_quantity == 2

    def test_replaces_sizes_and_keeps_reservations(self, db_session):
        p = make_product(db_session)
        add_stock(db_session, p.id, 10, reserved=4)
        add_stock(db_session, p.id, 5, size="S")
        stock_ledger.configure_product_stock(p.id, 15, size_stocks={"M": 2})

        general = slot(p.id)
        assert general.stock_quantity == 15
        assert general.reserved_quantity == 4
        assert slot(p.id, "S") is None
        assert slot(p.id, "M").stock_quantity == 2

    def test_invalid_size_leaves_rows_untouched(self, db_session, product):
        with pytest.raises(ValueError):
            stock_ledger.configure_product_stock(product.id, 5, size_stocks={"XXS": 1})
        assert slot(product.id).stock_quantity == 20

    def test_unknown_product(self, db_session):
        with pytest.raises(stock_ledger.InventoryError):
            stock_ledger.configure_product_stock(999, 5)
