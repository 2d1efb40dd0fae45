"""
Availability aggregator tests.

Verifies:
- Untracked products report None, confirmed stock-outs report 0
- Headline, per-size and per-color figures net out reservations
- available_for matches the slot a deduction would draw from
"""

from boutique.services import availability_service
from boutique.services.reservation_service import reserve_stock
from boutique.services.deduction_service import deduct_stock

from conftest import make_product, add_stock


class TestHeadline:

    def test_untracked_is_none(self, db_session, untracked_product):
        assert availability_service.get_available_stock(untracked_product.id) is None

    def test_zero_is_not_untracked(self, db_session):
        p = make_product(db_session)
        add_stock(db_session, p.id, 0)
        assert availability_service.get_available_stock(p.id) == 0

    def test_general_nets_reservations(self, db_session, product):
        reserve_stock(product.id, 4)
        assert availability_service.get_available_stock(product.id) == 16

    def test_sizes_summed_without_general(self, db_session, sized_product):
        assert availability_service.get_available_stock(sized_product.id) == 15

    def test_colors_summed_without_general_or_sizes(self, db_session):
        p = make_product(db_session)
        add_stock(db_session, p.id, 3, color="Red")
        add_stock(db_session, p.id, 2, size="M", color="Blue")
        assert availability_service.get_available_stock(p.id) == 5

    def test_over_reserved_row_reports_zero(self, db_session):
        p = make_product(db_session)
        add_stock(db_session, p.id, 2, reserved=2)
        assert availability_service.get_available_stock(p.id) == 0

    def test_reflects_deduction_immediately(self, db_session, sized_product):
        deduct_stock(sized_product.id, 10)
        assert availability_service.get_available_stock(sized_product.id) == 5


class TestBuckets:

    def test_by_size_canonical_order(self, db_session, sized_product):
        by_size = availability_service.available_by_size(sized_product.id)
        assert list(by_size.items()) == [("S", 2), ("M", 5), ("L", 8)]

    def test_by_size_from_size_color_rows(self, db_session):
        p = make_product(db_session)
        add_stock(db_session, p.id, 2, size="L", color="Red")
        add_stock(db_session, p.id, 3, size="L", color="Blue")
        add_stock(db_session, p.id, 1, size="S", color="Blue")
        add_stock(db_session, p.id, 9, color="Green")
        assert availability_service.available_by_size(p.id) == {"S": 1, "L": 5}

    def test_by_color(self, db_session):
        p = make_product(db_session)
        add_stock(db_session, p.id, 2, size="L", color="Red")
        add_stock(db_session, p.id, 3, color="Red")
        add_stock(db_session, p.id, 4, size="S", color="Blue", reserved=1)
        assert availability_service.available_by_color(p.id) == {"Blue": 3, "Red": 3}

    def test_by_color_sums_size_rows_only_without_color_row(self, db_session):
        p = make_product(db_session)
        add_stock(db_session, p.id, 6, color="Red")
        add_stock(db_session, p.id, 4, size="M", color="Red")
        add_stock(db_session, p.id, 2, size="S", color="Red")
        add_stock(db_session, p.id, 1, size="S", color="Blue")
        add_stock(db_session, p.id, 2, size="L", color="Blue")
        assert availability_service.available_by_color(p.id) == {"Red": 6, "Blue": 3}
        assert availability_service.get_available_stock(p.id) == 9

    def test_bulk(self, db_session, product, sized_product, untracked_product):
        result = availability_service.get_bulk_available([product.id, sized_product.id, untracked_product.id])
        assert result == {product.id: 20, sized_product.id: 15, untracked_product.id: None}


class TestAvailableFor:

    def test_exact_slot(self, db_session):
        p = make_product(db_session)
        add_stock(db_session, p.id, 50)
        add_stock(db_session, p.id, 0, size="M", color="Red")
        assert availability_service.available_for(p.id, "M", "Red") == 0
        assert availability_service.available_for(p.id, "M", "Blue") == 50

    def test_general_or_sweep(self, db_session, sized_product):
        assert availability_service.available_for(sized_product.id) == 15
        assert availability_service.available_for(sized_product.id, size="S") == 2

    def test_untracked_and_unmatched(self, db_session, untracked_product):
        assert availability_service.available_for(untracked_product.id) is None
        p = make_product(db_session)
        add_stock(db_session, p.id, 5, color="Red")
        assert availability_service.available_for(p.id, color="Blue") == 0

    def test_summary(self, db_session, sized_product):
        summary = availability_service.stock_summary(sized_product.id)
        assert summary["tracked"] is True
        assert summary["available"] == 15
        assert summary["general"] is None
        assert summary["by_size"] == {"S": 2, "M": 5, "L": 8}
        assert len(summary["rows"]) == 3
