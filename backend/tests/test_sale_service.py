"""
Sale-completion orchestrator tests.

Verifies:
- Online checkout reserves general stock and rejects short lines before payment
- Size and color lines are never held on the general row; unused holds are handed back
- Completion deducts every line, consumes the reservation and is idempotent
- A line that cannot be committed to stock never blocks completion
- Failure / cancellation releases reservations
- Status machine and payment callbacks
"""

from datetime import timedelta

import pytest

from boutique.models import Order, StockMovement, Transaction
from boutique.models.orders import (
    SALE_TYPE_POS,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
    ORDER_FAILED,
    ORDER_REFUNDED,
)
from boutique.services import sale_service
from boutique.services.sale_service import OrderError, OrderStateError
from boutique.services.reservation_service import reserve_stock
from boutique.services.stock_ledger import InsufficientStockError, configure_product_stock, set_stock
from boutique.time_utils import utcnow

from conftest import make_product, add_stock, slot


# =============================================================================
# CHECKOUT
# =============================================================================


class TestCreateOrder:

    def test_online_order_reserves_general_stock(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 3}], user_id="cust-1")
        assert order.status == ORDER_PENDING
        assert order.total_cents == 3 * 4500
        assert slot(product.id).reserved_quantity == 3
        assert slot(product.id).stock_quantity == 20

    def test_short_line_rejected_before_payment(self, db_session, product, sized_product):
        with pytest.raises(InsufficientStockError) as exc:
            sale_service.create_order([
                {"product_id": product.id, "quantity": 2},
                {"product_id": sized_product.id, "quantity": 3, "size": "S"},
            ])
        assert exc.value.details["items"][0]["product_id"] == sized_product.id
        assert exc.value.details["items"][0]["available"] == 2
        assert slot(product.id).reserved_quantity == 0
        assert db_session.query(Order).count() == 0

    def test_failed_reservation_releases_earlier_lines(self, db_session, product):
        other = make_product(db_session, name="Scarf")
        add_stock(db_session, other.id, 1)
        # Second line for the same product exceeds what is left after the first hold
        with pytest.raises(InsufficientStockError):
            sale_service.create_order([
                {"product_id": other.id, "quantity": 1},
                {"product_id": product.id, "quantity": 15},
                {"product_id": product.id, "quantity": 15},
            ])
        assert slot(product.id).reserved_quantity == 0
        assert slot(other.id).reserved_quantity == 0

    def test_unknown_and_inactive_products(self, db_session):
        with pytest.raises(OrderError):
            sale_service.create_order([{"product_id": 999, "quantity": 1}])
        p = make_product(db_session, status="inactive")
        with pytest.raises(OrderError):
            sale_service.create_order([{"product_id": p.id, "quantity": 1}])

    def test_flash_sale_price_applies(self, db_session):
        now = utcnow()
        p = make_product(
            db_session,
            price_cents=5000,
            sale_price_cents=3500,
            flash_sale_start_at=now - timedelta(hours=1),
            flash_sale_end_at=now + timedelta(hours=1),
        )
        order = sale_service.create_order([{"product_id": p.id, "quantity": 2}])
        assert order.total_cents == 7000
        assert order.items[0].unit_price_cents == 3500

    def test_pos_order_completes_and_deducts(self, db_session, sized_product):
        order = sale_service.create_order(
            [{"product_id": sized_product.id, "quantity": 2, "size": "M"}],
            sale_type=SALE_TYPE_POS,
            seller_id="seller-1",
            payment_method="cash",
        )
        assert order.status == ORDER_COMPLETED
        assert order.completed_at is not None
        assert slot(sized_product.id, "M").stock_quantity == 3
        movement = db_session.query(StockMovement).one()
        assert movement.seller_id == "seller-1"
        assert movement.order_id == order.id


# =============================================================================
# COMPLETION
# =============================================================================


class TestCompleteSale:

    def test_completion_consumes_reservation(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 3}])
        completed = sale_service.complete_sale(order.id)
        assert completed.status == ORDER_COMPLETED
        row = slot(product.id)
        assert row.stock_quantity == 17
        assert row.reserved_quantity == 0

    def test_fully_reserved_stock_can_still_be_sold_to_its_holder(self, db_session):
        p = make_product(db_session)
        add_stock(db_session, p.id, 2)
        order = sale_service.create_order([{"product_id": p.id, "quantity": 2}])
        sale_service.complete_sale(order.id)
        row = slot(p.id)
        assert row.stock_quantity == 0
        assert row.reserved_quantity == 0

    def test_completion_is_idempotent(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 3}])
        sale_service.complete_sale(order.id)
        sale_service.complete_sale(order.id)
        assert slot(product.id).stock_quantity == 17
        assert db_session.query(StockMovement).count() == 1

    def test_failed_line_does_not_block_completion(self, db_session, product, sized_product):
        order = sale_service.create_order([
            {"product_id": sized_product.id, "quantity": 2, "size": "S"},
            {"product_id": product.id, "quantity": 1},
        ])
        # Another channel sells the last S units before payment lands
        from boutique.services.deduction_service import deduct_stock
        assert deduct_stock(sized_product.id, 2, size="S") is True

        completed = sale_service.complete_sale(order.id)
        assert completed.status == ORDER_COMPLETED
        assert slot(sized_product.id, "S").stock_quantity == 0
        assert slot(product.id).stock_quantity == 19

    def test_cannot_complete_failed_order(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 1}])
        sale_service.fail_order(order.id)
        with pytest.raises(OrderStateError):
            sale_service.complete_sale(order.id)


# =============================================================================
# FAILURE / STATUS MACHINE
# =============================================================================


class TestFailAndTransitions:

    def test_fail_releases_reservation(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 5}])
        failed = sale_service.fail_order(order.id)
        assert failed.status == ORDER_FAILED
        assert slot(product.id).reserved_quantity == 0
        assert slot(product.id).stock_quantity == 20

    def test_cancel_twice_is_noop(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 5}])
        sale_service.fail_order(order.id, ORDER_CANCELLED)
        assert sale_service.fail_order(order.id, ORDER_CANCELLED).status == ORDER_CANCELLED

    def test_processing_then_completed_then_refunded(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 2}])
        assert sale_service.mark_processing(order.id, "REF-1").payment_reference == "REF-1"
        assert sale_service.update_order_status(order.id, ORDER_COMPLETED).status == ORDER_COMPLETED
        refunded = sale_service.refund_order(order.id)
        assert refunded.status == ORDER_REFUNDED
        # Refunds do not restock
        assert slot(product.id).stock_quantity == 18

    def test_no_transition_back(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 1}])
        sale_service.complete_sale(order.id)
        with pytest.raises(OrderStateError):
            sale_service.update_order_status(order.id, ORDER_PROCESSING)
        with pytest.raises(OrderStateError):
            sale_service.update_order_status(order.id, ORDER_CANCELLED)

    def test_unknown_status(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 1}])
        with pytest.raises(OrderError):
            sale_service.update_order_status(order.id, "shipped")

    def test_can_transition(self):
        assert sale_service.can_transition(ORDER_PENDING, ORDER_PROCESSING)
        assert sale_service.can_transition(ORDER_COMPLETED, ORDER_REFUNDED)
        assert not sale_service.can_transition(ORDER_FAILED, ORDER_PENDING)
        assert not sale_service.can_transition(ORDER_REFUNDED, ORDER_COMPLETED)


# =============================================================================
# PAYMENT CALLBACKS
# =============================================================================


class TestPaymentResult:

    def test_success_completes_order(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 2}])
        tx = sale_service.record_payment_result(
            provider="mpesa", provider_reference="QK123", success=True, order_id=order.id
        )
        assert tx.amount_cents == 9000
        assert db_session.get(Order, order.id).status == ORDER_COMPLETED
        assert slot(product.id).stock_quantity == 18

    def test_duplicate_success_deducts_once(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 2}])
        for _ in range(2):
            sale_service.record_payment_result(
                provider="mpesa", provider_reference="QK123", success=True, order_id=order.id
            )
        assert slot(product.id).stock_quantity == 18
        assert db_session.query(Transaction).count() == 1

    def test_lookup_by_payment_reference(self, db_session, product):
        order = sale_service.create_order(
            [{"product_id": product.id, "quantity": 1}], payment_reference="CHK-9"
        )
        sale_service.record_payment_result(
            provider="card", provider_reference="ch_1", success=True, payment_reference="CHK-9"
        )
        assert db_session.get(Order, order.id).status == ORDER_COMPLETED

    def test_user_cancellation(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 4}])
        sale_service.record_payment_result(
            provider="mpesa",
            provider_reference="QK999",
            success=False,
            order_id=order.id,
            metadata={"cancelled_by_user": True},
        )
        assert db_session.get(Order, order.id).status == ORDER_CANCELLED
        assert slot(product.id).reserved_quantity == 0

    def test_failure_after_completion_is_ignored(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 1}])
        sale_service.complete_sale(order.id)
        sale_service.record_payment_result(
            provider="mpesa", provider_reference="QK5", success=False, order_id=order.id
        )
        assert db_session.get(Order, order.id).status == ORDER_COMPLETED

    def test_unknown_order(self, db_session):
        with pytest.raises(OrderError):
            sale_service.record_payment_result(
                provider="mpesa", provider_reference="X", success=True, payment_reference="missing"
            )


# =============================================================================
# ONLINE ORDERS FOR SIZE / COLOR STOCK
# =============================================================================


@pytest.fixture
def mixed_product(db_session):
    """General 10, size M 5, color-only Red 3, through the configuration path."""
    p = make_product(db_session, name="Wrap Skirt")
    configure_product_stock(p.id, 10, size_stocks={"M": 5}, color_stocks={"Red": 3})
    return p


class TestSizedOnlineOrders:

    def test_size_line_is_not_held_on_general_row(self, db_session, mixed_product):
        order = sale_service.create_order([{"product_id": mixed_product.id, "quantity": 2, "size": "M"}])
        assert order.items[0].reserved_quantity == 0
        assert slot(mixed_product.id).reserved_quantity == 0

    def test_size_stock_sells_when_general_row_is_empty(self, db_session):
        p = make_product(db_session)
        configure_product_stock(p.id, 0, size_stocks={"M": 5})
        order = sale_service.create_order([{"product_id": p.id, "quantity": 2, "size": "M"}])
        assert order.status == ORDER_PENDING

        sale_service.complete_sale(order.id)
        assert slot(p.id, "M").stock_quantity == 3
        assert slot(p.id).reserved_quantity == 0

    def test_completion_leaves_no_hold_behind(self, db_session, mixed_product):
        order = sale_service.create_order([
            {"product_id": mixed_product.id, "quantity": 2, "size": "M"},
            {"product_id": mixed_product.id, "quantity": 1, "color": "Red"},
            {"product_id": mixed_product.id, "quantity": 4},
        ])
        assert slot(mixed_product.id).reserved_quantity == 4

        sale_service.complete_sale(order.id)
        general = slot(mixed_product.id)
        assert general.stock_quantity == 6
        assert general.reserved_quantity == 0
        assert slot(mixed_product.id, "M").stock_quantity == 3
        assert slot(mixed_product.id, color="Red").stock_quantity == 2

    def test_fail_releases_only_the_general_hold(self, db_session, mixed_product):
        # An unrelated hold already sits on the general row
        assert reserve_stock(mixed_product.id, 3) is True

        order = sale_service.create_order([
            {"product_id": mixed_product.id, "quantity": 2, "size": "M"},
            {"product_id": mixed_product.id, "quantity": 2},
        ])
        assert slot(mixed_product.id).reserved_quantity == 5

        sale_service.fail_order(order.id)
        general = slot(mixed_product.id)
        assert general.reserved_quantity == 3
        assert general.stock_quantity == 10
        assert slot(mixed_product.id, "M").stock_quantity == 5

    def test_short_general_row_hands_hold_back_after_sweep(self, db_session, mixed_product):
        order = sale_service.create_order([{"product_id": mixed_product.id, "quantity": 4}])
        assert order.items[0].reserved_quantity == 4
        # Stock is written down by hand before payment lands
        set_stock(mixed_product.id, 3)
        db_session.commit()

        sale_service.complete_sale(order.id)
        general = slot(mixed_product.id)
        assert general.stock_quantity == 3
        assert general.reserved_quantity == 0
        assert slot(mixed_product.id, "M").stock_quantity == 1

    def test_failed_line_hands_hold_back(self, db_session, product):
        order = sale_service.create_order([{"product_id": product.id, "quantity": 4}])
        set_stock(product.id, 3)
        db_session.commit()

        completed = sale_service.complete_sale(order.id)
        assert completed.status == ORDER_COMPLETED
        general = slot(product.id)
        assert general.stock_quantity == 3
        assert general.reserved_quantity == 0

    def test_unheld_line_served_by_sweep(self, db_session, sized_product):
        add_stock(db_session, sized_product.id, 1)
        order = sale_service.create_order([{"product_id": sized_product.id, "quantity": 4}])
        assert order.items[0].reserved_quantity == 0

        sale_service.complete_sale(order.id)
        general = slot(sized_product.id)
        assert general.stock_quantity == 1
        assert general.reserved_quantity == 0
        assert slot(sized_product.id, "L").stock_quantity == 4
