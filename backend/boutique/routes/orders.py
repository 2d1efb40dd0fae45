# backend/boutique/routes/orders.py
"""Order API routes: checkout, POS sale, lookup, administrative status changes."""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Order
from ..models.orders import SALE_TYPE_POS
from ..validation import PayloadPolicy, validate_payload, ValidationError, enforce_rules_order
from ..decorators import require_auth, require_role
from ..services import sale_service
from ..services.identity_service import STAFF_ROLES, MANAGER_ROLES
from ..services.sale_service import OrderError, OrderStateError
from ..services.stock_ledger import InsufficientStockError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

ORDER_CREATE_POLICY = PayloadPolicy(
    fields={
        "items": "list",
        "sale_type": "str",
        "payment_method": "str",
        "payment_reference": "str",
        "social_platform": "str",
    },
    required={"items"},
    max_lengths={"payment_method": 32, "payment_reference": 128, "social_platform": 32},
)

STATUS_POLICY = PayloadPolicy(fields={"status": "str"}, required={"status"})


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Create an order.

    online: stock is checked and reserved before payment; 409 when short.
    pos: staff only; the sale completes immediately and stock is deducted.
    """
    try:
        patch = validate_payload(payload=request.get_json(silent=True), policy=ORDER_CREATE_POLICY)
        enforce_rules_order(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    is_pos = patch["sale_type"] == SALE_TYPE_POS
    if is_pos and g.role not in STAFF_ROLES:
        return jsonify({"error": "Forbidden", "required_roles": list(STAFF_ROLES)}), 403

    try:
        order = sale_service.create_order(
            patch["items"],
            sale_type=patch["sale_type"],
            user_id=None if is_pos else g.user_id,
            seller_id=g.user_id if is_pos else None,
            payment_method=patch.get("payment_method"),
            payment_reference=patch.get("payment_reference"),
            social_platform=patch.get("social_platform"),
        )
    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"order": order.to_dict(include_items=True)}), 201


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    """Staff see every order; customers only their own."""
    order = db.session.get(Order, order_id)
    if order is None:
        return jsonify({"error": "Order not found"}), 404
    if g.role not in STAFF_ROLES and (g.user_id is None or order.user_id != g.user_id):
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": order.to_dict(include_items=True)}), 200


@orders_bp.post("/<int:order_id>/status")
@require_auth
@require_role(*MANAGER_ROLES)
def update_status_route(order_id: int):
    try:
        patch = validate_payload(payload=request.get_json(silent=True), policy=STATUS_POLICY)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        order = sale_service.update_order_status(order_id, patch["status"].lower())
    except OrderStateError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except OrderError as e:
        status = 404 if str(e) == "Order not found" else 400
        return jsonify({"error": str(e), "details": e.details}), status
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"order": order.to_dict()}), 200
