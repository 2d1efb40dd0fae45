# backend/boutique/routes/inventory.py
"""
Inventory routes.

- Availability reads are public (storefront and POS both poll them)
- reserve / release require an authenticated caller (checkout, payment collaborators)
- deduct requires a staff role (admin, manager, seller)
- update (stock configuration) requires admin or manager
"""
from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, StockMovement
from ..validation import (
    PayloadPolicy,
    validate_payload,
    ValidationError,
    enforce_rules_stock_movement,
    enforce_rules_stock_update,
)
from ..decorators import require_auth, require_role
from ..services import availability_service, stock_ledger
from ..services.deduction_service import deduct_stock
from ..services.identity_service import STAFF_ROLES, MANAGER_ROLES
from ..services.reservation_service import reserve_stock, release_stock
from ..services.stock_ledger import InventoryError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

RESERVATION_POLICY = PayloadPolicy(
    fields={"product_id": "int", "quantity": "int"},
    required={"product_id", "quantity"},
)

DEDUCT_POLICY = PayloadPolicy(
    fields={"product_id": "int", "quantity": "int", "size": "str", "color": "str", "order_id": "int"},
    required={"product_id", "quantity"},
    max_lengths={"size": 8, "color": 64},
)

UPDATE_POLICY = PayloadPolicy(
    fields={"product_id": "int", "stock_quantity": "int", "size_stocks": "dict", "color_stocks": "dict"},
    required={"product_id"},
)


def _product_or_404(product_id: int):
    product = db.session.get(Product, product_id)
    if product is None:
        return None, (jsonify({"error": "Product not found"}), 404)
    return product, None


@inventory_bp.get("")
def bulk_availability_route():
    """Availability for ?product_ids=1,2,3. null means untracked."""
    raw = request.args.get("product_ids", "")
    try:
        product_ids = [int(p) for p in raw.split(",") if p.strip()]
    except ValueError:
        return jsonify({"error": "product_ids must be a comma-separated list of integers"}), 400
    if not product_ids:
        return jsonify({"error": "product_ids required"}), 400

    available = availability_service.get_bulk_available(product_ids)
    return jsonify({"available": {str(pid): qty for pid, qty in available.items()}}), 200


@inventory_bp.get("/<int:product_id>")
def stock_summary_route(product_id: int):
    product, err = _product_or_404(product_id)
    if err:
        return err
    summary = availability_service.stock_summary(product_id)
    summary["product"] = product.to_dict()
    return jsonify(summary), 200


@inventory_bp.post("/reserve")
@require_auth
def reserve_route():
    try:
        patch = validate_payload(payload=request.get_json(silent=True), policy=RESERVATION_POLICY)
        enforce_rules_stock_movement(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    _, err = _product_or_404(patch["product_id"])
    if err:
        return err

    try:
        ok = reserve_stock(patch["product_id"], patch["quantity"])
    except SQLAlchemyError:
        current_app.logger.exception("Failed to reserve stock")
        return jsonify({"error": "Internal server error"}), 500

    if not ok:
        return jsonify({
            "success": False,
            "error": "Insufficient stock",
            "available": availability_service.get_available_stock(patch["product_id"]),
            "requested": patch["quantity"],
        }), 409
    return jsonify({"success": True}), 200


@inventory_bp.post("/release")
@require_auth
def release_route():
    try:
        patch = validate_payload(payload=request.get_json(silent=True), policy=RESERVATION_POLICY)
        enforce_rules_stock_movement(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        ok = release_stock(patch["product_id"], patch["quantity"])
    except SQLAlchemyError:
        current_app.logger.exception("Failed to release stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"success": ok}), 200


@inventory_bp.post("/deduct")
@require_auth
@require_role(*STAFF_ROLES)
def deduct_route():
    """
    Deduct stock for an in-person sale.

    The availability of the slot the deduction will draw from is checked
    first so the cashier gets a precise message; the deduction itself is
    still guarded and may lose a race, which is reported the same way.
    """
    try:
        patch = validate_payload(payload=request.get_json(silent=True), policy=DEDUCT_POLICY)
        enforce_rules_stock_movement(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    product_id = patch["product_id"]
    quantity = patch["quantity"]
    size = patch.get("size")
    color = patch.get("color")

    _, err = _product_or_404(product_id)
    if err:
        return err

    available = availability_service.available_for(product_id, size, color)
    if available is not None and available < quantity:
        return jsonify({
            "error": f"Insufficient inventory. Available: {available}, Requested: {quantity}",
            "available": available,
            "requested": quantity,
        }), 400

    try:
        ok = deduct_stock(
            product_id,
            quantity,
            g.user_id,
            size,
            color,
            order_id=patch.get("order_id"),
        )
    except SQLAlchemyError:
        return jsonify({"error": "Failed to deduct stock"}), 500

    if not ok:
        return jsonify({
            "error": "Failed to deduct stock. Stock changed while processing; please try again.",
            "available": availability_service.available_for(product_id, size, color),
            "requested": quantity,
        }), 400

    return jsonify({
        "success": True,
        "available": availability_service.available_for(product_id, size, color),
    }), 200


@inventory_bp.post("/update")
@require_auth
@require_role(*MANAGER_ROLES)
def update_stock_route():
    """Replace a product's general / size / color stock configuration."""
    try:
        patch = validate_payload(payload=request.get_json(silent=True), policy=UPDATE_POLICY)
        enforce_rules_stock_update(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        stock_ledger.configure_product_stock(
            patch["product_id"],
            patch.get("stock_quantity") or 0,
            size_stocks=patch.get("size_stocks"),
            color_stocks=patch.get("color_stocks"),
        )
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update inventory")
        return jsonify({"error": "Failed to update inventory"}), 500

    return jsonify({"success": True, "inventory": availability_service.stock_summary(patch["product_id"])}), 200


@inventory_bp.get("/<int:product_id>/movements")
@require_auth
@require_role(*STAFF_ROLES)
def movements_route(product_id: int):
    """Committed deductions for reconciliation, newest first."""
    limit = min(request.args.get("limit", 50, type=int) or 50, 500)
    movements = (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200
