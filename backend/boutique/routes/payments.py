# backend/boutique/routes/payments.py
"""
Provider-agnostic payment result callback.

Gateway adapters (STK push, card processor) translate their provider's
payload into this shape and forward it. Callbacks are always acknowledged
once parsed so providers stop redelivering; problems are logged.
"""

from flask import Blueprint, request, jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..validation import PayloadPolicy, validate_payload, ValidationError
from ..services import sale_service
from ..services.sale_service import OrderError


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

CALLBACK_POLICY = PayloadPolicy(
    fields={
        "provider": "str",
        "provider_reference": "str",
        "success": "bool",
        "amount_cents": "int",
        "order_id": "int",
        "payment_reference": "str",
        "metadata": "dict",
    },
    required={"provider", "provider_reference", "success"},
    max_lengths={"provider": 32, "provider_reference": 128, "payment_reference": 128},
)


@payments_bp.post("/callback")
def payment_callback_route():
    secret = current_app.config.get("PAYMENT_CALLBACK_TOKEN")
    if secret and request.headers.get("X-Callback-Token") != secret:
        return jsonify({"error": "Invalid callback token"}), 401

    try:
        patch = validate_payload(payload=request.get_json(silent=True), policy=CALLBACK_POLICY)
        if patch.get("order_id") is None and not patch.get("payment_reference"):
            raise ValidationError("order_id or payment_reference required")
        if patch.get("amount_cents") is not None and patch["amount_cents"] < 0:
            raise ValidationError("amount_cents must be >= 0")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    current_app.logger.info(
        "Payment callback: provider=%s reference=%s success=%s order=%s",
        patch["provider"], patch["provider_reference"], patch["success"],
        patch.get("order_id") or patch.get("payment_reference"),
    )

    try:
        tx = sale_service.record_payment_result(
            provider=patch["provider"],
            provider_reference=patch["provider_reference"],
            success=patch["success"],
            amount_cents=patch.get("amount_cents"),
            order_id=patch.get("order_id"),
            payment_reference=patch.get("payment_reference"),
            metadata=patch.get("metadata"),
        )
    except OrderError as e:
        current_app.logger.warning("Payment callback not applied: %s %s", e, e.details)
        return jsonify({"acknowledged": True, "processed": False, "error": str(e)}), 200
    except SQLAlchemyError:
        current_app.logger.exception("Failed to apply payment callback")
        return jsonify({"acknowledged": True, "processed": False}), 200

    return jsonify({"acknowledged": True, "processed": True, "transaction": tx.to_dict()}), 200
