from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .models.inventory import SIZES
from .models.orders import SALE_TYPES


# Largest quantity a single request may move; guards against typos like 1e9
MAX_QUANTITY = 100_000


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer for JSON bodies:
    - fields: allowed keys and their kind ("int", "str", "bool", "dict", "list")
    - required: keys that must be present
    - max_lengths: optional String limits, mirroring column sizes
    """
    fields: dict[str, str]
    required: set[str] = field(default_factory=set)
    max_lengths: dict[str, int] = field(default_factory=dict)


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15") and decimals (e.g., "12.5")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(key: str, kind: str, value: Any):
    if value is None:
        return None
    if kind == "int":
        return _coerce_int(key, value)
    if kind == "str":
        return str(value).strip()
    if kind == "bool":
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{key} must be a boolean")
    if kind == "dict":
        if isinstance(value, dict):
            return value
        raise ValidationError(f"{key} must be an object")
    if kind == "list":
        if isinstance(value, list):
            return value
        raise ValidationError(f"{key} must be a list")
    return value


def validate_payload(*, payload, policy: PayloadPolicy) -> dict:
    """
    Validates + normalizes incoming JSON against a policy.
    Unknown keys are rejected. Returns a cleaned dict.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = sorted(f for f in policy.required if payload.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cleaned: dict = {}
    for k, raw in payload.items():
        if k not in policy.fields:
            raise ValidationError(f"Field not allowed: {k}")
        val = _coerce_value(k, policy.fields[k], raw)

        limit = policy.max_lengths.get(k)
        if limit and isinstance(val, str) and len(val) > limit:
            raise ValidationError(f"{k} exceeds max length {limit}")

        cleaned[k] = val

    return cleaned


def _check_quantity(value, key: str = "quantity") -> None:
    if value is None or value <= 0:
        raise ValidationError(f"{key} must be > 0")
    if value > MAX_QUANTITY:
        raise ValidationError(f"{key} cannot exceed {MAX_QUANTITY}")


def _check_size(value) -> str | None:
    if value is None or value == "":
        return None
    size = str(value).strip().upper()
    if size not in SIZES:
        raise ValidationError(f"size must be one of {', '.join(SIZES)}")
    return size


def enforce_rules_stock_movement(patch: dict) -> None:
    """reserve / release / deduct: positive quantity, known size."""
    _check_quantity(patch.get("quantity"))
    if "size" in patch:
        patch["size"] = _check_size(patch["size"])
    if "color" in patch and patch["color"] == "":
        patch["color"] = None


def enforce_rules_stock_update(patch: dict) -> None:
    qty = patch.get("stock_quantity", 0)
    if qty is None or qty < 0:
        raise ValidationError("stock_quantity must be >= 0")

    for size, n in (patch.get("size_stocks") or {}).items():
        _check_size(size)
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise ValidationError(f"size_stocks[{size}] must be a non-negative integer")

    for color, value in (patch.get("color_stocks") or {}).items():
        if not str(color).strip():
            raise ValidationError("color_stocks keys must not be blank")
        if isinstance(value, dict):
            for size, n in value.items():
                _check_size(size)
                if isinstance(n, bool) or not isinstance(n, int) or n < 0:
                    raise ValidationError(f"color_stocks[{color}][{size}] must be a non-negative integer")
        elif isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"color_stocks[{color}] must be a non-negative integer or a size map")


def enforce_rules_order(patch: dict) -> None:
    sale_type = patch.get("sale_type") or "online"
    if sale_type not in SALE_TYPES:
        raise ValidationError(f"sale_type must be one of {', '.join(SALE_TYPES)}")
    patch["sale_type"] = sale_type

    items = patch.get("items") or []
    if not items:
        raise ValidationError("items must not be empty")
    cleaned = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{i}] must be an object")
        product_id = _coerce_int(f"items[{i}].product_id", item.get("product_id"))
        quantity = _coerce_int(f"items[{i}].quantity", item.get("quantity"))
        _check_quantity(quantity, f"items[{i}].quantity")
        color = item.get("color")
        color = str(color).strip() if color is not None else None
        cleaned.append({
            "product_id": product_id,
            "quantity": quantity,
            "size": _check_size(item.get("size")),
            "color": color or None,
        })
    patch["items"] = cleaned
