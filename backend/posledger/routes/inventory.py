# Overview: Flask API routes for the inventory ledger; parses input and returns JSON responses.

# backend/posledger/routes/inventory.py
from flask import Blueprint, request, jsonify, current_app

from ..models import InventoryItem
from ..services import inventory_service
from ..services.inventory_service import InventoryError, UnknownItem
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_inventory_item,
    parse_decimal,
    ValidationError,
    ConflictError,
)
from ..numbers import format_quantity


INVENTORY_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"name", "unit", "reorder_level", "unit_cost_cents"},
    required_on_create={"name"},
)

# Items are created active; deactivation is an edit
INVENTORY_ITEM_PATCH_POLICY = ModelValidationPolicy(
    writable_fields=INVENTORY_ITEM_POLICY.writable_fields | {"is_active"},
)

# Sale movements only come from settlement
MANUAL_MOVEMENT_KINDS = ("purchase", "adjustment", "waste", "transfer")

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/items")
def list_items_route():
    items = inventory_service.list_items()
    return jsonify({"items": [item.to_dict() for item in items]}), 200


@inventory_bp.post("/items")
def create_item_route():
    """
    Create an inventory item.

    Body: name, unit?, reorder_level?, unit_cost_cents?, opening_quantity?, actor?
    A non-zero opening_quantity is booked as a purchase movement.
    """
    payload = dict(request.get_json(silent=True) or {})
    opening_raw = payload.pop("opening_quantity", None)
    actor = payload.pop("actor", None)

    try:
        patch = validate_payload(model=InventoryItem, payload=payload, policy=INVENTORY_ITEM_POLICY, partial=False)
        enforce_rules_inventory_item(patch)
        opening = parse_decimal(opening_raw, "opening_quantity") if opening_raw is not None else None
        if opening is not None and opening < 0:
            raise ValidationError("opening_quantity must be >= 0")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        item = inventory_service.create_inventory_item(opening_quantity=opening, actor=actor, **patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    return jsonify({"item": inventory_service.get_item(item.id).to_dict()}), 201


@inventory_bp.patch("/items/<int:item_id>")
def update_item_route(item_id: int):
    payload = request.get_json(silent=True) or {}
    if "quantity_on_hand" in payload:
        return jsonify({"error": "quantity_on_hand changes through stock movements only"}), 400

    try:
        patch = validate_payload(model=InventoryItem, payload=payload, policy=INVENTORY_ITEM_PATCH_POLICY, partial=True)
        enforce_rules_inventory_item(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        item = inventory_service.update_inventory_item(item_id, patch)
    except UnknownItem as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    return jsonify({"item": item.to_dict()}), 200


@inventory_bp.get("/items/<int:item_id>/balance")
def balance_route(item_id: int):
    try:
        balance = inventory_service.current_balance(item_id)
    except UnknownItem as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"inventory_item_id": item_id, "quantity_on_hand": format_quantity(balance)}), 200


@inventory_bp.get("/items/<int:item_id>/history")
def history_route(item_id: int):
    """
    Movement history, newest first.

    Query params:
    - limit: int (default and max LEDGER_HISTORY_MAX_LIMIT)
    """
    limit = request.args.get("limit", type=int)
    try:
        history = inventory_service.history_for(item_id, limit)
    except UnknownItem as e:
        return jsonify({"error": str(e)}), 404

    movements = [m.to_dict() for m in history]
    return jsonify({"inventory_item_id": item_id, "limit": history.limit, "movements": movements}), 200


@inventory_bp.get("/items/<int:item_id>/verify")
def verify_route(item_id: int):
    try:
        report = inventory_service.verify_chain(item_id)
    except UnknownItem as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(report), 200


@inventory_bp.post("/items/<int:item_id>/movements")
def record_movement_route(item_id: int):
    """
    Record a manual stock movement.

    Body: kind (purchase|adjustment|waste|transfer), quantity_delta, note?, actor?
    """
    payload = request.get_json(silent=True) or {}
    kind = payload.get("kind")
    if kind not in MANUAL_MOVEMENT_KINDS:
        return jsonify({"error": f"kind must be one of: {', '.join(MANUAL_MOVEMENT_KINDS)}"}), 400

    try:
        delta = parse_decimal(payload.get("quantity_delta"), "quantity_delta")
        movement = inventory_service.apply_movement(
            item_id,
            delta,
            kind,
            note=payload.get("note"),
            actor=payload.get("actor"),
        )
    except UnknownItem as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"movement": movement.to_dict()}), 201


@inventory_bp.post("/movements/<int:movement_id>/compensate")
def compensate_route(movement_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        movement = inventory_service.compensate_movement(
            movement_id,
            actor=payload.get("actor"),
            note=payload.get("note"),
        )
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except UnknownItem as e:
        return jsonify({"error": str(e)}), 404
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to compensate stock movement")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"movement": movement.to_dict()}), 201


@inventory_bp.get("/low-stock")
def low_stock_route():
    items = inventory_service.low_stock_items()
    return jsonify({"items": [item.to_dict() for item in items]}), 200
