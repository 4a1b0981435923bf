# Overview: Flask API routes for product recipes; parses input and returns JSON responses.

# backend/posledger/routes/recipes.py
from flask import Blueprint, request, jsonify

from ..models import RecipeLine
from ..services import recipe_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_recipe_line,
    ValidationError,
    ConflictError,
)

RECIPE_LINE_POLICY = ModelValidationPolicy(
    writable_fields={"inventory_item_id", "quantity_per_unit", "unit", "notes"},
    required_on_create={"inventory_item_id", "quantity_per_unit"},
)

recipes_bp = Blueprint("recipes", __name__, url_prefix="/api/recipes")


@recipes_bp.get("/<product_id>")
def get_recipe_route(product_id: str):
    lines = recipe_service.list_recipe(product_id)
    return jsonify({
        "product_id": product_id,
        "locked": recipe_service.is_recipe_locked(product_id),
        "lines": [line.to_dict() for line in lines],
    }), 200


@recipes_bp.post("/<product_id>/lines")
def add_recipe_line_route(product_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=RecipeLine, payload=payload, policy=RECIPE_LINE_POLICY, partial=False)
        enforce_rules_recipe_line(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        line = recipe_service.add_recipe_line(product_id, patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    return jsonify({"line": line.to_dict()}), 201


@recipes_bp.patch("/lines/<int:line_id>")
def update_recipe_line_route(line_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=RecipeLine, payload=payload, policy=RECIPE_LINE_POLICY, partial=True)
        enforce_rules_recipe_line(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        line = recipe_service.update_recipe_line(line_id, patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    if line is None:
        return jsonify({"error": "Recipe line not found"}), 404
    return jsonify({"line": line.to_dict()}), 200


@recipes_bp.delete("/lines/<int:line_id>")
def delete_recipe_line_route(line_id: int):
    try:
        deleted = recipe_service.remove_recipe_line(line_id)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    if not deleted:
        return jsonify({"error": "Recipe line not found"}), 404
    return jsonify({"ok": True}), 200


@recipes_bp.get("/<product_id>/availability")
def availability_route(product_id: str):
    """
    Query params:
    - quantity: int (default 1)
    """
    quantity = request.args.get("quantity", default=1, type=int)
    try:
        result = recipe_service.check_availability(product_id, quantity)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result), 200


@recipes_bp.get("/<product_id>/cost")
def cost_route(product_id: str):
    return jsonify(recipe_service.calculate_product_cost(product_id)), 200
