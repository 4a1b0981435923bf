# Overview: Flask API routes for sale settlement; parses input and returns JSON responses.

# backend/posledger/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..services.discount_service import list_discount_policies
from ..services.sales_service import PartialInventoryDeduction, SaleError
from ..validation import ValidationError, parse_cart_payload
from posledger.time_utils import parse_report_date


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/settle")
def settle_sale_route():
    """
    Settle a cart.

    Returns:
    - 201: sale recorded, inventory fully deducted
    - 207: sale recorded, some recipe components could not be deducted
    - 400: invalid cart, discount code or payment (nothing recorded)
    """
    try:
        cart = parse_cart_payload(request.get_json(silent=True))
        result = sales_service.settle_sale(
            cart["items"],
            cart["discount_code"],
            cart["payment_method"],
            tendered_cents=cart["tendered_cents"],
            occurred_at=cart["occurred_at"],
            actor=cart["actor"],
            terminal_id=cart["terminal_id"],
        )
        return jsonify(result.to_dict()), 201

    except PartialInventoryDeduction as e:
        payload = e.result.to_dict()
        payload["error"] = str(e)
        return jsonify(payload), 207
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to settle sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/discounts")
def list_discounts_route():
    return jsonify({"discounts": [p.to_dict() for p in list_discount_policies()]}), 200


@sales_bp.get("/<int:transaction_id>")
def get_sale_route(transaction_id: int):
    """Get a sale with its lines, stock movements and deduction failures."""
    detail = sales_service.get_transaction_detail(transaction_id)
    if detail is None:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({"sale": detail}), 200


@sales_bp.get("")
def list_sales_route():
    """
    List sales, newest first.

    Query params:
    - date: YYYY-MM-DD business date (optional)
    - limit: int (default 100, max 500)
    """
    raw_date = request.args.get("date")
    limit = request.args.get("limit", default=100, type=int)

    report_date = None
    if raw_date:
        try:
            report_date = parse_report_date(raw_date)
        except ValueError:
            return jsonify({"error": "date must be YYYY-MM-DD"}), 400

    sales = sales_service.list_transactions(report_date, limit=limit)
    return jsonify({"sales": [s.to_dict(include_lines=False) for s in sales]}), 200
