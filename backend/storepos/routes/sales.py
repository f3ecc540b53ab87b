# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/storepos/routes/sales.py
"""
Sales API routes.

Business-rule failures (validation, stock, not found, already annulled,
corrupt history) are returned verbatim with their error code; anything
unexpected is logged with its traceback and reported generically.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..services.sales_service import SaleError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _request_body() -> dict:
    data = request.get_json(silent=True) or {}
    # Older POS clients wrap the body in {"data": {...}}
    if isinstance(data.get("data"), dict):
        return data["data"]
    return data


def _sale_error_response(e: SaleError):
    return jsonify(e.to_dict()), e.status_code


@sales_bp.post("")
def record_sale_route():
    """
    Record a sale and decrement stock.

    Body: {customer: {name, contact, id}, items: [{productId, quantity,
    unitPrice, unitCost, name}], operatorId, operatorName}
    """
    try:
        data = _request_body()
        operator = data.get("operator")
        if not isinstance(operator, dict):
            operator = {"id": data.get("operatorId"), "name": data.get("operatorName")}

        sale = sales_service.record_sale(
            customer=data.get("customer"),
            items=data.get("items"),
            operator=operator,
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@sales_bp.put("/annul")
def annul_sale_route():
    """
    Annul a sale and restore its stock.

    Body: {saleId, operatorId}
    """
    try:
        data = _request_body()
        sale_id = data.get("saleId")
        if sale_id is None or not str(sale_id).strip():
            return jsonify({"error": "saleId required", "code": "VALIDATION_ERROR", "details": {"field": "saleId"}}), 400

        # saleId is always a sale code on the wire, even when sent as a JSON number
        result = sales_service.annul_sale(str(sale_id).strip(), actor=data.get("operatorId"))
        body = result.to_dict()
        body["message"] = f"Sale {result.sale.sale_code} annulled. {result.restored_count} line(s) restored to stock."
        return jsonify(body), 200

    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to annul sale")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@sales_bp.get("")
def list_sales_route():
    """
    List sales, newest first.

    Query params:
    - status: Completed | Annulled (optional)
    - limit: int (optional)
    """
    status = request.args.get("status")
    limit = request.args.get("limit", type=int)
    try:
        sales = sales_service.list_sales(status=status, limit=limit)
    except SaleError as e:
        return _sale_error_response(e)

    return jsonify({
        "sales": [s.to_dict() for s in sales],
        "count": len(sales),
    }), 200


@sales_bp.get("/<sale_code>")
def get_sale_route(sale_code: str):
    sale = sales_service.get_sale(sale_code)
    if not sale:
        return jsonify({"error": "Sale not found", "code": "NOT_FOUND"}), 404
    return jsonify({"sale": sale.to_dict()}), 200
