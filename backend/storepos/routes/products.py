# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

# backend/storepos/routes/products.py
"""
Product catalog routes: list, create, update and CSV batch import.

The CSV file itself is parsed by the admin client; the batch endpoint
receives the parsed rows and upserts them by SKU.
"""
from flask import Blueprint, request, current_app

from ..services import products_service
from ..validation import ValidationError, ConflictError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List all products ordered by name.

    Query params:
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    page = request.args.get("page", type=int)
    per_page = request.args.get("per_page", type=int)
    return products_service.list_products(page=page, per_page=per_page)


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    product = products_service.get_product(product_id)
    if not product:
        return {"error": "Product not found"}, 404
    return product.to_dict(), 200


@products_bp.post("")
def create_product_route():
    """Create a new product."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = products_service.validate_product_payload(payload, partial=False)
        created = products_service.create_product(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409

    return created, 201


@products_bp.put("/<int:product_id>")
def update_product_route(product_id: int):
    """Update a product. Only the fields present in the body change."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = products_service.validate_product_payload(payload, partial=True)
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409

    if not updated:
        return {"error": "Product not found"}, 404

    return updated, 200


@products_bp.post("/batch")
def batch_import_route():
    """
    Upsert a batch of parsed CSV rows keyed by SKU.

    Body: {"products": [{sku, name, ...}, ...]}
    """
    payload = request.get_json(silent=True) or {}

    try:
        summary = products_service.upsert_products(payload.get("products"))
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Batch product import failed")
        return {"error": "Batch import failed"}, 500

    current_app.logger.info(
        "Batch import: %d row(s), %d inserted, %d updated",
        summary["processed"], summary["inserted"], summary["updated"],
    )
    return {"message": "CSV import completed.", **summary}, 200
