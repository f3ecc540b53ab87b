# backend/storepos/services/products_service.py
"""
Product catalog service.

SKU is the business key for imports (batch upsert); the durable ``id`` is
what sales reference. Stock may be set here by an admin; sales and
annulments never come through this module (see stock_ledger.py).
"""
from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..models.inventory import PHOTO_SLOTS
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)
from .concurrency import atomic

PRODUCT_MUTABLE_FIELDS = frozenset({
    "sku", "name", "description",
    "sale_price_cents", "discount_price_cents", "purchase_price_cents", "wholesale_price_cents",
    "stock", "category", "brand", "barcode", "branch",
    *(f"photo_url_{i}" for i in range(1, PHOTO_SLOTS + 1)),
})

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_MUTABLE_FIELDS,
    required_on_create=frozenset({"sku", "name"}),
)


def validate_product_payload(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=partial)
    enforce_rules_product(patch)
    return patch


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def list_products(page: int | None = None, per_page: int | None = None) -> dict:
    """
    Product listing ordered by name, with optional pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product).order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def _sku_taken(sku: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


def _commit_or_conflict() -> None:
    # The unique constraint still catches a SKU taken by a concurrent writer after _sku_taken
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("SKU already exists.") from e


def create_product(*, patch: dict) -> dict:
    """
    Create product using a validated patch dict.

    Raises:
        ConflictError: If the SKU already exists
    """
    sku = patch.get("sku")
    if sku is None:
        raise ValidationError("sku is required")

    if _sku_taken(sku):
        raise ConflictError("SKU already exists.")

    p = Product(stock=0)
    apply_product_patch(p, patch)

    db.session.add(p)
    _commit_or_conflict()
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict | None:
    """
    Update a product. The SKU may change; sales keep pointing at the id.

    Returns:
        Updated product dict, or None if not found

    Raises:
        ConflictError: If the new SKU belongs to another product
    """
    p = db.session.get(Product, product_id)
    if not p:
        return None

    new_sku = patch.get("sku")
    if new_sku is not None and new_sku != p.sku and _sku_taken(new_sku, exclude_id=p.id):
        raise ConflictError("SKU already exists.")

    apply_product_patch(p, patch)
    _commit_or_conflict()
    return p.to_dict()


def upsert_products(rows: list[dict]) -> dict:
    """
    Insert-or-overwrite products keyed by SKU, as one unit of work.

    Every row is validated like a create before anything is written; a bad
    row rejects the whole batch. Existing products get every writable field
    overwritten (fields missing from the row are cleared, stock defaults to 0).

    Returns:
        {"processed", "inserted", "updated"} counts
    """
    if not isinstance(rows, list) or not rows:
        raise ValidationError("No products provided for import.")

    patches = []
    for i, row in enumerate(rows):
        try:
            patches.append(validate_product_payload(row, partial=False))
        except ValidationError as e:
            raise ValidationError(f"Row {i + 1}: {e}") from e

    # Later rows win when a batch repeats a SKU
    by_sku: dict[str, dict] = {}
    for patch in patches:
        by_sku[patch["sku"]] = patch

    inserted = updated = 0
    try:
        with atomic():
            existing = {
                p.sku: p
                for p in db.session.query(Product).filter(Product.sku.in_(by_sku.keys())).all()
            }
            for sku, patch in by_sku.items():
                full = {field: None for field in PRODUCT_MUTABLE_FIELDS}
                full["stock"] = 0
                full.update({k: v for k, v in patch.items() if v is not None})

                product = existing.get(sku)
                if product is None:
                    product = Product()
                    db.session.add(product)
                    inserted += 1
                else:
                    updated += 1
                apply_product_patch(product, full)
    except IntegrityError as e:
        raise ConflictError("SKU already exists.") from e

    return {"processed": len(rows), "inserted": inserted, "updated": updated}
