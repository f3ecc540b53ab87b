"""
Sale Transaction Engine - recording and annulling sales.

WHY: A sale touches one sales row and N product stock counters. Both
operations below run as a single unit of work so a failure anywhere leaves
neither a half-written sale nor a half-adjusted stock counter behind.

CONCURRENCY:
- Stock is only changed through stock_ledger's guarded UPDATEs, so two
  cashiers selling the last unit cannot both succeed.
- Annulment locks the sale row before checking its status, so a sale is
  annulled (and its stock restored) exactly once.
- Every function takes an optional ``session``; the Flask-SQLAlchemy
  scoped session is used when none is given.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Product, Sale, SALE_STATUS_COMPLETED, SALE_STATUS_ANNULLED, SALE_STATUSES
from ..time_utils import utcnow
from ..validation import MAX_DB_INTEGER, MAX_PRICE_CENTS, MAX_QUANTITY, parse_plain_int
from . import stock_ledger
from .concurrency import RETRYABLE_ERRORS, atomic, lock_for_update, run_with_retry
from .sale_snapshot import LineItem, SnapshotFormatError, decode_snapshot, encode_snapshot

DEFAULT_SALE_CODE_PREFIX = "AS"


class SaleError(Exception):
    """Raised for sale operation errors."""
    code = "SALE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class SaleValidationError(SaleError):
    """Malformed caller input; nothing was written."""
    code = "VALIDATION_ERROR"
    status_code = 400


class InsufficientStockError(SaleError):
    """At least one line could not be covered by stock; the whole sale was rolled back."""
    code = "INSUFFICIENT_STOCK"
    status_code = 409


class SaleNotFoundError(SaleError):
    code = "NOT_FOUND"
    status_code = 404


class SaleAlreadyAnnulledError(SaleError):
    code = "ALREADY_ANNULLED"
    status_code = 409


class SaleSnapshotError(SaleError):
    """The stored line-item snapshot is unreadable; the annulment was rolled back."""
    code = "FORMAT_ERROR"
    status_code = 500


class TransientStorageError(SaleError):
    """Storage failed mid-unit; everything was rolled back and the call is safe to retry."""
    code = "TRANSIENT_STORAGE_ERROR"
    status_code = 503


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    contact: str | None = None
    tax_id: str | None = None


@dataclass(frozen=True)
class OperatorInfo:
    id: str
    name: str | None = None


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int
    unit_cost_cents: int | None = None
    name: str | None = None


@dataclass
class AnnulmentResult:
    sale: Sale
    restored: list[dict] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)

    @property
    def restored_count(self) -> int:
        return len(self.restored)

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "restored_count": self.restored_count,
            "restored": self.restored,
            "skipped": self.skipped,
        }


# =============================================================================
# Input validation (runs before any unit of work is opened)
# =============================================================================

def _first(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_int(value: Any, field_name: str, upper: int) -> int:
    # Integers, or strings of plain digits. Floats and bools are rejected.
    parsed = parse_plain_int(value)
    if parsed is None:
        raise SaleValidationError(f"{field_name} must be an integer", details={"field": field_name})
    if parsed > upper:
        raise SaleValidationError(f"{field_name} cannot exceed {upper}", details={"field": field_name})
    return parsed


def _validate_customer(customer: Any) -> CustomerInfo:
    if not isinstance(customer, dict):
        raise SaleValidationError("customer is required", details={"field": "customer"})
    name = _optional_text(customer.get("name"))
    if not name:
        raise SaleValidationError("customer.name is required", details={"field": "customer.name"})
    return CustomerInfo(
        name=name,
        contact=_optional_text(customer.get("contact")),
        tax_id=_optional_text(_first(customer, "id", "tax_id")),
    )


def _validate_operator(operator: Any) -> OperatorInfo:
    if not isinstance(operator, dict):
        raise SaleValidationError("operator is required", details={"field": "operator"})
    operator_id = _optional_text(operator.get("id"))
    if not operator_id:
        raise SaleValidationError("operator id is required", details={"field": "operatorId"})
    return OperatorInfo(id=operator_id, name=_optional_text(operator.get("name")))


def _validate_items(items: Any) -> list[LineRequest]:
    if not isinstance(items, (list, tuple)) or not items:
        raise SaleValidationError("items must be a non-empty list", details={"field": "items"})

    lines = []
    for i, raw in enumerate(items):
        prefix = f"items[{i}]"
        if not isinstance(raw, dict):
            raise SaleValidationError(f"{prefix} must be an object", details={"field": prefix})

        product_id = _first(raw, "productId", "product_id")
        if product_id is None:
            raise SaleValidationError(f"{prefix}.productId is required", details={"field": f"{prefix}.productId"})
        product_id = _coerce_int(product_id, f"{prefix}.productId", MAX_DB_INTEGER)
        if product_id <= 0:
            raise SaleValidationError(f"{prefix}.productId must be positive", details={"field": f"{prefix}.productId"})

        quantity = raw.get("quantity")
        if quantity is None:
            raise SaleValidationError(f"{prefix}.quantity is required", details={"field": f"{prefix}.quantity"})
        quantity = _coerce_int(quantity, f"{prefix}.quantity", MAX_QUANTITY)
        if quantity <= 0:
            raise SaleValidationError(f"{prefix}.quantity must be greater than 0", details={"field": f"{prefix}.quantity"})

        unit_price = _first(raw, "unitPrice", "unit_price_cents")
        if unit_price is None:
            raise SaleValidationError(f"{prefix}.unitPrice is required", details={"field": f"{prefix}.unitPrice"})
        unit_price = _coerce_int(unit_price, f"{prefix}.unitPrice", MAX_PRICE_CENTS)
        if unit_price < 0:
            raise SaleValidationError(f"{prefix}.unitPrice cannot be negative", details={"field": f"{prefix}.unitPrice"})

        unit_cost = _first(raw, "unitCost", "unit_cost_cents")
        if unit_cost is not None:
            unit_cost = _coerce_int(unit_cost, f"{prefix}.unitCost", MAX_PRICE_CENTS)
            if unit_cost < 0:
                raise SaleValidationError(f"{prefix}.unitCost cannot be negative", details={"field": f"{prefix}.unitCost"})

        lines.append(LineRequest(
            product_id=product_id,
            quantity=quantity,
            unit_price_cents=unit_price,
            unit_cost_cents=unit_cost,
            name=_optional_text(raw.get("name")),
        ))

    if sum(line.quantity * line.unit_price_cents for line in lines) > MAX_DB_INTEGER:
        raise SaleValidationError("sale total is out of range", details={"field": "items"})
    return lines


# =============================================================================
# Sale codes
# =============================================================================

def next_sale_code(existing_codes: Iterable[str | None], prefix: str = DEFAULT_SALE_CODE_PREFIX) -> str:
    """
    Next code after the highest numeric suffix among ``existing_codes``.

    Codes that are not exactly prefix + digits are ignored; with none left
    the sequence starts at 1.
    """
    highest = 0
    for code in existing_codes:
        if not code or not code.startswith(prefix):
            continue
        suffix = code[len(prefix):]
        # str.isdigit also accepts superscripts and other non-ASCII digits
        if not (suffix.isascii() and suffix.isdigit()):
            continue
        highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1}"


def _generate_sale_code(session, prefix: str) -> str:
    # Must run inside the same unit of work as the INSERT that uses it
    rows = (
        session.query(Sale.sale_code)
        .filter(Sale.sale_code.startswith(prefix, autoescape=True))
        .all()
    )
    return next_sale_code((code for (code,) in rows), prefix)


def _sale_code_prefix() -> str:
    return current_app.config.get("SALE_CODE_PREFIX") or DEFAULT_SALE_CODE_PREFIX


# =============================================================================
# Unit-of-work plumbing
# =============================================================================

def _run_unit(func, session, *, retry_on: tuple = RETRYABLE_ERRORS):
    """Run ``func`` with retries; storage failures surface as TransientStorageError."""
    config = current_app.config
    try:
        return run_with_retry(
            func,
            attempts=config.get("SALE_RETRY_ATTEMPTS", 3),
            backoff_base=config.get("SALE_RETRY_BACKOFF", 0.1),
            retry_on=retry_on,
            session=session,
        )
    except SQLAlchemyError as exc:
        current_app.logger.exception("Sale unit of work failed in storage; rolled back")
        raise TransientStorageError(
            "Storage is temporarily unavailable; nothing was saved. Retry the request.",
            details={"reason": type(exc).__name__},
        ) from exc


def _resolve_line_items(session, lines: list[LineRequest]) -> list[LineItem]:
    product_ids = {line.product_id for line in lines}
    products = {
        p.id: p
        for p in session.query(Product).filter(Product.id.in_(product_ids)).all()
    }
    missing = sorted(product_ids - products.keys())
    if missing:
        raise SaleValidationError("Unknown product(s)", details={"product_ids": missing})

    items = []
    for line in lines:
        product = products[line.product_id]
        items.append(LineItem(
            product_id=product.id,
            name=line.name or product.name,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            # Cost basis is frozen at sale time
            unit_cost_cents=(
                line.unit_cost_cents
                if line.unit_cost_cents is not None
                else product.purchase_price_cents
            ),
        ))
    return items


# =============================================================================
# Record
# =============================================================================

def record_sale(customer: dict, items: list[dict], operator: dict, session=None) -> Sale:
    """
    Record a sale and decrement stock for every line, all or nothing.

    ``customer`` is {"name", "contact", "id"}, ``items`` a list of
    {"productId", "quantity", "unitPrice", "unitCost", "name"} (amounts in
    cents) and ``operator`` {"id", "name"}.

    Raises SaleValidationError before touching storage for malformed input,
    InsufficientStockError (after a full rollback) when any line is short,
    and TransientStorageError when storage keeps failing.
    """
    customer_info = _validate_customer(customer)
    lines = _validate_items(items)
    operator_info = _validate_operator(operator)

    session = session if session is not None else db.session
    prefix = _sale_code_prefix()

    def _op() -> Sale:
        with atomic(session):
            sale_code = _generate_sale_code(session, prefix)
            snapshot = _resolve_line_items(session, lines)

            sale = Sale(
                sale_code=sale_code,
                customer_name=customer_info.name,
                customer_contact=customer_info.contact,
                customer_tax_id=customer_info.tax_id,
                total_cents=sum(item.line_total_cents for item in snapshot),
                status=SALE_STATUS_COMPLETED,
                created_at=utcnow(),
                operator_id=operator_info.id,
                operator_name=operator_info.name,
                items_snapshot=encode_snapshot(snapshot),
            )
            session.add(sale)
            session.flush()

            shortfalls = []
            for item in snapshot:
                if stock_ledger.decrement_if_sufficient(item.product_id, item.quantity, session=session):
                    continue
                available = stock_ledger.quantity_on_hand(item.product_id, session=session) or 0
                shortfalls.append({
                    "product_id": item.product_id,
                    "name": item.name,
                    "requested": item.quantity,
                    "available": available,
                    "shortfall": item.quantity - available,
                })

            if shortfalls:
                names = ", ".join(s["name"] or str(s["product_id"]) for s in shortfalls)
                raise InsufficientStockError(
                    f"Insufficient stock for: {names}",
                    details={"items": shortfalls},
                )
        return sale

    # IntegrityError here means another writer took the same sale code first
    sale = _run_unit(_op, session, retry_on=RETRYABLE_ERRORS + (IntegrityError,))
    current_app.logger.info("Sale %s recorded by operator %s", sale.sale_code, operator_info.id)
    return sale


# =============================================================================
# Annul
# =============================================================================

def _sale_query(session, sale_ref: int | str):
    query = session.query(Sale)
    if isinstance(sale_ref, int) and not isinstance(sale_ref, bool):
        return query.filter(Sale.id == sale_ref)
    return query.filter(Sale.sale_code == str(sale_ref).strip())


def annul_sale(sale_ref: int | str, session=None, actor: str | None = None) -> AnnulmentResult:
    """
    Annul a completed sale and put its stock back.

    ``sale_ref`` is the sale code (e.g. "AS12") or the integer id. The status
    flip and every restore happen in one unit of work under a row lock, so a
    sale can only ever be annulled once.

    Individually malformed snapshot entries are skipped and logged; an
    unreadable snapshot aborts the whole annulment with SaleSnapshotError.
    ``actor`` (operator id) is only recorded in the log.
    """
    if sale_ref is None or (isinstance(sale_ref, str) and not sale_ref.strip()):
        raise SaleValidationError("saleId is required", details={"field": "saleId"})

    session = session if session is not None else db.session
    logger = current_app.logger

    def _op() -> AnnulmentResult:
        with atomic(session):
            sale = lock_for_update(_sale_query(session, sale_ref)).first()
            if sale is None:
                raise SaleNotFoundError(f"Sale {sale_ref} not found", details={"sale_id": sale_ref})
            if sale.status == SALE_STATUS_ANNULLED:
                raise SaleAlreadyAnnulledError(
                    f"Sale {sale.sale_code} is already annulled",
                    details={"sale_id": sale.sale_code},
                )

            sale.status = SALE_STATUS_ANNULLED
            sale.annulled_at = utcnow()
            session.flush()

            try:
                decoded = decode_snapshot(sale.items_snapshot)
            except SnapshotFormatError as exc:
                logger.error("Sale %s has an unreadable line-item snapshot: %s", sale.sale_code, exc)
                raise SaleSnapshotError(
                    f"Sale {sale.sale_code} line items are corrupt; annulment aborted",
                    details={"sale_id": sale.sale_code, "reason": str(exc)},
                ) from exc

            result = AnnulmentResult(sale=sale)
            for rejected in decoded.rejected:
                logger.warning(
                    "Sale %s: skipping line item %d while restoring stock (%s)",
                    sale.sale_code, rejected.index, rejected.reason,
                )
                result.skipped.append(rejected.to_dict())

            for item in decoded.items:
                if stock_ledger.increment(item.product_id, item.quantity, session=session):
                    result.restored.append({"product_id": item.product_id, "quantity": item.quantity})
                    continue
                logger.warning(
                    "Sale %s: product %d no longer exists, %d unit(s) not restored",
                    sale.sale_code, item.product_id, item.quantity,
                )
                result.skipped.append({"product_id": item.product_id, "reason": "product not found"})
        return result

    result = _run_unit(_op, session)
    logger.info(
        "Sale %s annulled by %s; %d line(s) restored",
        result.sale.sale_code, actor or "unknown operator", result.restored_count,
    )
    return result


# =============================================================================
# Queries
# =============================================================================

def list_sales(session=None, status: str | None = None, limit: int | None = None) -> list[Sale]:
    """All sales, newest first. Read-only; takes no locks."""
    session = session if session is not None else db.session
    query = session.query(Sale)
    if status:
        if status not in SALE_STATUSES:
            raise SaleValidationError(
                f"status must be one of {', '.join(SALE_STATUSES)}",
                details={"field": "status"},
            )
        query = query.filter(Sale.status == status)
    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_sale(sale_ref: int | str, session=None) -> Sale | None:
    session = session if session is not None else db.session
    return _sale_query(session, sale_ref).first()
