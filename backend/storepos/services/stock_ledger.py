# Overview: Guarded stock counter adjustments; the only write path sales use on products.stock.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Product


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"quantity must be a positive integer, got {quantity!r}")


def decrement_if_sufficient(product_id: int, quantity: int, session=None) -> bool:
    """
    Subtract ``quantity`` from a product's stock only if enough is on hand.

    The sufficiency check is the WHERE clause of the UPDATE itself, so two
    concurrent sales of the last unit cannot both succeed. Returns False when
    no row was updated (insufficient stock or unknown product).
    """
    _check_quantity(quantity)
    session = session if session is not None else db.session
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return result.rowcount == 1


def increment(product_id: int, quantity: int, session=None) -> bool:
    """
    Add ``quantity`` back to a product's stock. Used by annulment only.

    No upper bound is enforced. Returns False when the product row no longer
    exists.
    """
    _check_quantity(quantity)
    session = session if session is not None else db.session
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return result.rowcount == 1


def quantity_on_hand(product_id: int, session=None) -> int | None:
    """Current stock as seen inside the caller's transaction (None for unknown products)."""
    session = session if session is not None else db.session
    return session.query(Product.stock).filter(Product.id == product_id).scalar()
