from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

PHOTO_SLOTS = 8


class Product(db.Model):
    """
    Product master data and the authoritative quantity-on-hand counter.

    SKU is the business key (unique, editable). Sales reference products by
    the durable ``id`` so a SKU edit never orphans sale history.

    STOCK: ``stock`` is mutated by sales/annulments only through the guarded
    statements in services/stock_ledger.py. The CHECK constraint is a
    backstop; the guard never lets the counter go below zero.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonnegative"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_barcode", "barcode"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    sale_price_cents = db.Column(db.Integer, nullable=True)
    discount_price_cents = db.Column(db.Integer, nullable=True)
    purchase_price_cents = db.Column(db.Integer, nullable=True)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)

    category = db.Column(db.String(120), nullable=True)
    brand = db.Column(db.String(120), nullable=True)
    barcode = db.Column(db.String(64), nullable=True)
    # Branch / city the product is stocked at
    branch = db.Column(db.String(120), nullable=True)

    photo_url_1 = db.Column(db.String(512), nullable=True)
    photo_url_2 = db.Column(db.String(512), nullable=True)
    photo_url_3 = db.Column(db.String(512), nullable=True)
    photo_url_4 = db.Column(db.String(512), nullable=True)
    photo_url_5 = db.Column(db.String(512), nullable=True)
    photo_url_6 = db.Column(db.String(512), nullable=True)
    photo_url_7 = db.Column(db.String(512), nullable=True)
    photo_url_8 = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    @property
    def photo_urls(self) -> list[str]:
        urls = (getattr(self, f"photo_url_{i}") for i in range(1, PHOTO_SLOTS + 1))
        return [u for u in urls if u]

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "sale_price_cents": self.sale_price_cents,
            "discount_price_cents": self.discount_price_cents,
            "purchase_price_cents": self.purchase_price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "stock": self.stock,
            "category": self.category,
            "brand": self.brand,
            "barcode": self.barcode,
            "branch": self.branch,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        for i in range(1, PHOTO_SLOTS + 1):
            key = f"photo_url_{i}"
            data[key] = getattr(self, key)
        return data
