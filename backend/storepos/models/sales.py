from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from ..services.sale_snapshot import decode_snapshot, SnapshotFormatError

SALE_STATUS_COMPLETED = "Completed"
SALE_STATUS_ANNULLED = "Annulled"
SALE_STATUSES = (SALE_STATUS_COMPLETED, SALE_STATUS_ANNULLED)


class Sale(db.Model):
    """
    Sale record with an embedded, immutable line-item snapshot.

    LIFECYCLE: inserted as Completed by sales_service.record_sale; flipped to
    Annulled at most once by sales_service.annul_sale. Never deleted, and
    ``items_snapshot`` is never rewritten after the insert.

    The snapshot is JSON text written by services/sale_snapshot.py. Older rows
    may hold other key spellings or a native JSON value; everything that reads
    it goes through ``decode_snapshot``.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_code", name="uq_sales_sale_code"),
        db.CheckConstraint("status IN ('Completed', 'Annulled')", name="ck_sales_status"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable code (e.g., "AS42")
    sale_code = db.Column(db.String(50), nullable=False)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_contact = db.Column(db.String(100), nullable=True)
    customer_tax_id = db.Column(db.String(100), nullable=True)

    total_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        index=True,
    )
    annulled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Operator attribution (whoever rang the sale up)
    operator_id = db.Column(db.String(64), nullable=False)
    operator_name = db.Column(db.String(255), nullable=True)

    items_snapshot = db.Column(db.Text, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} code={self.sale_code!r} status={self.status}>"

    @property
    def is_annulled(self) -> bool:
        return self.status == SALE_STATUS_ANNULLED

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "sale_code": self.sale_code,
            "customer_name": self.customer_name,
            "customer_contact": self.customer_contact,
            "customer_tax_id": self.customer_tax_id,
            "total_cents": self.total_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "annulled_at": to_utc_z(self.annulled_at) if self.annulled_at else None,
            "operator_id": self.operator_id,
            "operator_name": self.operator_name,
            "version_id": self.version_id,
        }
        try:
            decoded = decode_snapshot(self.items_snapshot)
        except SnapshotFormatError as exc:
            # Listing must survive one bad historical row
            data["items"] = []
            data["snapshot_error"] = str(exc)
            return data
        data["items"] = [item.to_dict() for item in decoded.items]
        if decoded.rejected:
            data["snapshot_error"] = f"{len(decoded.rejected)} malformed line item(s) hidden"
        return data
