# Overview: Encoding and tolerant decoding of the line-item snapshot stored on each sale.

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ..validation import MAX_DB_INTEGER, MAX_PRICE_CENTS, MAX_QUANTITY, parse_plain_int


class SnapshotFormatError(ValueError):
    """Raised when a stored snapshot cannot be read as a list of line items at all."""


# Historical rows use more than one spelling for the same field.
_KEY_ALIASES = {
    "product_id": ("product_id", "productId"),
    "name": ("name", "product_name", "Nombre"),
    "quantity": ("quantity", "cantidad"),
    "unit_price_cents": ("unit_price_cents", "unitPrice", "precio"),
    "unit_cost_cents": ("unit_cost_cents", "unitCost", "Precio (Compra)"),
}


@dataclass(frozen=True)
class LineItem:
    product_id: int
    name: str
    quantity: int
    unit_price_cents: int
    unit_cost_cents: int | None = None

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
        }


@dataclass
class RejectedEntry:
    index: int
    reason: str
    raw: Any = None

    def to_dict(self) -> dict:
        return {"index": self.index, "reason": self.reason}


@dataclass
class SnapshotDecodeResult:
    items: list[LineItem] = field(default_factory=list)
    rejected: list[RejectedEntry] = field(default_factory=list)


def encode_snapshot(items: list[LineItem]) -> str:
    """Serialize line items to the compact JSON text stored in sales.items_snapshot."""
    payload = [
        {
            "product_id": item.product_id,
            "name": item.name,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "unit_cost_cents": item.unit_cost_cents,
        }
        for item in items
    ]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _pick(entry: dict, canonical: str) -> Any:
    for key in _KEY_ALIASES[canonical]:
        if key in entry and entry[key] is not None:
            return entry[key]
    return None


def _as_int(value: Any) -> int | None:
    """Like parse_plain_int, but whole-valued floats from older JSON writers also count."""
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    return parse_plain_int(value)


def _in_range(value: int | None, upper: int) -> int | None:
    return value if value is not None and 0 <= value <= upper else None


def _parse_entry(index: int, entry: Any) -> LineItem | RejectedEntry:
    if not isinstance(entry, dict):
        return RejectedEntry(index, "line item is not an object", entry)

    raw_product = _pick(entry, "product_id")
    if raw_product is None:
        return RejectedEntry(index, "missing product reference", entry)
    product_id = _as_int(raw_product)
    if product_id is None or not 0 < product_id <= MAX_DB_INTEGER:
        return RejectedEntry(index, f"invalid product reference {raw_product!r}", entry)

    raw_quantity = _pick(entry, "quantity")
    quantity = _as_int(raw_quantity)
    if quantity is None:
        return RejectedEntry(index, f"non-numeric quantity {raw_quantity!r}", entry)
    if quantity <= 0:
        return RejectedEntry(index, f"non-positive quantity {quantity}", entry)
    if quantity > MAX_QUANTITY:
        return RejectedEntry(index, f"quantity {quantity} out of range", entry)

    # Prices are display data; a bad price never hides an otherwise valid line
    unit_price = _in_range(_as_int(_pick(entry, "unit_price_cents")), MAX_PRICE_CENTS)
    unit_cost = _in_range(_as_int(_pick(entry, "unit_cost_cents")), MAX_PRICE_CENTS)
    name = _pick(entry, "name")

    return LineItem(
        product_id=product_id,
        name=str(name) if name is not None else "",
        quantity=quantity,
        unit_price_cents=unit_price if unit_price is not None else 0,
        unit_cost_cents=unit_cost,
    )


def decode_snapshot(raw: Any) -> SnapshotDecodeResult:
    """
    Read a stored snapshot into line items.

    Accepts JSON text, bytes, or an already-decoded list (native JSON
    columns). Entries that are individually malformed are returned in
    ``rejected`` instead of failing the whole snapshot.

    Raises SnapshotFormatError when the value is not a list of entries at all.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SnapshotFormatError(f"snapshot is not valid UTF-8: {exc}") from exc

    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise SnapshotFormatError(f"snapshot is not valid JSON: {exc}") from exc
    elif raw is None:
        raise SnapshotFormatError("snapshot is empty")
    else:
        data = raw

    if not isinstance(data, list):
        raise SnapshotFormatError(f"snapshot must be a list of line items, got {type(data).__name__}")

    result = SnapshotDecodeResult()
    for index, entry in enumerate(data):
        parsed = _parse_entry(index, entry)
        if isinstance(parsed, LineItem):
            result.items.append(parsed)
        else:
            result.rejected.append(parsed)
    return result
