"""
Snapshot (de)serialization tests.

Verifies:
- Round trip of what the engine writes
- Historical key spellings and native (already-decoded) values are accepted
- Malformed entries are rejected individually
- Unreadable snapshots raise SnapshotFormatError
"""

import json

import pytest

from storepos.services.sale_snapshot import (
    LineItem,
    SnapshotFormatError,
    decode_snapshot,
    encode_snapshot,
)


def test_encoded_snapshot_decodes_to_same_items():
    items = [
        LineItem(product_id=1, name="Mate", quantity=2, unit_price_cents=1500, unit_cost_cents=900),
        LineItem(product_id=7, name="Yerba", quantity=1, unit_price_cents=3200, unit_cost_cents=None),
    ]

    decoded = decode_snapshot(encode_snapshot(items))

    assert decoded.items == items
    assert decoded.rejected == []


def test_encoded_snapshot_is_compact_json_list():
    raw = encode_snapshot([LineItem(product_id=1, name="Café", quantity=1, unit_price_cents=100)])

    assert raw.startswith("[{")
    assert "Café" in raw
    assert json.loads(raw)[0]["product_id"] == 1


def test_native_list_is_accepted():
    decoded = decode_snapshot([{"product_id": 3, "quantity": 4, "unit_price_cents": 250}])

    assert decoded.items == [LineItem(product_id=3, name="", quantity=4, unit_price_cents=250)]


def test_bytes_are_accepted():
    decoded = decode_snapshot(b'[{"product_id": 3, "quantity": 1}]')

    assert [i.product_id for i in decoded.items] == [3]


def test_legacy_key_spellings_are_mapped():
    raw = json.dumps([
        {"productId": 5, "Nombre": "Termo", "cantidad": "2", "precio": 4500, "Precio (Compra)": 3000},
    ])

    item = decode_snapshot(raw).items[0]

    assert item.product_id == 5
    assert item.name == "Termo"
    assert item.quantity == 2
    assert item.unit_price_cents == 4500
    assert item.unit_cost_cents == 3000
    assert item.line_total_cents == 9000


@pytest.mark.parametrize(
    "entry,reason_fragment",
    [
        ({"quantity": 1}, "missing product reference"),
        ({"product_id": "abc", "quantity": 1}, "invalid product reference"),
        ({"product_id": 0, "quantity": 1}, "invalid product reference"),
        ({"product_id": 1, "quantity": "lots"}, "non-numeric quantity"),
        ({"product_id": 1, "quantity": 1.5}, "non-numeric quantity"),
        ({"product_id": 1}, "non-numeric quantity"),
        ({"product_id": 1, "quantity": 0}, "non-positive quantity"),
        ({"product_id": 1, "quantity": -2}, "non-positive quantity"),
        ({"product_id": 1, "quantity": "--1"}, "non-numeric quantity"),
        ({"product_id": 1, "quantity": "\u00b2"}, "non-numeric quantity"),
        ({"product_id": 1, "quantity": "1e3"}, "non-numeric quantity"),
        ({"product_id": 1, "quantity": 10**12}, "out of range"),
        ({"product_id": "--3", "quantity": 1}, "invalid product reference"),
        ({"product_id": 10**20, "quantity": 1}, "invalid product reference"),
        ("just a string", "not an object"),
    ],
)
def test_malformed_entries_are_rejected_individually(entry, reason_fragment):
    decoded = decode_snapshot([{"product_id": 9, "quantity": 1}, entry])

    assert [i.product_id for i in decoded.items] == [9]
    assert len(decoded.rejected) == 1
    assert decoded.rejected[0].index == 1
    assert reason_fragment in decoded.rejected[0].reason


def test_bad_price_does_not_hide_valid_line():
    decoded = decode_snapshot([{"product_id": 2, "quantity": 1, "unit_price_cents": "n/a"}])

    assert decoded.items[0].unit_price_cents == 0
    assert decoded.rejected == []


@pytest.mark.parametrize("bad", ["--5", "\u00b2", 10**20, -300])
def test_out_of_range_prices_are_blanked(bad):
    decoded = decode_snapshot(json.dumps([
        {"product_id": 2, "quantity": 1, "unit_price_cents": bad, "unit_cost_cents": bad},
    ]))

    assert decoded.items[0].unit_price_cents == 0
    assert decoded.items[0].unit_cost_cents is None
    assert decoded.rejected == []


@pytest.mark.parametrize(
    "raw",
    ["this is not json", "", '{"product_id": 1}', "42", None, b"\xff\xfe", 12],
)
def test_unreadable_snapshot_raises(raw):
    with pytest.raises(SnapshotFormatError):
        decode_snapshot(raw)


def test_empty_list_is_valid():
    decoded = decode_snapshot("[]")

    assert decoded.items == []
    assert decoded.rejected == []
