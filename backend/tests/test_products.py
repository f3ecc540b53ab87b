"""
Product catalog, operator login and health endpoint tests.
"""

import pytest

from storepos.models import Product
from storepos.services import auth_service, products_service
from storepos.validation import ValidationError


def _product(**overrides):
    body = {
        "sku": "YER-001",
        "name": "Yerba Mate 1kg",
        "sale_price_cents": 4500,
        "purchase_price_cents": 3000,
        "stock": 12,
        "category": "Almacén",
        "branch": "Centro",
    }
    body.update(overrides)
    return body


# =============================================================================
# CATALOG API
# =============================================================================


@pytest.mark.products
@pytest.mark.smoke
def test_create_and_fetch(client, db_session):
    resp = client.post("/api/products", json=_product(photo_url_1="https://img.example/yerba.jpg"))

    assert resp.status_code == 201
    created = resp.get_json()
    assert created["sku"] == "YER-001"
    assert created["stock"] == 12
    assert created["photo_url_1"] == "https://img.example/yerba.jpg"

    fetched = client.get(f"/api/products/{created['id']}").get_json()
    assert fetched["name"] == "Yerba Mate 1kg"


@pytest.mark.products
def test_duplicate_sku_returns_409(client, db_session):
    client.post("/api/products", json=_product())

    resp = client.post("/api/products", json=_product(name="Another"))

    assert resp.status_code == 409


@pytest.mark.products
@pytest.mark.parametrize(
    "payload",
    [
        {"name": "No SKU"},
        _product(stock=-1),
        _product(sale_price_cents=-5),
        _product(sale_price_cents=12.5),
        _product(unknown_field="x"),
        _product(name="   "),
        _product(stock=10**20),
        _product(stock="--3"),
        _product(sale_price_cents="\u00b2"),
    ],
)
def test_invalid_payload_returns_400(client, db_session, payload):
    resp = client.post("/api/products", json=payload)

    assert resp.status_code == 400
    assert "error" in resp.get_json()


@pytest.mark.products
def test_update_changes_only_given_fields(client, db_session):
    pid = client.post("/api/products", json=_product()).get_json()["id"]

    resp = client.put(f"/api/products/{pid}", json={"sku": "YER-001B", "stock": 30})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["sku"] == "YER-001B"
    assert body["stock"] == 30
    assert body["name"] == "Yerba Mate 1kg"


@pytest.mark.products
def test_update_to_taken_sku_returns_409(client, db_session):
    client.post("/api/products", json=_product())
    other = client.post("/api/products", json=_product(sku="YER-002")).get_json()["id"]

    resp = client.put(f"/api/products/{other}", json={"sku": "YER-001"})

    assert resp.status_code == 409


@pytest.mark.products
def test_sku_taken_by_concurrent_writer_returns_409(client, db_session, monkeypatch):
    client.post("/api/products", json=_product())
    # Another writer committed the SKU after the pre-check ran
    monkeypatch.setattr(products_service, "_sku_taken", lambda *args, **kwargs: False)

    created = client.post("/api/products", json=_product(name="Duplicate"))
    other = client.post("/api/products", json=_product(sku="YER-002")).get_json()["id"]
    renamed = client.put(f"/api/products/{other}", json={"sku": "YER-001"})

    assert created.status_code == 409
    assert renamed.status_code == 409
    assert db_session.query(Product).filter_by(sku="YER-001").count() == 1


def test_update_unknown_returns_404(client, db_session):
    assert client.put("/api/products/999", json={"stock": 1}).status_code == 404
    assert client.get("/api/products/999").status_code == 404


def test_list_is_ordered_and_paginated(client, db_session):
    for sku, name in (("C", "Cafe"), ("A", "Azucar"), ("B", "Bizcocho")):
        client.post("/api/products", json=_product(sku=sku, name=name))

    everything = client.get("/api/products").get_json()
    page = client.get("/api/products?page=2&per_page=2").get_json()

    assert [p["name"] for p in everything["items"]] == ["Azucar", "Bizcocho", "Cafe"]
    assert [p["name"] for p in page["items"]] == ["Cafe"]
    assert page["pagination"]["total"] == 3
    assert page["pagination"]["has_prev"] is True
    assert page["pagination"]["has_next"] is False


def test_sales_survive_sku_change(client, make_product, sell):
    pid = make_product(stock=5, sku="OLD-SKU")
    sale = sell({pid: 1})

    client.put(f"/api/products/{pid}", json={"sku": "NEW-SKU"})
    resp = client.put("/api/sales/annul", json={"saleId": sale.sale_code})

    assert resp.status_code == 200
    assert client.get(f"/api/products/{pid}").get_json()["stock"] == 5


# =============================================================================
# BATCH IMPORT
# =============================================================================


@pytest.mark.products
def test_batch_inserts_and_overwrites_by_sku(client, db_session):
    client.post("/api/products", json=_product(sku="KEEP", name="Old name", brand="Old brand", stock=3))

    resp = client.post("/api/products/batch", json={"products": [
        {"sku": "KEEP", "name": "New name", "sale_price_cents": "990", "stock": "7"},
        {"sku": "FRESH", "name": "Fresh product"},
    ]})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["message"] == "CSV import completed."
    assert (body["processed"], body["inserted"], body["updated"]) == (2, 1, 1)

    kept = db_session.query(Product).filter_by(sku="KEEP").one()
    assert kept.name == "New name"
    assert kept.sale_price_cents == 990
    assert kept.stock == 7
    # Overwrite semantics: columns absent from the row are cleared
    assert kept.brand is None

    fresh = db_session.query(Product).filter_by(sku="FRESH").one()
    assert fresh.stock == 0


def test_batch_repeated_sku_last_row_wins(db_session):
    summary = products_service.upsert_products([
        {"sku": "DUP", "name": "First"},
        {"sku": "DUP", "name": "Second"},
    ])

    assert summary == {"processed": 2, "inserted": 1, "updated": 0}
    assert db_session.query(Product).filter_by(sku="DUP").one().name == "Second"


def test_batch_bad_row_writes_nothing(client, db_session):
    resp = client.post("/api/products/batch", json={"products": [
        {"sku": "OK-1", "name": "Fine"},
        {"sku": "BAD", "name": "Broken", "stock": -4},
    ]})

    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("Row 2:")
    assert db_session.query(Product).count() == 0


@pytest.mark.parametrize("payload", [{}, {"products": []}, {"products": "nope"}])
def test_batch_without_rows_returns_400(client, db_session, payload):
    resp = client.post("/api/products/batch", json=payload)

    assert resp.status_code == 400


def test_upsert_requires_rows(db_session):
    with pytest.raises(ValidationError):
        products_service.upsert_products([])


# =============================================================================
# LOGIN
# =============================================================================


def test_login_returns_operator_identity(client, db_session):
    auth_service.create_user("cashier1", "correct horse", full_name="Ana Ruiz")

    resp = client.post("/api/auth/login", json={"username": "cashier1", "password": "correct horse"})

    assert resp.status_code == 200
    user = resp.get_json()["user"]
    assert user["username"] == "cashier1"
    assert user["full_name"] == "Ana Ruiz"
    assert user["role"] == "cashier"


def test_login_wrong_password_returns_401(client, db_session):
    auth_service.create_user("cashier1", "correct horse")

    resp = client.post("/api/auth/login", json={"username": "cashier1", "password": "wrong horse"})

    assert resp.status_code == 401


def test_login_missing_fields_returns_400(client, db_session):
    assert client.post("/api/auth/login", json={"username": "x"}).status_code == 400


def test_create_user_rejects_duplicates_and_short_passwords(db_session):
    auth_service.create_user("cashier1", "correct horse")

    with pytest.raises(ValueError):
        auth_service.create_user("cashier1", "another password")
    with pytest.raises(auth_service.PasswordValidationError):
        auth_service.create_user("cashier2", "short")


# =============================================================================
# HEALTH
# =============================================================================


@pytest.mark.smoke
def test_health(client, make_product, sell):
    pid = make_product(stock=5)
    sell({pid: 1})

    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["details"] == {"products": 1, "completed_sales": 1}
