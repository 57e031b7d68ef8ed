"""
Sale/stock linkage tests.

A sale stocks out every item atomically; deleting it puts every item back.
"""

from decimal import Decimal

from shopledger.models import Product, Sale, SaleItem, StockMovement
from shopledger.services import stock_service


def _qty(client, product_id):
    return client.get(f"/api/inventory/products/{product_id}").get_json()["qty"]


def test_lunch_combo_create_then_delete_restores_stock(client, make_product, db_session):
    ice = make_product("Ice", initial_qty=20)

    res = client.post("/api/finance/sales", json={
        "amount": 5000,
        "description": "Lunch combo",
        "items": [{"product_id": ice["id"], "qty_used": 10}],
    })
    assert res.status_code == 201
    sale = res.get_json()
    assert sale["amount"] == 5000
    assert sale["items"] == [{
        "product_id": ice["id"],
        "qty_used": 10,
        "product_name": "Ice",
        "product_unit": "pcs",
    }]
    assert _qty(client, ice["id"]) == 10

    outs = db_session.query(StockMovement).filter_by(product_id=ice["id"], type="OUT").all()
    assert len(outs) == 1
    assert outs[0].qty == Decimal("10")
    assert outs[0].note == f"Auto OUT for Sale #{sale['id']}"

    res = client.delete(f"/api/finance/sales/{sale['id']}")
    assert res.status_code == 200
    assert res.get_json() == {"ok": True}
    assert _qty(client, ice["id"]) == 20

    ins = (
        db_session.query(StockMovement)
        .filter_by(product_id=ice["id"], type="IN")
        .order_by(StockMovement.id.asc())
        .all()
    )
    assert [m.note for m in ins] == ["Initial stock", f"Revert IN for deleted Sale #{sale['id']}"]
    assert ins[-1].qty == Decimal("10")

    assert db_session.get(Sale, sale["id"]) is None
    assert db_session.query(SaleItem).filter_by(sale_id=sale["id"]).count() == 0
    assert stock_service.check_conservation() == []


def test_sale_is_all_or_nothing_when_one_item_is_short(client, make_product, db_session):
    ice = make_product("Ice", initial_qty=20)
    fish = make_product("Fish", initial_qty=2)

    res = client.post("/api/finance/sales", json={
        "amount": 100,
        "description": "Platter",
        "items": [
            {"product_id": ice["id"], "qty_used": 5},
            {"product_id": fish["id"], "qty_used": 3},
        ],
    })
    assert res.status_code == 409
    assert res.get_json()["details"]["product_id"] == fish["id"]

    assert _qty(client, ice["id"]) == 20
    assert _qty(client, fish["id"]) == 2
    assert db_session.query(Sale).count() == 0
    assert db_session.query(StockMovement).filter_by(type="OUT").count() == 0


def test_sale_with_unknown_product_is_rejected_whole(client, make_product, db_session):
    ice = make_product("Ice", initial_qty=20)

    res = client.post("/api/finance/sales", json={
        "amount": 100,
        "description": "Ghost",
        "items": [
            {"product_id": ice["id"], "qty_used": 1},
            {"product_id": 987654, "qty_used": 1},
        ],
    })
    assert res.status_code == 404
    assert res.get_json()["error"] == "Product not found (ID 987654)"
    assert _qty(client, ice["id"]) == 20
    assert db_session.query(Sale).count() == 0


def test_repeated_product_lines_are_checked_against_total(client, make_product):
    ice = make_product("Ice", initial_qty=15)

    res = client.post("/api/finance/sales", json={
        "amount": 30,
        "description": "Two bags twice",
        "items": [
            {"product_id": ice["id"], "qty_used": 10},
            {"product_id": ice["id"], "qty_used": 10},
        ],
    })
    assert res.status_code == 409
    assert _qty(client, ice["id"]) == 15


def test_sale_without_items_touches_no_stock(client, make_product, db_session):
    make_product("Ice", initial_qty=5)
    res = client.post("/api/finance/sales", json={"amount": 12.5, "description": "Service fee"})
    assert res.status_code == 201
    assert res.get_json()["items"] == []
    assert db_session.query(StockMovement).filter_by(type="OUT").count() == 0


def test_update_sale_changes_metadata_only(client, make_product):
    ice = make_product("Ice", initial_qty=20)
    sale = client.post("/api/finance/sales", json={
        "amount": 50,
        "description": "Bags",
        "items": [{"product_id": ice["id"], "qty_used": 4}],
    }).get_json()

    res = client.put(f"/api/finance/sales/{sale['id']}", json={"amount": 60, "description": "Bags (corrected)"})
    assert res.status_code == 200
    updated = res.get_json()
    assert updated["amount"] == 60
    assert updated["description"] == "Bags (corrected)"
    assert updated["items"][0]["qty_used"] == 4
    assert _qty(client, ice["id"]) == 16


def test_update_sale_rejects_items_field(client):
    sale = client.post("/api/finance/sales", json={"amount": 5, "description": "x"}).get_json()
    res = client.put(f"/api/finance/sales/{sale['id']}", json={
        "amount": 5, "description": "x", "items": [],
    })
    assert res.status_code == 400


def test_sale_validation(client):
    assert client.post("/api/finance/sales", json={"amount": 0, "description": "x"}).status_code == 400
    assert client.post("/api/finance/sales", json={"amount": 10, "description": "  "}).status_code == 400
    assert client.post("/api/finance/sales", json={"amount": 10}).status_code == 400
    res = client.post("/api/finance/sales", json={
        "amount": 10, "description": "x", "items": [{"product_id": 1, "qty_used": 0}],
    })
    assert res.status_code == 400


def test_delete_missing_sale_is_404(client):
    res = client.delete("/api/finance/sales/31337")
    assert res.status_code == 404
    assert res.get_json() == {"error": "Sale not found"}


def test_product_used_by_sale_cannot_be_deleted(client, make_product, db_session):
    ice = make_product("Ice", initial_qty=20)
    sale = client.post("/api/finance/sales", json={
        "amount": 10,
        "description": "Bag",
        "items": [{"product_id": ice["id"], "qty_used": 1}],
    }).get_json()

    res = client.delete(f"/api/inventory/products/{ice['id']}")
    assert res.status_code == 409
    assert db_session.get(Product, ice["id"]) is not None

    client.delete(f"/api/finance/sales/{sale['id']}")
    res = client.delete(f"/api/inventory/products/{ice['id']}")
    assert res.status_code == 200
    assert db_session.query(StockMovement).filter_by(product_id=ice["id"]).count() == 0


def test_product_update_never_touches_qty(client, make_product):
    ice = make_product("Ice", initial_qty=7)

    res = client.put(f"/api/inventory/products/{ice['id']}", json={"name": "Ice", "qty": 100})
    assert res.status_code == 400

    res = client.put(f"/api/inventory/products/{ice['id']}", json={"name": "Crushed ice", "unit": ""})
    assert res.status_code == 200
    body = res.get_json()
    assert body["name"] == "Crushed ice"
    assert body["unit"] == "pcs"
    assert body["qty"] == 7


def test_product_validation(client):
    assert client.post("/api/inventory/products", json={"sku": "X"}).status_code == 400
    assert client.post("/api/inventory/products", json={"name": "A", "initial_qty": -1}).status_code == 400
    assert client.post("/api/inventory/products", json={"name": "A", "reorder_level": -1}).status_code == 400
    assert client.put("/api/inventory/products/555555", json={"name": "A"}).status_code == 404
    assert client.delete("/api/inventory/products/555555").status_code == 404


def test_products_list(client, make_product):
    make_product("Ice", initial_qty=1)
    make_product("Fish", initial_qty=2)
    names = {p["name"] for p in client.get("/api/inventory/products").get_json()}
    assert names == {"Ice", "Fish"}
