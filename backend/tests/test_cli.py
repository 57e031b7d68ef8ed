from decimal import Decimal

from shopledger.models import Product


def test_ledger_check_passes_on_consistent_ledger(app, make_product, client):
    ice = make_product("Ice", initial_qty=20)
    client.post(f"/api/inventory/products/{ice['id']}/move", json={"type": "OUT", "qty": 5})

    result = app.test_cli_runner().invoke(args=["ledger", "check"])
    assert result.exit_code == 0, result.output
    assert "PASS Ledger consistent for 1 product(s)." in result.output


def test_ledger_check_fails_on_drift(app, make_product, db_session):
    ice = make_product("Ice", initial_qty=20)
    # bypass the ledger on purpose
    db_session.query(Product).filter_by(id=ice["id"]).update({"qty": Decimal("99")})
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["ledger", "check"])
    assert result.exit_code == 1
    assert f"FAIL product {ice['id']} (Ice)" in result.output


def test_ledger_movements_and_low_stock(app, make_product, client):
    ice = make_product("Ice", initial_qty=3, reorder_level=5)
    make_product("Fish", initial_qty=50, reorder_level=5)
    client.post(f"/api/inventory/products/{ice['id']}/move", json={"type": "IN", "qty": 1, "note": "top up"})

    runner = app.test_cli_runner()
    result = runner.invoke(args=["ledger", "movements", "--product-id", str(ice["id"])])
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert "top up" in lines[0]
    assert "Initial stock" in lines[1]

    result = runner.invoke(args=["ledger", "low-stock"])
    assert result.exit_code == 0
    assert "Ice" in result.output
    assert "Fish" not in result.output


def test_ledger_movements_unknown_product(app, db_session):
    result = app.test_cli_runner().invoke(args=["ledger", "movements", "--product-id", "8080"])
    assert result.exit_code != 0
    assert "Product not found" in result.output


def test_seed_demo_is_idempotent(app, db_session):
    runner = app.test_cli_runner()
    first = runner.invoke(args=["system", "seed-demo"])
    assert first.exit_code == 0, first.output
    second = runner.invoke(args=["system", "seed-demo"])
    assert "SKIP" in second.output

    assert db_session.query(Product).count() == 2
    ice = db_session.query(Product).filter_by(sku="ICE-01").one()
    assert ice.qty == Decimal("50")
