"""
Expenses, period reports, CSV exports and the health endpoint.
"""

import csv
import io
from datetime import datetime

import pytest

from shopledger.models import Expense, Sale
from shopledger.periods import parse_period, period_start
from shopledger.services import reporting_service


def test_expense_crud(client):
    res = client.post("/api/finance/expenses", json={"amount": 1500, "description": "Fuel"})
    assert res.status_code == 201
    expense = res.get_json()
    assert expense["amount"] == 1500
    assert expense["description"] == "Fuel"

    res = client.put(f"/api/finance/expenses/{expense['id']}", json={"amount": 1750.5, "description": "Fuel + oil"})
    assert res.status_code == 200
    assert res.get_json()["amount"] == 1750.5

    listed = client.get("/api/finance/expenses").get_json()
    assert [e["id"] for e in listed] == [expense["id"]]

    assert client.delete(f"/api/finance/expenses/{expense['id']}").status_code == 200
    assert client.get("/api/finance/expenses").get_json() == []
    assert client.delete(f"/api/finance/expenses/{expense['id']}").status_code == 404


@pytest.mark.parametrize("payload", [
    {"amount": 0, "description": "Fuel"},
    {"amount": -5, "description": "Fuel"},
    {"amount": 5, "description": ""},
    {"description": "Fuel"},
    {"amount": 5, "description": "Fuel", "category": "car"},
])
def test_expense_validation(client, payload):
    res = client.post("/api/finance/expenses", json=payload)
    assert res.status_code == 400
    assert isinstance(res.get_json()["error"], str)


def test_report_totals(client):
    client.post("/api/finance/sales", json={"amount": 5000, "description": "Lunch combo"})
    client.post("/api/finance/sales", json={"amount": 250.5, "description": "Drinks"})
    client.post("/api/finance/expenses", json={"amount": 1500, "description": "Fuel"})

    res = client.get("/api/finance/report?period=daily")
    assert res.status_code == 200
    report = res.get_json()
    assert report["period"] == "daily"
    assert report["from"].endswith("T00:00:00Z")
    assert report["totals"] == {"totalSales": 5250.5, "totalExpenses": 1500, "profit": 3750.5}


def test_report_defaults_to_monthly_and_rejects_unknown(client):
    res = client.get("/api/finance/report")
    assert res.status_code == 200
    assert res.get_json()["period"] == "monthly"

    res = client.get("/api/finance/report?period=hourly")
    assert res.status_code == 400
    assert "period must be one of" in res.get_json()["error"]


def test_report_excludes_records_before_period_start(db_session):
    now = datetime(2026, 3, 15, 12, 0, 0)
    db_session.add(Sale(amount=100, description="old", created_at=datetime(2026, 2, 28, 23, 59)))
    db_session.add(Sale(amount=40, description="new", created_at=datetime(2026, 3, 1, 0, 0)))
    db_session.add(Expense(amount=10, description="new", created_at=datetime(2026, 3, 10)))
    db_session.commit()

    report = reporting_service.finance_report(period="monthly", now=now)
    assert report["from"] == "2026-03-01T00:00:00Z"
    assert report["totals"] == {"totalSales": 40, "totalExpenses": 10, "profit": 30}


def test_period_starts():
    now = datetime(2026, 3, 15, 12, 30, 0)
    assert period_start("daily", now) == datetime(2026, 3, 15)
    assert period_start("weekly", now) == datetime(2026, 3, 8, 12, 30)
    assert period_start("monthly", now) == datetime(2026, 3, 1)
    assert period_start("yearly", now) == datetime(2026, 1, 1)
    assert parse_period(None) == "monthly"
    assert parse_period(" Weekly ") == "weekly"
    with pytest.raises(ValueError):
        parse_period("fortnightly")


def test_finance_csv_export(client, make_product):
    ice = make_product("Ice", initial_qty=20)
    client.post("/api/finance/sales", json={
        "amount": 5000,
        "description": "Lunch combo",
        "items": [{"product_id": ice["id"], "qty_used": 10}],
    })
    client.post("/api/finance/expenses", json={"amount": 1500, "description": "Fuel"})

    res = client.get("/api/finance/export/finance.csv?period=monthly")
    assert res.status_code == 200
    assert res.mimetype == "text/csv"
    assert "finance-monthly.csv" in res.headers["Content-Disposition"]

    rows = list(csv.reader(io.StringIO(res.get_data(as_text=True))))
    assert ["5000", "1500", "3500"] in rows
    sale_row = next(r for r in rows if r and r[0] == "Sale")
    assert sale_row[2] == "Lunch combo"
    assert sale_row[3] == "Ice x10"
    assert any(r and r[0] == "Expense" and r[2] == "Fuel" for r in rows)


def test_finance_csv_rejects_unknown_period(client):
    assert client.get("/api/finance/export/finance.csv?period=never").status_code == 400


def test_inventory_csv_export(client, make_product):
    make_product("Ice", initial_qty=20, sku="ICE-01", unit="bags", reorder_level=5)

    res = client.get("/api/inventory/export/inventory.csv")
    assert res.status_code == 200
    rows = list(csv.reader(io.StringIO(res.get_data(as_text=True))))
    header = rows.index(["Name", "SKU", "Unit", "Qty", "Reorder Level", "Last Updated"])
    assert rows[header + 1][:5] == ["Ice", "ICE-01", "bags", "20", "5"]


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    body = res.get_json()
    assert body["ok"] is True
    assert body["database"]["status"] == "healthy"
    assert body["time"].endswith("Z")


def test_cors_headers_for_allowed_origin(client):
    res = client.get("/health", headers={"Origin": "http://localhost:5500"})
    assert res.headers["Access-Control-Allow-Origin"] == "http://localhost:5500"

    res = client.get("/health", headers={"Origin": "http://evil.example"})
    assert "Access-Control-Allow-Origin" not in res.headers


def test_unknown_route_returns_json_error(client):
    res = client.get("/api/finance/nothing-here")
    assert res.status_code == 404
    assert "error" in res.get_json()


@pytest.mark.parametrize("path", ["/api/finance/expenses", "/api/finance/sales"])
def test_amount_finer_than_cents_is_rejected(client, path):
    res = client.post(path, json={"amount": 0.001, "description": "x"})
    assert res.status_code == 400
    assert "decimal places" in res.get_json()["error"]

    res = client.post(path, json={"amount": 12.25, "description": "x"})
    assert res.status_code == 201
    assert res.get_json()["amount"] == 12.25
