# Overview: CSV renderings of the finance report and the inventory list.

from __future__ import annotations

import csv
import io
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import selectinload

from shopledger.extensions import db
from shopledger.models import Expense, Product, Sale, SaleItem
from shopledger.numeric import to_json_number
from shopledger.periods import period_start
from shopledger.time_utils import to_utc_z, utcnow
from .reporting_service import finance_report


def _products_used(sale: Sale) -> str:
    return "; ".join(
        f"{item.product.name if item.product else ''} x{to_json_number(item.qty_used)}"
        for item in sale.items
    )


def finance_csv(*, period: str | None, now: datetime | None = None) -> tuple[str, str]:
    """Return (filename, csv text) for the finance report of `period`."""
    now = now or utcnow()
    report = finance_report(period=period, now=now)
    period = report["period"]
    totals = report["totals"]
    since = period_start(period, now)

    sales = (
        db.session.query(Sale)
        .options(selectinload(Sale.items).selectinload(SaleItem.product))
        .filter(Sale.created_at >= since)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )
    expenses = (
        db.session.query(Expense)
        .filter(Expense.created_at >= since)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .all()
    )

    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(["BUSINESS REPORT"])
    w.writerow(["Report Type:", period.upper()])
    w.writerow(["Generated On:", to_utc_z(now)])
    w.writerow([])
    w.writerow(["SUMMARY"])
    w.writerow(["Total Sales", "Total Expenses", "Profit"])
    w.writerow([totals["totalSales"], totals["totalExpenses"], totals["profit"]])
    w.writerow([])
    w.writerow(["DETAILED RECORDS"])
    w.writerow(["Type", "Amount", "Description", "Products Used", "Date"])
    for sale in sales:
        w.writerow([
            "Sale",
            to_json_number(sale.amount),
            sale.description,
            _products_used(sale),
            to_utc_z(sale.created_at),
        ])
    for expense in expenses:
        w.writerow([
            "Expense",
            to_json_number(expense.amount),
            expense.description,
            "",
            to_utc_z(expense.created_at),
        ])

    return f"finance-{period}.csv", buf.getvalue()


def inventory_csv(*, now: datetime | None = None) -> tuple[str, str]:
    now = now or utcnow()
    products = db.session.query(Product).order_by(Product.name.asc(), Product.id.asc()).all()

    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(["INVENTORY REPORT"])
    w.writerow(["Generated On:", to_utc_z(now)])
    w.writerow([])
    w.writerow(["Name", "SKU", "Unit", "Qty", "Reorder Level", "Last Updated"])
    for p in products:
        w.writerow([
            p.name,
            p.sku or "",
            p.unit or "",
            to_json_number(Decimal(p.qty or 0)),
            to_json_number(Decimal(p.reorder_level or 0)),
            to_utc_z(p.updated_at),
        ])

    return f"inventory-{now.date().isoformat()}.csv", buf.getvalue()
