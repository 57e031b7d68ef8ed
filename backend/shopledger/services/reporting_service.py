# Overview: Read-side aggregation over sales and expenses for a reporting period.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from shopledger.extensions import db
from shopledger.models import Expense, Sale
from shopledger.numeric import to_json_number
from shopledger.periods import parse_period, period_start
from shopledger.time_utils import to_utc_z


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _resolve_period(period: str | None) -> str:
    try:
        return parse_period(period)
    except ValueError as exc:
        raise ReportError(str(exc)) from exc


def _sum_since(model, since: datetime) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(model.amount), 0))
        .filter(model.created_at >= since)
        .scalar()
    )
    return Decimal(str(total or 0)).quantize(Decimal("0.01"))


def finance_report(*, period: str | None, now: datetime | None = None) -> dict:
    """Totals of sales, expenses and profit from the start of `period` until now."""
    period = _resolve_period(period)
    since = period_start(period, now)

    total_sales = _sum_since(Sale, since)
    total_expenses = _sum_since(Expense, since)

    return {
        "period": period,
        "from": to_utc_z(since),
        "totals": {
            "totalSales": to_json_number(total_sales),
            "totalExpenses": to_json_number(total_expenses),
            "profit": to_json_number(total_sales - total_expenses),
        },
    }
