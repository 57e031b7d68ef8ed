# Overview: Service-layer operations for expenses; plain CRUD with no stock linkage.

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Expense
from ..validation import NotFoundError
from .concurrency import atomic


def list_expenses(limit: int | None = None) -> list[dict]:
    limit = limit or current_app.config["LIST_LIMIT_EXPENSES"]
    expenses = (
        db.session.query(Expense)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .limit(limit)
        .all()
    )
    return [e.to_dict() for e in expenses]


def create_expense(*, amount: Decimal, description: str) -> dict:
    with atomic():
        expense = Expense(amount=amount, description=description)
        db.session.add(expense)
    return expense.to_dict()


def update_expense(*, expense_id: int, patch: dict) -> dict:
    with atomic():
        expense = db.session.get(Expense, expense_id)
        if expense is None:
            raise NotFoundError("Expense not found")
        for field in ("amount", "description"):
            if field in patch:
                setattr(expense, field, patch[field])
    return expense.to_dict()


def delete_expense(*, expense_id: int) -> None:
    with atomic():
        expense = db.session.get(Expense, expense_id)
        if expense is None:
            raise NotFoundError("Expense not found")
        db.session.delete(expense)
