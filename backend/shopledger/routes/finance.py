# Overview: Flask API routes for sales, expenses, reports and finance exports.

# backend/shopledger/routes/finance.py
"""
Finance routes.

Sales are linked to stock: creating one stocks out every item, deleting one
puts the stock back, editing one only touches amount/description.
Expenses are plain CRUD.
"""
from flask import Blueprint, Response, current_app, request

from ..models import Expense, Sale
from ..services import expenses_service, reporting_service, sales_service
from ..services.export_service import finance_csv
from . import conflict_response
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_money,
    parse_sale_items,
    ValidationError,
    ConflictError,
    NotFoundError,
)

MONEY_POLICY = ModelValidationPolicy(
    writable_fields={"amount", "description"},
    required_on_create={"amount", "description"},
)

finance_bp = Blueprint("finance", __name__, url_prefix="/api/finance")


def _validate_money(model, payload: dict) -> dict:
    patch = validate_payload(model=model, payload=payload, policy=MONEY_POLICY, partial=False)
    enforce_rules_money(patch)
    return patch


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------

@finance_bp.get("/sales")
def list_sales_route():
    """List sales (newest first) with their consumed items."""
    return sales_service.list_sales()


@finance_bp.get("/sales/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        return sales_service.get_sale(sale_id), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@finance_bp.post("/sales")
def create_sale_route():
    """
    Create a sale and stock out each item.

    Body: {"amount": > 0, "description": str, "items": [{"product_id", "qty_used"}]}
    Any invalid or out-of-stock item rejects the whole sale.
    """
    payload = dict(request.get_json(silent=True) or {})

    try:
        items = parse_sale_items(payload.pop("items", None))
        patch = _validate_money(Sale, payload)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        sale = sales_service.create_sale(
            amount=patch["amount"],
            description=patch["description"],
            items=items,
        )
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        current_app.logger.info("Rejected sale %r: %s", patch["description"], e)
        return conflict_response(e)

    return sale, 201


@finance_bp.put("/sales/<int:sale_id>")
def update_sale_route(sale_id: int):
    """Update amount/description only; items and stock are left alone."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = _validate_money(Sale, payload)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        return sales_service.update_sale(sale_id=sale_id, patch=patch), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@finance_bp.delete("/sales/<int:sale_id>")
def delete_sale_route(sale_id: int):
    """Delete a sale and reverse its stock movements."""
    try:
        sales_service.delete_sale(sale_id=sale_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"ok": True}, 200


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------

@finance_bp.get("/expenses")
def list_expenses_route():
    return expenses_service.list_expenses()


@finance_bp.post("/expenses")
def create_expense_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = _validate_money(Expense, payload)
    except ValidationError as e:
        return {"error": str(e)}, 400

    return expenses_service.create_expense(**patch), 201


@finance_bp.put("/expenses/<int:expense_id>")
def update_expense_route(expense_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = _validate_money(Expense, payload)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        return expenses_service.update_expense(expense_id=expense_id, patch=patch), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@finance_bp.delete("/expenses/<int:expense_id>")
def delete_expense_route(expense_id: int):
    try:
        expenses_service.delete_expense(expense_id=expense_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"ok": True}, 200


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@finance_bp.get("/report")
def report_route():
    """Totals for ?period=daily|weekly|monthly|yearly (default monthly)."""
    try:
        return reporting_service.finance_report(period=request.args.get("period")), 200
    except reporting_service.ReportError as exc:
        return {"error": str(exc)}, 400


@finance_bp.get("/export/finance.csv")
def export_finance_route():
    try:
        filename, body = finance_csv(period=request.args.get("period"))
    except reporting_service.ReportError as exc:
        return {"error": str(exc)}, 400

    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
