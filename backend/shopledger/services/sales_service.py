"""
Sales Service - sale records linked to stock consumption

WHY: A sale that consumes products must move stock in the same unit of work as
the sale itself. Creation books one OUT per item; deletion books one IN per item.
Either the whole sale (with every item and movement) commits or nothing does.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Sale, SaleItem
from ..validation import NotFoundError
from .concurrency import atomic, lock_for_update, lock_products
from .stock_service import InsufficientStockError, apply_movement


def _sale_query():
    return db.session.query(Sale).options(
        selectinload(Sale.items).selectinload(SaleItem.product)
    )


def list_sales(limit: int | None = None) -> list[dict]:
    limit = limit or current_app.config["LIST_LIMIT_SALES"]
    sales = (
        _sale_query()
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )
    return [s.to_dict() for s in sales]


def get_sale(sale_id: int) -> dict:
    sale = _sale_query().filter(Sale.id == sale_id).first()
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale.to_dict()


def _check_items_available(items: list[tuple[int, Decimal]], locked: dict) -> None:
    """
    Validate every item before anything is written.

    Quantities for the same product are summed, so two lines of 10 against a
    stock of 15 fail here rather than halfway through the sale.
    """
    totals: dict[int, Decimal] = defaultdict(Decimal)
    for product_id, qty in items:
        totals[product_id] += qty

    for product_id, qty in totals.items():
        product = locked.get(product_id)
        if product is None:
            raise NotFoundError(f"Product not found (ID {product_id})")
        if Decimal(product.qty or 0) - qty < 0:
            raise InsufficientStockError(product, qty)


def create_sale(
    *,
    amount: Decimal,
    description: str,
    items: list[tuple[int, Decimal]],
) -> dict:
    """Create a sale and stock out every consumed product, all-or-nothing."""
    with atomic():
        locked = lock_products(pid for pid, _ in items)
        _check_items_available(items, locked)

        sale = Sale(amount=amount, description=description)
        db.session.add(sale)
        db.session.flush()

        for product_id, qty in items:
            sale.items.append(SaleItem(product_id=product_id, qty_used=qty))
            apply_movement(locked[product_id], "OUT", qty, f"Auto OUT for Sale #{sale.id}")

    return get_sale(sale.id)


def update_sale(*, sale_id: int, patch: dict) -> dict:
    """Metadata only (amount, description). Items and stock are never touched."""
    with atomic():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found")
        for field in ("amount", "description"):
            if field in patch:
                setattr(sale, field, patch[field])
    return get_sale(sale_id)


def delete_sale(*, sale_id: int) -> None:
    """
    Delete a sale and put back every product it consumed.

    Reversal needs no upper-bound check: each IN restores exactly what the
    matching OUT removed.
    """
    with atomic():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found")

        items = list(sale.items)
        locked = lock_products(item.product_id for item in items)
        for item in items:
            apply_movement(
                locked[item.product_id],
                "IN",
                Decimal(item.qty_used),
                f"Revert IN for deleted Sale #{sale.id}",
            )

        db.session.delete(sale)
