# backend/shopledger/services/products_service.py
"""
Products Service

Product metadata is plain CRUD; quantity is not. qty only changes through the
stock ledger, including the optional initial quantity on create, which is a
synthetic IN movement in the same unit of work as the insert.
"""
from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Product, SaleItem
from ..validation import ConflictError, NotFoundError
from shopledger.time_utils import utcnow
from .concurrency import atomic, lock_for_update
from .stock_service import apply_movement

PRODUCT_MUTABLE_FIELDS = {"name", "sku", "unit", "reorder_level"}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def list_products(limit: int | None = None) -> list[dict]:
    limit = limit or current_app.config["LIST_LIMIT_PRODUCTS"]
    products = (
        db.session.query(Product)
        .order_by(Product.updated_at.desc(), Product.id.desc())
        .limit(limit)
        .all()
    )
    return [p.to_dict() for p in products]


def get_product(product_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product.to_dict()


def create_product(*, patch: dict, initial_qty: Decimal = Decimal("0")) -> dict:
    """
    Create product using a validated patch dict.

    initial_qty > 0 is booked as an "Initial stock" IN movement, so the
    conservation invariant holds from the product's first moment.
    """
    with atomic():
        p = Product(qty=Decimal("0"))
        apply_product_patch(p, patch)
        p.unit = p.unit or "pcs"
        p.sku = p.sku or ""
        db.session.add(p)
        db.session.flush()  # ensure p.id exists before the ledger entry

        if initial_qty > 0:
            apply_movement(p, "IN", initial_qty, "Initial stock")

    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict:
    with atomic():
        p = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if p is None:
            raise NotFoundError("Product not found")
        apply_product_patch(p, patch)
        p.updated_at = utcnow()
    return p.to_dict()


def delete_product(*, product_id: int) -> None:
    """
    Delete a product together with its movement history.

    Rejected while a sale still references it: deleting that sale must be able
    to put the stock back.
    """
    with atomic():
        p = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if p is None:
            raise NotFoundError("Product not found")

        in_use = db.session.query(SaleItem.id).filter_by(product_id=product_id).first()
        if in_use is not None:
            raise ConflictError("Product is used by existing sales")

        db.session.delete(p)
