# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

# backend/shopledger/services/stock_service.py

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import case, func

from ..extensions import db
from ..models import Product, StockMovement
from ..validation import ConflictError, NotFoundError
from shopledger.time_utils import utcnow
from .concurrency import atomic, lock_products

# Numeric(14, 3) scale; SQLite keeps NUMERIC as REAL so sums are re-quantized
QTY_QUANT = Decimal("0.001")
"""
Stock Ledger Invariants (authoritative)

- Every change to Product.qty is explained by exactly one StockMovement row
  written in the same unit of work.
- Movements are append-only: type IN adds, type OUT subtracts, qty is always > 0.
- Conservation: Product.qty == SUM(IN) - SUM(OUT) for every product, at all times.
- Non-negativity: an OUT that would drive qty below zero is rejected and nothing
  is written.
- The current quantity is read under a row lock (lock_products) so concurrent
  OUTs on one product cannot both pass the check against a stale value.
"""


class InsufficientStockError(ConflictError):
    """Raised when an OUT movement would make on-hand quantity negative."""

    def __init__(self, product: Product, requested: Decimal):
        super().__init__(
            f"Insufficient stock for {product.name}",
            details={
                "product_id": product.id,
                "requested": str(requested),
                "available": str(product.qty),
            },
        )
        self.product_id = product.id
        self.requested = requested
        self.available = product.qty


def apply_movement(
    product: Product,
    movement_type: str,
    qty: Decimal,
    note: str | None = None,
) -> StockMovement:
    """
    Core movement logic without locking or commit.

    The caller must already hold the product's row lock and own the unit of work.
    """
    if movement_type not in ("IN", "OUT"):
        raise ValueError(f"unknown movement type {movement_type!r}")
    if qty <= 0:
        raise ValueError("movement qty must be > 0")

    current = Decimal(product.qty or 0)
    new_qty = current + qty if movement_type == "IN" else current - qty
    if new_qty < 0:
        raise InsufficientStockError(product, qty)

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        qty=qty,
        note=note or None,
    )
    db.session.add(movement)

    product.qty = new_qty
    product.updated_at = utcnow()
    db.session.flush()
    return movement


def move_stock(
    *,
    product_id: int,
    movement_type: str,
    qty: Decimal,
    note: str | None = None,
) -> Product:
    """Record a direct IN/OUT movement for one product."""
    with atomic():
        product = lock_products([product_id]).get(product_id)
        if product is None:
            raise NotFoundError("Product not found")
        apply_movement(product, movement_type, qty, note)
    return product


def record_loss(
    *,
    product_id: int,
    reason: str,
    qty: Decimal,
    note: str | None = None,
) -> Product:
    """Stock loss (spoilage, mishandling) is an OUT movement tagged with its reason."""
    full_note = f"{reason}: {note}" if note else reason
    return move_stock(product_id=product_id, movement_type="OUT", qty=qty, note=full_note)


def list_movements(*, product_id: int, limit: int = 200) -> list[StockMovement]:
    if db.session.get(Product, product_id) is None:
        raise NotFoundError("Product not found")

    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def ledger_balance(product_id: int) -> Decimal:
    """SUM(IN) - SUM(OUT) for one product, straight from the movement rows."""
    signed = case(
        (StockMovement.type == "IN", StockMovement.qty),
        else_=-StockMovement.qty,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return Decimal(str(total or 0)).quantize(QTY_QUANT)


def check_conservation() -> list[dict]:
    """
    Compare every product's stored qty with its movement ledger.

    Returns one entry per product whose numbers disagree (empty list == healthy).
    """
    drift = []
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        balance = ledger_balance(product.id)
        stored = Decimal(product.qty or 0).quantize(QTY_QUANT)
        if balance != stored:
            drift.append({
                "product_id": product.id,
                "name": product.name,
                "qty": stored,
                "ledger_balance": balance,
            })
    return drift
