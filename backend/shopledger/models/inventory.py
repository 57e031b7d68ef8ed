from __future__ import annotations

from ..extensions import db
from shopledger.numeric import to_json_number
from shopledger.time_utils import to_utc_z, utcnow

MOVEMENT_TYPES = ("IN", "OUT")


class Product(db.Model):
    """
    Product master data plus its running stock quantity.

    QTY DESIGN DECISION:
    Product.qty is a derived running total. Only the stock ledger service writes it,
    always in the same unit of work as the StockMovement that explains the change.
    Generic product updates never touch it.

    INVARIANTS:
    - qty >= 0 (also enforced by a CHECK constraint)
    - qty == SUM(IN movements) - SUM(OUT movements)
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("qty >= 0", name="ck_products_qty_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False, default="")
    unit = db.Column(db.String(32), nullable=False, default="pcs")

    qty = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    reorder_level = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    movements = db.relationship(
        "StockMovement",
        back_populates="product",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} qty={self.qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "unit": self.unit,
            "qty": to_json_number(self.qty),
            "reorder_level": to_json_number(self.reorder_level),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """Append-only stock ledger entry. Never updated, never deleted on its own."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("type IN ('IN', 'OUT')", name="ck_stock_movements_type"),
        db.CheckConstraint("qty > 0", name="ck_stock_movements_qty_positive"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    type = db.Column(db.String(8), nullable=False)
    qty = db.Column(db.Numeric(14, 3), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product", back_populates="movements")

    @property
    def signed_qty(self):
        return self.qty if self.type == "IN" else -self.qty

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "qty": to_json_number(self.qty),
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
