from __future__ import annotations

from ..extensions import db
from shopledger.numeric import to_json_number
from shopledger.time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    Sale record with optional stock consumption.

    WHY items: a sale may consume stock. Each SaleItem was matched by exactly one
    OUT StockMovement when the sale was created and is matched by exactly one IN
    movement when the sale is deleted.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_sales_amount_positive"),
        db.Index("ix_sales_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": to_json_number(self.amount),
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class SaleItem(db.Model):
    """Product consumed by a sale."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("qty_used > 0", name="ck_sale_items_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(
        db.Integer,
        db.ForeignKey("sales.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    qty_used = db.Column(db.Numeric(14, 3), nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        # name/unit are denormalized for display and export only
        return {
            "product_id": self.product_id,
            "qty_used": to_json_number(self.qty_used),
            "product_name": self.product.name if self.product else "",
            "product_unit": self.product.unit if self.product else "",
        }


class Expense(db.Model):
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        db.Index("ix_expenses_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": to_json_number(self.amount),
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
