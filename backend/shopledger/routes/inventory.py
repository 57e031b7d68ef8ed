# Overview: Flask API routes for products and stock movements; parses input and returns JSON responses.

# backend/shopledger/routes/inventory.py
"""
Inventory routes.

Product metadata is edited here, but quantity only ever changes through
/move, /loss, initial_qty on create, and sales (see finance routes).

Error mapping:
- ValidationError -> 400
- NotFoundError   -> 404
- ConflictError   -> 409 (insufficient stock, product still used by sales)
"""
from flask import Blueprint, Response, current_app, request

from ..models import Product, StockMovement
from ..services import products_service, stock_service
from ..services.export_service import inventory_csv
from . import conflict_response
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    enforce_rules_movement,
    parse_initial_qty,
    parse_loss_reason,
    ValidationError,
    ConflictError,
    NotFoundError,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "sku", "unit", "reorder_level"},
    required_on_create={"name"},
)

MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={"type", "qty", "note"},
    required_on_create={"type", "qty"},
)

LOSS_POLICY = ModelValidationPolicy(
    writable_fields={"qty", "note"},
    required_on_create={"qty"},
)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products")
def list_products_route():
    return products_service.list_products()


@inventory_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return products_service.get_product(product_id), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@inventory_bp.post("/products")
def create_product_route():
    """
    Create a product, optionally stocking it with `initial_qty` in the same transaction.
    """
    payload = dict(request.get_json(silent=True) or {})

    try:
        initial_qty = parse_initial_qty(payload.pop("initial_qty", None))
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    created = products_service.create_product(patch=patch, initial_qty=initial_qty)
    current_app.logger.info("Created product id=%s initial_qty=%s", created["id"], initial_qty)
    return created, 201


@inventory_bp.put("/products/<int:product_id>")
def update_product_route(product_id: int):
    """Update product metadata. qty is not writable here."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return updated, 200


@inventory_bp.delete("/products/<int:product_id>")
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id=product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return conflict_response(e)

    return {"ok": True}, 200


@inventory_bp.post("/products/<int:product_id>/move")
def move_stock_route(product_id: int):
    """
    Stock IN / OUT.

    Body: {"type": "IN"|"OUT", "qty": > 0, "note": optional}
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockMovement, payload=payload, policy=MOVEMENT_POLICY, partial=False)
        enforce_rules_movement(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = stock_service.move_stock(
            product_id=product_id,
            movement_type=patch["type"],
            qty=patch["qty"],
            note=patch.get("note"),
        )
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        current_app.logger.info("Rejected stock %s for product %s: %s", patch["type"], product_id, e)
        return conflict_response(e)

    return product.to_dict(), 200


@inventory_bp.post("/products/<int:product_id>/loss")
def record_loss_route(product_id: int):
    """
    Record stock lost to spoilage or mishandling.

    Body: {"qty": > 0, "reason": "SPOILAGE"|"MISHANDLING", "note": optional}
    """
    payload = dict(request.get_json(silent=True) or {})

    try:
        reason = parse_loss_reason(payload.pop("reason", None))
        patch = validate_payload(model=StockMovement, payload=payload, policy=LOSS_POLICY, partial=False)
        patch["type"] = "OUT"
        enforce_rules_movement(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = stock_service.record_loss(
            product_id=product_id,
            reason=reason,
            qty=patch["qty"],
            note=patch.get("note"),
        )
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return conflict_response(e)

    return product.to_dict(), 200


@inventory_bp.get("/products/<int:product_id>/movements")
def list_movements_route(product_id: int):
    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 1000))

    try:
        movements = stock_service.list_movements(product_id=product_id, limit=limit)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return [m.to_dict() for m in movements]


@inventory_bp.get("/export/inventory.csv")
def export_inventory_route():
    filename, body = inventory_csv()
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
