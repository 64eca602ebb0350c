# Overview: Flask API routes for categories and products; parses input and returns JSON responses.

# backend/adega/routes/catalog.py
"""
Catalog management routes.

Writes are validated against the model columns through validate_payload
(camelCase JSON keys mapped to model attributes). Any `stock` value in a
product payload is booked through the stock ledger.
"""
from flask import Blueprint, request, jsonify, current_app

from ..models import Category, Product
from ..services import catalog_service
from ..services.concurrency import PersistenceFailure
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    NotFoundError,
    ConflictError,
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "sortOrder", "isActive"},
    required_on_create={"name"},
    field_map={"sortOrder": "sort_order", "isActive": "is_active"},
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "categoryId", "name", "description", "costPrice", "profitMargin",
        "salePrice", "stock", "isActive", "isPrepared", "sortOrder",
    },
    required_on_create={"categoryId", "name", "salePrice"},
    field_map={
        "categoryId": "category_id",
        "costPrice": "cost_price",
        "profitMargin": "profit_margin",
        "salePrice": "sale_price",
        "isActive": "is_active",
        "isPrepared": "is_prepared",
        "sortOrder": "sort_order",
    },
)

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _reorder_items():
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise ValidationError("items must be a list of {id, sortOrder}")
    return items


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

@catalog_bp.get("/categories")
def list_categories_route():
    categories = catalog_service.list_categories()
    return jsonify([c.to_dict() for c in categories]), 200


@catalog_bp.get("/categories/<string:category_id>")
def get_category_route(category_id: str):
    try:
        category = catalog_service.get_category(category_id)
    except NotFoundError:
        return jsonify({"error": "Category not found"}), 404
    return jsonify(category.to_dict()), 200


@catalog_bp.post("/categories")
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        category = catalog_service.create_category(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PersistenceFailure:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(category.to_dict()), 201


@catalog_bp.patch("/categories/reorder")
def reorder_categories_route():
    try:
        updated = catalog_service.reorder(Category, _reorder_items())
    except (ValidationError, ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"ok": True, "updated": updated}), 200


@catalog_bp.patch("/categories/<string:category_id>")
def update_category_route(category_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        category = catalog_service.update_category(category_id, patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError:
        return jsonify({"error": "Category not found"}), 404
    return jsonify(category.to_dict()), 200


@catalog_bp.delete("/categories/<string:category_id>")
def delete_category_route(category_id: str):
    """Delete a category together with all of its products."""
    try:
        catalog_service.delete_category(category_id)
    except NotFoundError:
        return jsonify({"error": "Category not found"}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except PersistenceFailure:
        current_app.logger.exception("Failed to delete category")
        return jsonify({"error": "Internal server error"}), 500
    return "", 204


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

@catalog_bp.get("/products")
def list_products_route():
    """
    Query params:
    - categoryId: filter by category
    - active: "true" to hide inactive products
    """
    products = catalog_service.list_products(
        category_id=request.args.get("categoryId"),
        active_only=request.args.get("active", "").lower() == "true",
    )
    return jsonify([p.to_dict() for p in products]), 200


@catalog_bp.get("/products/<string:product_id>")
def get_product_route(product_id: str):
    try:
        product = catalog_service.get_product(product_id)
    except NotFoundError:
        return jsonify({"error": "Product not found"}), 404
    return jsonify(product.to_dict()), 200


@catalog_bp.post("/products")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        product = catalog_service.create_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PersistenceFailure:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(product.to_dict()), 201


@catalog_bp.patch("/products/reorder")
def reorder_products_route():
    try:
        updated = catalog_service.reorder(Product, _reorder_items())
    except (ValidationError, ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"ok": True, "updated": updated}), 200


@catalog_bp.patch("/products/<string:product_id>")
def update_product_route(product_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        product = catalog_service.update_product(product_id, patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PersistenceFailure:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(product.to_dict()), 200


@catalog_bp.delete("/products/<string:product_id>")
def delete_product_route(product_id: str):
    try:
        catalog_service.delete_product(product_id)
    except NotFoundError:
        return jsonify({"error": "Product not found"}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return "", 204
