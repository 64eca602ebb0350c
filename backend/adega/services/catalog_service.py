"""
Catalog Service - categories and products

Stock is never written directly here: create/update with a `stock` value
goes through stock_service.set_stock so the ledger records it.

Products with history (sold, used as an ingredient, or with stock ledger
entries) are never hard-deleted; deactivate them instead. The ledger is
append-only, so a product that ever moved stock keeps its rows. Deleting a
category deletes its products under the same rule.
"""
from __future__ import annotations

import logging
from typing import Optional

from ..extensions import db
from ..models import Category, OrderItem, PreparationIngredient, Product, StockLog
from ..validation import ConflictError, NotFoundError
from .concurrency import run_with_retry
from .stock_service import set_stock

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "category_id",
    "name",
    "description",
    "cost_price",
    "profit_margin",
    "sale_price",
    "is_active",
    "is_prepared",
    "sort_order",
}
CATEGORY_MUTABLE_FIELDS = {"name", "sort_order", "is_active"}


def apply_patch(obj, patch: dict, allowed: set[str]) -> None:
    for k, v in patch.items():
        if k not in allowed:
            continue
        setattr(obj, k, v)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def list_categories(*, include_inactive: bool = True) -> list[Category]:
    q = db.session.query(Category)
    if not include_inactive:
        q = q.filter(Category.is_active.is_(True))
    return q.order_by(Category.sort_order.asc(), Category.name.asc()).all()


def get_category(category_id: str) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    return category


def create_category(patch: dict) -> Category:
    def _op():
        category = Category()
        apply_patch(category, patch, CATEGORY_MUTABLE_FIELDS)
        db.session.add(category)
        db.session.commit()
        return category

    return run_with_retry(_op)


def update_category(category_id: str, patch: dict) -> Category:
    def _op():
        category = get_category(category_id)
        apply_patch(category, patch, CATEGORY_MUTABLE_FIELDS)
        db.session.commit()
        return category

    return run_with_retry(_op)


def reorder(model, items) -> int:
    """Batch update sort_order from [{id, sortOrder}, ...]. Returns rows updated."""
    def _op():
        updated = 0
        for entry in items:
            obj = db.session.get(model, entry.get("id"))
            if obj is None:
                continue
            obj.sort_order = int(entry.get("sortOrder", 0))
            updated += 1
        db.session.commit()
        return updated

    return run_with_retry(_op)


def _product_has_history(product_id: str) -> bool:
    sold = db.session.query(OrderItem.id).filter_by(product_id=product_id).first()
    if sold is not None:
        return True
    used = db.session.query(PreparationIngredient.id).filter_by(ingredient_product_id=product_id).first()
    if used is not None:
        return True
    logged = db.session.query(StockLog.id).filter_by(product_id=product_id).first()
    return logged is not None


def _delete_product_rows(product: Product) -> None:
    if _product_has_history(product.id):
        raise ConflictError(
            f"Product '{product.name}' has order or stock history and cannot be deleted; deactivate it instead"
        )
    db.session.delete(product)


def delete_category(category_id: str) -> None:
    """Delete a category and every product in it (all-or-nothing)."""
    def _op():
        category = get_category(category_id)
        for product in list(category.products):
            _delete_product_rows(product)
        db.session.delete(category)
        db.session.commit()

    run_with_retry(_op)
    logger.info("Category %s deleted with its products", category_id)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def list_products(*, category_id: Optional[str] = None, active_only: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.sort_order.asc(), Product.name.asc()).all()


def get_product(product_id: str) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def create_product(patch: dict) -> Product:
    """
    Create a product. An initial `stock` is booked as a ledger entry
    ("initial stock") rather than written to the column.
    """
    def _op():
        get_category(patch["category_id"])
        product = Product(stock=0)
        apply_patch(product, patch, PRODUCT_MUTABLE_FIELDS)
        db.session.add(product)
        db.session.flush()

        initial = patch.get("stock") or 0
        if initial:
            set_stock(product, initial, "initial stock")

        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: str, patch: dict) -> Product:
    def _op():
        product = get_product(product_id)
        if "category_id" in patch:
            get_category(patch["category_id"])
        apply_patch(product, patch, PRODUCT_MUTABLE_FIELDS)

        if patch.get("stock") is not None:
            set_stock(product, patch["stock"], "catalog edit")

        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(product_id: str) -> None:
    def _op():
        product = get_product(product_id)
        _delete_product_rows(product)
        db.session.commit()

    run_with_retry(_op)
