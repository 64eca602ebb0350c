# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

"""
Stock Ledger Invariants (authoritative)

- Product.stock is the on-hand count. It is written ONLY by apply_delta().
- Every write appends one StockLog row (previous, new, signed change,
  reason) in the same DB transaction as the write.
- Stock is floored at zero: new = max(0, current + delta). Over-selling
  is absorbed, never rejected; availability is checked by the ordering
  client at display time.
- Stock-exempt products (prepared on demand) are skipped by order flows.
  Manual adjustments through adjust_stock() still apply to them.
- apply_delta() never commits. Callers own the transaction so the order
  write and the ledger write succeed or fail together.
"""

from __future__ import annotations

import unicodedata
from decimal import Decimal
from typing import Iterable, Optional

from ..extensions import db
from ..models import Category, Product, StockLog
from ..validation import ValidationError, NotFoundError
from adega.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


PREPARED_CATEGORIES = (
    "CAIPIRINHAS",
    "DOSES",
    "BATIDAS",
    "COPAO",
    "DRINKS ESPECIAIS",
    "CAIPI ICES",
    "DRINKS",
    "COPOS",
)

SUGGESTED_RESTOCK_LEVEL = 10
MIN_SUGGESTED_PURCHASE = 5


def _normalize_category_name(name: str) -> str:
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.upper().split())


def is_prepared_category_name(name: Optional[str]) -> bool:
    """
    True when a category holds prepared/mixed drinks.

    Match rule: upper-cased, accent-stripped, whitespace-collapsed name is
    equal to, contains, or is contained in one of PREPARED_CATEGORIES.
    Blank names never match.

    NOTE: The either-direction substring rule is fuzzy on purpose (a
    category called "Drinks & Shots" is prepared). It also means short
    names like "ICE" match "CAIPI ICES". Change the rule here only.
    """
    if not name:
        return False
    normalized = _normalize_category_name(name)
    if not normalized:
        return False
    return any(
        normalized == cat or cat in normalized or normalized in cat
        for cat in PREPARED_CATEGORIES
    )


def is_stock_exempt(product: Product) -> bool:
    """Prepared products and products in prepared categories are not tracked."""
    if product.is_prepared:
        return True
    category = product.category
    return category is not None and is_prepared_category_name(category.name)


def apply_delta(product_id: str, delta: int, reason: str) -> StockLog:
    """
    Apply a signed stock change and append its ledger entry.

    Locks the product row, computes max(0, stock + delta), writes it and
    appends a StockLog. Flushes but does NOT commit.

    Raises:
        NotFoundError: product does not exist
    """
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")

    previous = product.stock or 0
    new_stock = max(0, previous + delta)
    product.stock = new_stock

    entry = StockLog(
        product_id=product.id,
        previous_stock=previous,
        new_stock=new_stock,
        change=delta,
        reason=reason,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def apply_order_items(items: Iterable, *, sign: int, reason: str) -> list[StockLog]:
    """
    Move stock for every non-exempt line of an order.

    sign=-1 deducts (order placed), sign=+1 restores (order cancelled).
    Exempt products produce no log entries.
    """
    entries = []
    for item in items:
        product = db.session.get(Product, item.product_id)
        if product is None or is_stock_exempt(product):
            continue
        entries.append(apply_delta(product.id, sign * item.quantity, reason))
    return entries


def adjust_stock(product_id: str, delta: int, reason: str) -> StockLog:
    """Manual adjustment (stock count, breakage, purchase received)."""
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("delta must be a non-zero integer")
    if not reason or not str(reason).strip():
        raise ValidationError("reason required")

    def _op():
        entry = apply_delta(product_id, delta, str(reason).strip())
        db.session.commit()
        return entry

    return run_with_retry(_op)


def set_stock(product: Product, new_stock: int, reason: str) -> Optional[StockLog]:
    """
    Route a catalog edit of the stock field through the ledger.
    No-op (no log) when the value is unchanged. Does not commit.
    """
    delta = new_stock - (product.stock or 0)
    if delta == 0:
        return None
    return apply_delta(product.id, delta, reason)


def list_stock_logs(product_id: Optional[str] = None, limit: int = 200) -> list[StockLog]:
    q = db.session.query(StockLog)
    if product_id is not None:
        q = q.filter(StockLog.product_id == product_id)
    return q.order_by(StockLog.created_at.desc(), StockLog.id.desc()).limit(limit).all()


def _category_names() -> dict[str, str]:
    return {c.id: c.name for c in db.session.query(Category).all()}


def stock_report(*, threshold: int = 10) -> dict:
    """
    Inventory valuation over tracked products.

    Exempt products are excluded from values and from the product list
    (their stock number is cosmetic) but counted in the summary.
    """
    products = db.session.query(Product).order_by(Product.name.asc()).all()
    names = _category_names()

    tracked = []
    excluded_count = 0
    for product in products:
        if is_stock_exempt(product):
            excluded_count += 1
            continue
        cost = Decimal(product.cost_price or 0)
        sale = Decimal(product.sale_price or 0)
        stock = product.stock or 0
        tracked.append({
            "id": product.id,
            "name": product.name,
            "categoryId": product.category_id,
            "categoryName": names.get(product.category_id, "Sem categoria"),
            "stock": stock,
            "costPrice": float(cost),
            "salePrice": float(sale),
            "profitMargin": float(product.profit_margin or 0),
            "profitPerUnit": float(sale - cost),
            "totalCostValue": float(cost * stock),
            "totalSaleValue": float(sale * stock),
            "totalPotentialProfit": float((sale - cost) * stock),
            "isActive": product.is_active,
            "isPrepared": product.is_prepared,
        })

    summary = {
        "totalProducts": len(products),
        "activeProducts": sum(1 for p in products if p.is_active),
        "preparedProducts": sum(1 for p in products if p.is_prepared),
        "excludedFromValueCount": excluded_count,
        "totalUnitsInStock": sum(p["stock"] for p in tracked),
        "totalCostValue": round(sum(p["totalCostValue"] for p in tracked), 2),
        "totalSaleValue": round(sum(p["totalSaleValue"] for p in tracked), 2),
        "totalPotentialProfit": round(sum(p["totalPotentialProfit"] for p in tracked), 2),
        "lowStockCount": sum(1 for p in tracked if p["stock"] < threshold and p["isActive"]),
        "outOfStockCount": sum(1 for p in tracked if p["stock"] == 0 and p["isActive"]),
    }
    return {"summary": summary, "products": tracked}


def low_stock(*, threshold: int = 10, category_ids: Optional[Iterable[str]] = None) -> list[dict]:
    """
    Purchase suggestions: tracked products below threshold, lowest first.

    category_ids narrows the list; ids of prepared categories are ignored.
    """
    names = _category_names()
    selected = {
        cid for cid in (category_ids or [])
        if not is_prepared_category_name(names.get(cid))
    }

    rows = []
    for product in db.session.query(Product).all():
        if is_stock_exempt(product):
            continue
        if selected and product.category_id not in selected:
            continue
        stock = product.stock or 0
        if stock >= threshold:
            continue
        suggested = max(SUGGESTED_RESTOCK_LEVEL - stock, MIN_SUGGESTED_PURCHASE)
        cost = Decimal(product.cost_price or 0)
        rows.append({
            "id": product.id,
            "name": product.name,
            "categoryId": product.category_id,
            "categoryName": names.get(product.category_id, "Sem categoria"),
            "currentStock": stock,
            "suggestedPurchase": suggested,
            "costPrice": float(cost),
            "estimatedPurchaseCost": float(cost * suggested),
        })

    rows.sort(key=lambda r: (r["currentStock"], r["name"]))
    return rows
