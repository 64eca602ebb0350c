"""
Order Service - checkout, counter sales and order queries

WHY: Order creation is where stock is deducted (once), so it lives next to
the lifecycle service and shares its transaction rules: order rows, item
rows and ledger entries commit together, and order_created is published
only after the commit.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Optional

from ..extensions import db
from ..models import (
    Address,
    Courier,
    Customer,
    Order,
    OrderItem,
    PreparationIngredient,
    Product,
    ORDER_TYPES,
    PAYMENT_METHODS,
)
from ..validation import (
    NotFoundError,
    ValidationError,
    require_money,
    require_optional_str,
    require_positive_int,
)
from adega.money_utils import to_money
from adega.time_utils import utcnow
from . import broadcast_service
from .concurrency import run_with_retry
from .order_lifecycle_service import OrderNotFound, STATUS_TIMESTAMP_FIELDS
from .stock_service import apply_delta, apply_order_items

logger = logging.getLogger(__name__)

# Counter sales skip the queue: items that need no preparation go straight
# to ready, the rest start accepted in the kitchen.
INITIAL_STATUSES = {
    "delivery": ("pending",),
    "counter": ("pending", "accepted", "ready"),
}

ACTIVE_COURIER_STATUSES = ("dispatched", "arrived")


def _parse_items(raw_items) -> list[tuple[Product, int]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    parsed = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = raw.get("productId")
        if not product_id or not isinstance(product_id, str):
            raise ValidationError(f"items[{index}].productId required")
        quantity = require_positive_int(raw.get("quantity"), f"items[{index}].quantity")

        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        parsed.append((product, quantity))
    return parsed


def create_order(payload: dict, *, broadcaster: broadcast_service.EventBroadcaster) -> Order:
    """
    Create an order with its items and deduct stock for tracked products.

    Prices are snapshotted from the catalog. subtotal is the sum of the
    lines, total = subtotal - discount + deliveryFee; the discount may not
    exceed the subtotal and a client-supplied total that disagrees is
    rejected.

    Raises:
        ValidationError: malformed payload
        NotFoundError: unknown product, customer or address
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    order_type = payload.get("orderType", "delivery")
    if order_type not in ORDER_TYPES:
        raise ValidationError(f"orderType must be one of: {', '.join(ORDER_TYPES)}")

    status = payload.get("status", "pending")
    if status not in INITIAL_STATUSES[order_type]:
        raise ValidationError(
            f"{order_type} orders cannot start as '{status}'. "
            f"Allowed: {', '.join(INITIAL_STATUSES[order_type])}"
        )

    payment_method = payload.get("paymentMethod")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"paymentMethod must be one of: {', '.join(PAYMENT_METHODS)}")

    user_id = require_optional_str(payload.get("userId"), "userId", 36)
    address_id = require_optional_str(payload.get("addressId"), "addressId", 36)
    notes = require_optional_str(payload.get("notes"), "notes")
    customer_name = require_optional_str(payload.get("customerName"), "customerName", 255)
    salesperson = require_optional_str(payload.get("salesperson"), "salesperson", 64)
    if order_type == "delivery" and not user_id:
        raise ValidationError("userId required for delivery orders")

    delivery_fee = require_money(payload.get("deliveryFee", 0), "deliveryFee")
    discount = require_money(payload.get("discount", 0), "discount")
    change_for = payload.get("changeFor")
    if change_for is not None:
        change_for = require_money(change_for, "changeFor")

    def _op():
        if user_id and db.session.get(Customer, user_id) is None:
            raise NotFoundError(f"Customer {user_id} not found")
        if address_id:
            address = db.session.get(Address, address_id)
            if address is None:
                raise NotFoundError(f"Address {address_id} not found")
            if user_id and address.user_id != user_id:
                raise ValidationError("addressId does not belong to userId")

        lines = _parse_items(payload.get("items"))

        subtotal = Decimal("0.00")
        for product, quantity in lines:
            subtotal += to_money(product.sale_price) * quantity

        if discount > subtotal:
            raise ValidationError(f"discount cannot exceed subtotal ({subtotal})")
        total = subtotal - discount + delivery_fee
        if payload.get("total") is not None:
            try:
                client_total = to_money(payload["total"])
            except ValueError:
                raise ValidationError("total must be a number")
            if client_total != total:
                raise ValidationError(
                    f"total mismatch: expected {total}, got {client_total}"
                )

        now = utcnow()
        order = Order(
            user_id=user_id,
            address_id=address_id,
            order_type=order_type,
            status=status,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            discount=discount,
            total=total,
            payment_method=payment_method,
            change_for=change_for,
            notes=notes,
            customer_name=customer_name,
            salesperson=salesperson,
            created_at=now,
        )
        setattr(order, STATUS_TIMESTAMP_FIELDS[status], now)
        db.session.add(order)
        db.session.flush()

        for product, quantity in lines:
            unit_price = to_money(product.sale_price)
            order.items.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price=unit_price,
                total_price=unit_price * quantity,
            ))
        db.session.flush()

        apply_order_items(order.items, sign=-1, reason=f"order {order.id}")

        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s created (%s, %s, total %s)", order.id, order.order_type, order.status, order.total)

    broadcaster.publish(broadcast_service.ORDER_CREATED, {
        "orderId": order.id,
        "status": order.status,
        "orderType": order.order_type,
    })
    return order


def delete_order(order_id: str, *, broadcaster: broadcast_service.EventBroadcaster) -> None:
    """
    Hard delete (administrative). Items and their ingredients go with it.

    Stock effects of earlier transitions are NOT reversed; only
    cancellation restores stock.
    """
    def _op():
        order = db.session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        db.session.delete(order)
        db.session.commit()

    run_with_retry(_op)
    logger.info("Order %s deleted", order_id)
    broadcaster.publish(broadcast_service.ORDER_DELETED, {"orderId": order_id})


def get_order(order_id: str) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def list_orders(*, status: Optional[str] = None, user_id: Optional[str] = None) -> list[Order]:
    q = db.session.query(Order)
    if status is not None:
        q = q.filter(Order.status == status)
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def get_order_items(order_id: str) -> list[OrderItem]:
    get_order(order_id)
    return db.session.query(OrderItem).filter_by(order_id=order_id).order_by(OrderItem.id).all()


def get_items_for_orders(order_ids: Iterable[str]) -> list[OrderItem]:
    ids = [oid for oid in order_ids if oid]
    if not ids:
        return []
    return db.session.query(OrderItem).filter(OrderItem.order_id.in_(ids)).all()


def list_courier_orders(
    courier_id: str,
    *,
    active_only: bool = True,
    start=None,
    end=None,
) -> list[Order]:
    """
    Orders handed to a courier.

    active_only: the courier's current run (dispatched/arrived).
    Otherwise all of them, optionally filtered by dispatch time [start, end].
    """
    if db.session.get(Courier, courier_id) is None:
        raise NotFoundError(f"Courier {courier_id} not found")

    q = db.session.query(Order).filter(Order.motoboy_id == courier_id)
    if active_only:
        q = q.filter(Order.status.in_(ACTIVE_COURIER_STATUSES))
    if start is not None:
        q = q.filter(Order.dispatched_at >= start)
    if end is not None:
        q = q.filter(Order.dispatched_at <= end)
    return q.order_by(Order.dispatched_at.desc()).all()


def _get_item(order_id: str, item_id: str) -> OrderItem:
    item = db.session.query(OrderItem).filter_by(id=item_id, order_id=order_id).first()
    if item is None:
        raise NotFoundError(f"Item {item_id} not found on order {order_id}")
    return item


def add_ingredient(
    order_id: str,
    item_id: str,
    ingredient_product_id: str,
    quantity,
    *,
    deduct_stock: bool = True,
) -> PreparationIngredient:
    """
    Record an ingredient used to prepare an item (kitchen).

    deduct_stock=True consumes the ingredient through the stock ledger,
    even when the ingredient itself is in a prepared category: the kitchen
    explicitly says it was used.
    """
    if not ingredient_product_id:
        raise ValidationError("ingredientProductId required")
    qty = require_positive_int(quantity, "quantity")

    def _op():
        item = _get_item(order_id, item_id)
        if db.session.get(Product, ingredient_product_id) is None:
            raise NotFoundError(f"Product {ingredient_product_id} not found")

        ingredient = PreparationIngredient(
            order_item_id=item.id,
            ingredient_product_id=ingredient_product_id,
            quantity=qty,
        )
        db.session.add(ingredient)

        if deduct_stock:
            apply_delta(ingredient_product_id, -qty, f"ingredient used in order {order_id}")

        db.session.commit()
        return ingredient

    return run_with_retry(_op)


def list_ingredients(order_id: str, item_id: str) -> list[PreparationIngredient]:
    item = _get_item(order_id, item_id)
    return list(item.ingredients)
