# Overview: Service-layer operations for order lifecycle; encapsulates business logic and database work.

"""
Order Lifecycle Service

================================================================================
PURPOSE: Decide which status changes are legal for an order and apply them
together with their side effects.
================================================================================

STATE MACHINE (selected by order_type):

    delivery: pending -> accepted -> preparing -> ready -> dispatched
              -> (arrived) -> delivered
    counter:  pending -> accepted -> preparing -> ready -> delivered

    Every non-terminal status may also move to cancelled.
    delivered and cancelled are terminal.

    Only delivery orders go through a courier hand-off (dispatched/arrived);
    counter orders are collected in person.

RULES:
1. A transition not in the table raises InvalidTransition carrying the
   current status and the allowed set, so clients can redraw their buttons.
2. Each status has exactly one timestamp column; entering the status sets
   it to now (a replayed request overwrites it, nothing else changes).
3. Stock is deducted once, when the order is created (order_service).
   cancelled is the only transition that moves stock: it restores every
   non-exempt line through the stock ledger.
4. The order write and the ledger writes commit together. Events are
   published only after that commit succeeds.

OUT-OF-BAND OPERATIONS:
- assign_courier: ready + delivery only; sets the courier and dispatches.
- adjust_delivery_fee: not a status change; allowed in any status,
  including delivered/cancelled (post-hoc billing correction).
================================================================================
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping

from ..extensions import db
from ..models import Courier, Order, ORDER_STATUSES
from ..validation import NotFoundError, ValidationError, require_money
from adega.money_utils import to_money
from adega.time_utils import utcnow
from . import broadcast_service
from .concurrency import lock_for_update, run_with_retry
from .stock_service import apply_order_items

logger = logging.getLogger(__name__)


def _table(rows: dict) -> Mapping[str, frozenset]:
    return MappingProxyType({status: frozenset(nxt) for status, nxt in rows.items()})


TRANSITIONS: Mapping[str, Mapping[str, frozenset]] = MappingProxyType({
    "delivery": _table({
        "pending": {"accepted", "cancelled"},
        "accepted": {"preparing", "cancelled"},
        "preparing": {"ready", "cancelled"},
        "ready": {"dispatched", "cancelled"},
        "dispatched": {"arrived", "delivered", "cancelled"},
        "arrived": {"delivered", "cancelled"},
        "delivered": set(),
        "cancelled": set(),
    }),
    "counter": _table({
        "pending": {"accepted", "cancelled"},
        "accepted": {"preparing", "cancelled"},
        "preparing": {"ready", "cancelled"},
        "ready": {"delivered", "cancelled"},
        "delivered": set(),
        "cancelled": set(),
    }),
})

STATUS_TIMESTAMP_FIELDS: Mapping[str, str] = MappingProxyType({
    "pending": "created_at",
    "accepted": "accepted_at",
    "preparing": "preparing_at",
    "ready": "ready_at",
    "dispatched": "dispatched_at",
    "arrived": "arrived_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
})


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderNotFound(OrderError):
    pass


class PreconditionFailed(OrderError):
    """The order is not in a state where the operation applies."""


class InvalidTransition(OrderError):
    def __init__(self, current_status: str, requested_status, allowed: list[str]):
        super().__init__(
            f"Invalid transition: {current_status} -> {requested_status}",
            details={"currentStatus": current_status, "allowedTransitions": allowed},
        )
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed


def allowed_transitions(order_type: str, status: str) -> list[str]:
    """Sorted list of statuses reachable from `status` for this order type."""
    table = TRANSITIONS.get(order_type, TRANSITIONS["delivery"])
    return sorted(table.get(status, frozenset()))


def can_transition(order_type: str, from_status: str, to_status: str) -> bool:
    return to_status in allowed_transitions(order_type, from_status)


def transition_table() -> dict:
    """JSON-friendly copy of TRANSITIONS for clients."""
    return {
        order_type: {status: sorted(nxt) for status, nxt in table.items()}
        for order_type, table in TRANSITIONS.items()
    }


def _load_order_locked(order_id: str) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def request_transition(
    order_id: str,
    new_status: str,
    *,
    broadcaster: broadcast_service.EventBroadcaster,
) -> Order:
    """
    Move an order to new_status.

    Raises:
        OrderNotFound: unknown order id
        InvalidTransition: new_status not allowed from the current status
        PersistenceFailure: DB error (nothing applied, nothing published)
    """
    previous: dict = {}

    def _op():
        order = _load_order_locked(order_id)
        allowed = allowed_transitions(order.order_type, order.status)
        if new_status not in allowed:
            raise InvalidTransition(order.status, new_status, allowed)

        previous["status"] = order.status
        order.status = new_status
        setattr(order, STATUS_TIMESTAMP_FIELDS[new_status], utcnow())

        if new_status == "cancelled":
            apply_order_items(order.items, sign=1, reason=f"order cancellation {order.id}")

        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s: %s -> %s", order.id, previous["status"], new_status)

    broadcaster.publish(broadcast_service.ORDER_STATUS_CHANGED, {
        "orderId": order.id,
        "previousStatus": previous["status"],
        "status": new_status,
    })
    return order


def assign_courier(
    order_id: str,
    courier_id: str,
    *,
    broadcaster: broadcast_service.EventBroadcaster,
) -> Order:
    """
    Hand a ready delivery order to a courier and dispatch it.

    Raises:
        OrderNotFound: unknown order id
        NotFoundError: unknown courier id
        PreconditionFailed: counter order, order not ready, inactive courier
    """
    def _op():
        order = _load_order_locked(order_id)

        if order.order_type != "delivery":
            raise PreconditionFailed(
                f"Only delivery orders take a courier. This order is: {order.order_type}",
                details={"currentStatus": order.status, "orderType": order.order_type},
            )
        if order.status != "ready":
            raise PreconditionFailed(
                f"Order must be 'ready' to assign a courier. Current status: {order.status}",
                details={"currentStatus": order.status, "orderType": order.order_type},
            )

        courier = db.session.get(Courier, courier_id) if courier_id else None
        if courier is None:
            raise NotFoundError(f"Courier {courier_id} not found")
        if not courier.is_active:
            raise PreconditionFailed(f"Courier {courier.name} is inactive")

        order.motoboy_id = courier.id
        order.status = "dispatched"
        order.dispatched_at = utcnow()

        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s dispatched with courier %s", order.id, courier_id)

    broadcaster.publish(broadcast_service.ORDER_ASSIGNED, {
        "orderId": order.id,
        "motoboyId": order.motoboy_id,
        "status": order.status,
    })
    broadcaster.publish(broadcast_service.ORDER_STATUS_CHANGED, {
        "orderId": order.id,
        "previousStatus": "ready",
        "status": order.status,
    })
    return order


def adjust_delivery_fee(
    order_id: str,
    new_fee,
    *,
    broadcaster: broadcast_service.EventBroadcaster,
) -> Order:
    """
    Correct the delivery fee and recompute the total.

    The first adjustment keeps the fee charged at checkout in
    original_delivery_fee; later adjustments leave it alone.
    Allowed in every status.

    Raises:
        ValidationError: fee missing, not numeric or negative, or the
            recomputed total would drop below zero
        OrderNotFound: unknown order id
    """
    fee = require_money(new_fee, "deliveryFee")

    def _op():
        order = _load_order_locked(order_id)

        new_total = to_money(order.subtotal) - to_money(order.discount or 0) + fee
        if new_total < 0:
            raise ValidationError(f"deliveryFee would make the order total negative ({new_total})")

        if order.original_delivery_fee is None:
            order.original_delivery_fee = order.delivery_fee
        order.delivery_fee = fee
        order.total = new_total
        order.delivery_fee_adjusted = True
        order.delivery_fee_adjusted_at = utcnow()

        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s delivery fee adjusted to %s", order.id, fee)

    broadcaster.publish(broadcast_service.ORDER_FEE_UPDATED, {
        "orderId": order.id,
        "userId": order.user_id,
        "originalFee": order.original_delivery_fee,
        "newFee": order.delivery_fee,
        "newTotal": order.total,
    })
    return order


def is_known_status(status) -> bool:
    return isinstance(status, str) and status in ORDER_STATUSES
