# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/adega/routes/orders.py
"""
Order lifecycle API.

Status changes, courier assignment and fee adjustment all publish to the
live dashboards through the app's broadcaster (see routes/events.py).

Error bodies:
- invalid transition: 400 {error, currentStatus, allowedTransitions}
- precondition / validation: 400 {error, details?}
- unknown order / product / courier: 404 {error}
- storage failure: 500 {error}
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import order_service, order_lifecycle_service
from ..services.broadcast_service import get_broadcaster
from ..services.concurrency import PersistenceFailure
from ..services.order_lifecycle_service import (
    InvalidTransition,
    OrderNotFound,
    PreconditionFailed,
)
from ..validation import NotFoundError, ValidationError


orders_bp = Blueprint("orders", __name__, url_prefix="/api")


def _persistence_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Storage error, nothing was changed"}), 500


@orders_bp.get("/orders")
def list_orders_route():
    """
    List orders, newest first.

    Query params:
    - status: filter by status
    - userId: filter by customer
    """
    orders = order_service.list_orders(
        status=request.args.get("status"),
        user_id=request.args.get("userId"),
    )
    return jsonify([o.to_dict() for o in orders]), 200


@orders_bp.get("/orders/transitions")
def transitions_route():
    """Full transition table, keyed by order type then status."""
    return jsonify(order_lifecycle_service.transition_table()), 200


@orders_bp.get("/orders/<string:order_id>")
def get_order_route(order_id: str):
    try:
        order = order_service.get_order(order_id)
    except OrderNotFound:
        return jsonify({"error": "Order not found"}), 404
    return jsonify(order.to_dict()), 200


@orders_bp.get("/orders/<string:order_id>/items")
def get_order_items_route(order_id: str):
    try:
        items = order_service.get_order_items(order_id)
    except OrderNotFound:
        return jsonify({"error": "Order not found"}), 404
    return jsonify([i.to_dict() for i in items]), 200


@orders_bp.get("/order-items")
def get_items_for_orders_route():
    """Items for several orders at once: ?orderIds=a,b,c"""
    raw = request.args.get("orderIds", "")
    order_ids = [oid.strip() for oid in raw.split(",") if oid.strip()]
    items = order_service.get_items_for_orders(order_ids)
    return jsonify([i.to_dict() for i in items]), 200


@orders_bp.post("/orders")
def create_order_route():
    """
    Create an order (checkout or counter sale).

    Deducts stock for tracked products and publishes order_created.
    """
    payload = request.get_json(silent=True)
    try:
        order = order_service.create_order(payload, broadcaster=get_broadcaster())
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PersistenceFailure:
        return _persistence_error("Failed to create order")

    return jsonify(order.to_dict()), 201


@orders_bp.patch("/orders/<string:order_id>/status")
def update_status_route(order_id: str):
    """
    Move an order through its lifecycle.

    Body: {"status": "<new status>"}
    """
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not isinstance(status, str) or not status:
        return jsonify({"error": "status required"}), 400

    try:
        order = order_lifecycle_service.request_transition(
            order_id, status, broadcaster=get_broadcaster()
        )
    except OrderNotFound:
        return jsonify({"error": "Order not found"}), 404
    except InvalidTransition as e:
        return jsonify({
            "error": str(e),
            "currentStatus": e.current_status,
            "allowedTransitions": e.allowed_transitions,
        }), 400
    except PersistenceFailure:
        return _persistence_error("Failed to update order status")

    return jsonify(order.to_dict()), 200


@orders_bp.patch("/orders/<string:order_id>/assign")
def assign_courier_route(order_id: str):
    """
    Assign a courier to a ready delivery order (dispatches it).

    Body: {"motoboyId": "<courier id>"}  (courierId accepted too)
    """
    data = request.get_json(silent=True) or {}
    courier_id = data.get("motoboyId") or data.get("courierId")
    if not courier_id:
        return jsonify({"error": "motoboyId required"}), 400

    try:
        order = order_lifecycle_service.assign_courier(
            order_id, courier_id, broadcaster=get_broadcaster()
        )
    except OrderNotFound:
        return jsonify({"error": "Order not found"}), 404
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PreconditionFailed as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except PersistenceFailure:
        return _persistence_error("Failed to assign courier")

    return jsonify(order.to_dict()), 200


@orders_bp.patch("/orders/<string:order_id>/delivery-fee")
def adjust_delivery_fee_route(order_id: str):
    """
    Correct the delivery fee. Allowed in any status.

    Body: {"deliveryFee": 12.5}
    """
    data = request.get_json(silent=True) or {}
    if "deliveryFee" not in data:
        return jsonify({"error": "deliveryFee required"}), 400

    try:
        order = order_lifecycle_service.adjust_delivery_fee(
            order_id, data["deliveryFee"], broadcaster=get_broadcaster()
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderNotFound:
        return jsonify({"error": "Order not found"}), 404
    except PersistenceFailure:
        return _persistence_error("Failed to adjust delivery fee")

    return jsonify(order.to_dict()), 200


@orders_bp.delete("/orders/<string:order_id>")
def delete_order_route(order_id: str):
    """Hard delete. Does not restore stock (cancel the order for that)."""
    try:
        order_service.delete_order(order_id, broadcaster=get_broadcaster())
    except OrderNotFound:
        return jsonify({"error": "Order not found"}), 404
    except PersistenceFailure:
        return _persistence_error("Failed to delete order")

    return "", 204


@orders_bp.post("/orders/<string:order_id>/items/<string:item_id>/ingredients")
def add_ingredient_route(order_id: str, item_id: str):
    """
    Record an ingredient used for an item.

    Body: {"ingredientProductId", "quantity", "shouldDeductStock"?: bool}
    """
    data = request.get_json(silent=True) or {}
    try:
        ingredient = order_service.add_ingredient(
            order_id,
            item_id,
            data.get("ingredientProductId"),
            data.get("quantity"),
            deduct_stock=data.get("shouldDeductStock", True) is not False,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PersistenceFailure:
        return _persistence_error("Failed to add ingredient")

    return jsonify(ingredient.to_dict()), 201


@orders_bp.get("/orders/<string:order_id>/items/<string:item_id>/ingredients")
def list_ingredients_route(order_id: str, item_id: str):
    try:
        ingredients = order_service.list_ingredients(order_id, item_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify([i.to_dict(include_product=True) for i in ingredients]), 200
