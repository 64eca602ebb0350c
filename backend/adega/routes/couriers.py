# Overview: Flask API routes for couriers (motoboys); parses input and returns JSON responses.

# backend/adega/routes/couriers.py
from flask import Blueprint, request, jsonify, current_app

from ..models import Courier
from ..services import courier_service, order_service
from ..services.concurrency import PersistenceFailure
from ..time_utils import parse_iso_datetime
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_courier,
    ValidationError,
    NotFoundError,
    ConflictError,
)

COURIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "whatsapp", "isActive"},
    required_on_create={"name", "whatsapp"},
    field_map={"isActive": "is_active"},
)

couriers_bp = Blueprint("couriers", __name__, url_prefix="/api/motoboys")


@couriers_bp.get("")
def list_couriers_route():
    """List couriers. ?active=true hides deactivated ones."""
    active_only = request.args.get("active", "").lower() == "true"
    couriers = courier_service.list_couriers(active_only=active_only)
    return jsonify([c.to_dict() for c in couriers]), 200


@couriers_bp.get("/<string:courier_id>")
def get_courier_route(courier_id: str):
    try:
        courier = courier_service.get_courier(courier_id)
    except NotFoundError:
        return jsonify({"error": "Courier not found"}), 404
    return jsonify(courier.to_dict()), 200


@couriers_bp.post("")
def create_courier_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Courier, payload=payload, policy=COURIER_POLICY, partial=False)
        enforce_rules_courier(patch)
        courier = courier_service.create_courier(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except PersistenceFailure:
        current_app.logger.exception("Failed to create courier")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(courier.to_dict()), 201


@couriers_bp.patch("/<string:courier_id>")
def update_courier_route(courier_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Courier, payload=payload, policy=COURIER_POLICY, partial=True)
        enforce_rules_courier(patch)
        courier = courier_service.update_courier(courier_id, patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError:
        return jsonify({"error": "Courier not found"}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except PersistenceFailure:
        current_app.logger.exception("Failed to update courier")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(courier.to_dict()), 200


@couriers_bp.delete("/<string:courier_id>")
def delete_courier_route(courier_id: str):
    try:
        courier_service.delete_courier(courier_id)
    except NotFoundError:
        return jsonify({"error": "Courier not found"}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return "", 204


@couriers_bp.get("/<string:courier_id>/orders")
def courier_orders_route(courier_id: str):
    """
    Orders handed to a courier.

    Query params:
    - all: "true" to include finished runs (default: current run only)
    - startDate / endDate: ISO-8601 bounds on dispatch time
    """
    try:
        start = parse_iso_datetime(request.args.get("startDate"))
        end = parse_iso_datetime(request.args.get("endDate"))
    except ValueError:
        return jsonify({"error": "startDate/endDate must be ISO-8601 datetimes"}), 400

    try:
        orders = order_service.list_courier_orders(
            courier_id,
            active_only=request.args.get("all", "").lower() != "true",
            start=start,
            end=end,
        )
    except NotFoundError:
        return jsonify({"error": "Courier not found"}), 404
    return jsonify([o.to_dict() for o in orders]), 200
