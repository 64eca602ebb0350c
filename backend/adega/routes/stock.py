# backend/adega/routes/stock.py
"""
Stock ledger routes.

Every change to a product's stock goes through services/stock_service.py,
which clamps at zero and writes one StockLog row per change.

Products that need no stock control (isPrepared, or in a prepared
category such as CAIPIRINHAS / DOSES) are left out of the report values
and of purchase suggestions.
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import stock_service
from ..services.concurrency import PersistenceFailure
from ..validation import ValidationError, NotFoundError


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _threshold_arg() -> int:
    raw = request.args.get("threshold")
    if raw is None or raw == "":
        return current_app.config["LOW_STOCK_THRESHOLD"]
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError("threshold must be an integer")
    if value < 0:
        raise ValidationError("threshold must be >= 0")
    return value


@stock_bp.get("/logs")
def list_logs_route():
    """Ledger entries, newest first. ?productId= narrows to one product, ?limit= (max 1000)."""
    try:
        limit = int(request.args.get("limit", 200))
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400
    limit = max(1, min(limit, 1000))

    logs = stock_service.list_stock_logs(product_id=request.args.get("productId"), limit=limit)
    return jsonify([entry.to_dict() for entry in logs]), 200


@stock_bp.post("/adjust")
def adjust_route():
    """
    Manual adjustment (count correction, breakage, purchase received).

    Body: {"productId": "...", "delta": -3, "reason": "breakage"}
    The result is clamped at zero; the log keeps the requested delta.
    """
    data = request.get_json(silent=True) or {}
    product_id = data.get("productId")
    if not product_id:
        return jsonify({"error": "productId required"}), 400

    try:
        entry = stock_service.adjust_stock(product_id, data.get("delta"), data.get("reason"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError:
        return jsonify({"error": "Product not found"}), 404
    except PersistenceFailure:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(entry.to_dict()), 201


@stock_bp.get("/report")
def report_route():
    try:
        threshold = _threshold_arg()
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(stock_service.stock_report(threshold=threshold)), 200


@stock_bp.get("/low-stock")
def low_stock_route():
    try:
        threshold = _threshold_arg()
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(stock_service.low_stock(threshold=threshold)), 200


@stock_bp.post("/shopping-list")
def shopping_list_route():
    """
    Purchase suggestions for the selected categories (not persisted).

    Body: {"categoryIds": [...], "threshold"?: 10}
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400
    category_ids = data.get("categoryIds") or []
    if not isinstance(category_ids, list) or not all(isinstance(c, str) for c in category_ids):
        return jsonify({"error": "categoryIds must be a list of ids"}), 400

    threshold = data.get("threshold", current_app.config["LOW_STOCK_THRESHOLD"])
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        return jsonify({"error": "threshold must be a non-negative integer"}), 400

    items = stock_service.low_stock(threshold=threshold, category_ids=category_ids)
    summary = {
        "totalItems": len(items),
        "totalEstimatedCost": round(sum(i["estimatedPurchaseCost"] for i in items), 2),
        "threshold": threshold,
        "selectedCategories": len(category_ids) if category_ids else "all",
    }
    return jsonify({"summary": summary, "products": items}), 200
