# backend/storefront/routes/stock.py
"""
Stock API routes: allocation, nearest warehouse lookup, stock levels and logs.
"""
from flask import Blueprint, request, jsonify, current_app

from storefront.extensions import db
from storefront.errors import StorefrontError, http_status_for
from storefront.services import stock_service, warehouse_service
from storefront.services.allocation_planner import StockRequest


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.route("/allocate", methods=["POST"])
def allocate_stock():
    """
    Make a warehouse cover the requested quantities, transferring from the
    nearest other warehouses when needed, and take the stock.

    Request body:
    {
        "warehouse_id": int,
        "latitude": float,
        "longitude": float,
        "products": [{"product_id": int, "quantity": int}]
    }

    Returns:
        200: Allocation committed
        400: Invalid request
        404: Warehouse or product not found
        409: Insufficient stock across all warehouses
    """
    data = request.get_json(silent=True) or {}

    try:
        warehouse_id = int(data["warehouse_id"])
        latitude = float(data["latitude"])
        longitude = float(data["longitude"])
        requests = [
            StockRequest(product_id=int(p["product_id"]), quantity=p["quantity"])
            for p in data["products"]
        ]
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except (TypeError, ValueError) as e:
        return jsonify({"error": f"Invalid request: {e}"}), 400

    try:
        result = stock_service.allocate_stock(warehouse_id, requests, latitude, longitude)
        return jsonify(result.to_dict()), 200

    except StorefrontError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), http_status_for(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to allocate stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.route("/nearest-warehouse", methods=["GET"])
def nearest_warehouse():
    latitude = request.args.get("latitude", type=float)
    longitude = request.args.get("longitude", type=float)
    if latitude is None or longitude is None:
        return jsonify({"error": "latitude and longitude are required"}), 400

    try:
        warehouse = warehouse_service.find_nearest_warehouse(latitude, longitude)
    except StorefrontError as e:
        return jsonify({"error": str(e)}), http_status_for(e)

    distance = warehouse_service.haversine_km(latitude, longitude, warehouse.latitude, warehouse.longitude)
    return jsonify({"warehouse": warehouse.to_dict(), "distance_km": round(distance, 3)}), 200


@stock_bp.route("/products/<int:product_id>", methods=["GET"])
def product_stock_levels(product_id: int):
    try:
        levels = stock_service.get_stock_levels(product_id)
    except StorefrontError as e:
        return jsonify({"error": str(e)}), http_status_for(e)

    return jsonify({
        "product_id": product_id,
        "total_stock": sum(level["stock"] for level in levels),
        "warehouses": levels,
    }), 200


@stock_bp.route("/logs", methods=["GET"])
def stock_logs():
    """List stock log entries, newest first (filters: warehouse_id, product_id, order_id, limit)."""
    limit = max(1, min(request.args.get("limit", default=100, type=int), 500))
    logs = stock_service.list_stock_logs(
        warehouse_id=request.args.get("warehouse_id", type=int),
        product_id=request.args.get("product_id", type=int),
        order_id=request.args.get("order_id", type=int),
        limit=limit,
    )
    return jsonify({"logs": [log.to_dict() for log in logs]}), 200
