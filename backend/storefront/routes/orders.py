# backend/storefront/routes/orders.py
"""
Order API routes: checkout, cancellation, payment proof upload and order reads.
"""
import os
import uuid

from flask import Blueprint, request, jsonify, g, current_app
from werkzeug.utils import secure_filename

from storefront.extensions import db
from storefront.decorators import require_user
from storefront.errors import StorefrontError, ValidationError, http_status_for
from storefront.models.orders import CANCELLATION_SOURCE_USER
from storefront.services import order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _parse_checkout(data: dict) -> order_service.CheckoutRequest:
    items = [
        order_service.CheckoutItem(
            product_id=int(item["product_id"]),
            quantity=item["quantity"],
            price=int(item["price"]),
            total=int(item["total"]) if item.get("total") is not None else None,
        )
        for item in data["items"]
    ]
    return order_service.CheckoutRequest(
        cart_id=int(data["cart_id"]),
        items=items,
        latitude=float(data["latitude"]),
        longitude=float(data["longitude"]),
        total=int(data["total"]),
        shipping_cost=int(data.get("shipping_cost") or 0),
        payment_method=data.get("payment_method"),
        address_id=int(data["address_id"]) if data.get("address_id") is not None else None,
        name=data.get("name"),
    )


@orders_bp.route("/checkout", methods=["POST"])
@require_user
def checkout():
    """
    Create an order from the user's active cart.

    Request body:
    {
        "cart_id": int,
        "address_id": int (optional),
        "payment_method": str (optional),
        "shipping_cost": int (optional),
        "total": int,
        "latitude": float,
        "longitude": float,
        "items": [{"product_id": int, "quantity": int, "price": int, "total": int (optional)}]
    }

    Returns:
        201: Order created
        400: Invalid request
        404: Cart, address or warehouse not found
        409: Cart inactive or insufficient stock
    """
    data = request.get_json(silent=True) or {}

    try:
        checkout_request = _parse_checkout(data)
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except (TypeError, ValueError) as e:
        return jsonify({"error": f"Invalid request: {e}"}), 400

    try:
        order = order_service.checkout(g.current_user.id, checkout_request)
        return jsonify({"order": order.to_dict(include_items=True)}), 201

    except StorefrontError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), http_status_for(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to checkout")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.route("", methods=["GET"])
@require_user
def list_orders():
    """List the current user's orders, optionally filtered by ?status=."""
    try:
        orders = order_service.list_orders_for_user(g.current_user.id, status=request.args.get("status"))
        return jsonify({"orders": [order.to_dict() for order in orders]}), 200
    except StorefrontError as e:
        return jsonify({"error": str(e)}), http_status_for(e)


@orders_bp.route("/<int:order_id>", methods=["GET"])
@require_user
def get_order(order_id: int):
    try:
        order = order_service.get_order_for_user(g.current_user.id, order_id)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except StorefrontError as e:
        return jsonify({"error": str(e)}), http_status_for(e)


@orders_bp.route("/<int:order_id>/cancel", methods=["POST"])
@require_user
def cancel_order(order_id: int):
    """
    Cancel a PENDING order and return its stock.

    Returns:
        200: Order cancelled
        404: Order not found
        409: Order can no longer be cancelled
    """
    try:
        order = order_service.cancel_order(
            user_id=g.current_user.id,
            order_id=order_id,
            source=CANCELLATION_SOURCE_USER,
        )
        return jsonify({"order": order.to_dict(include_items=True)}), 200

    except StorefrontError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), http_status_for(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


def _allowed_proof_extension(filename: str) -> str:
    _, ext = os.path.splitext(filename)
    ext = ext.lower().lstrip(".")
    allowed = current_app.config.get("PAYMENT_PROOF_ALLOWED_EXTENSIONS", set())
    if ext not in allowed:
        raise ValidationError(
            f"Unsupported file type '{ext or filename}'. Allowed: {', '.join(sorted(allowed))}"
        )
    return ext


@orders_bp.route("/<int:order_id>/payment-proof", methods=["POST"])
@require_user
def upload_payment_proof(order_id: int):
    """
    Upload a payment proof image (multipart field "file") and mark the order PAID.

    Returns:
        200: Proof stored, order PAID
        400: Missing or unsupported file
        404: Order not found
        409: Order not PENDING
        413: File too large (MAX_CONTENT_LENGTH)
    """
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return jsonify({"error": "Missing required file: file"}), 400

    try:
        ext = _allowed_proof_extension(secure_filename(upload.filename))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    filename = f"{uuid.uuid4().hex}.{ext}"
    folder = current_app.config["PAYMENT_PROOF_UPLOAD_FOLDER"]
    os.makedirs(folder, exist_ok=True)
    path = os.path.join(folder, filename)
    upload.save(path)

    try:
        order = order_service.upload_payment_proof(
            user_id=g.current_user.id,
            order_id=order_id,
            filename=filename,
        )
        return jsonify({"order": order.to_dict()}), 200

    except StorefrontError as e:
        db.session.rollback()
        os.remove(path)
        return jsonify({"error": str(e)}), http_status_for(e)
    except Exception:
        db.session.rollback()
        os.remove(path)
        current_app.logger.exception("Failed to upload payment proof")
        return jsonify({"error": "Internal server error"}), 500
