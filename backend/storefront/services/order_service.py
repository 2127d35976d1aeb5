# backend/storefront/services/order_service.py
"""
Order lifecycle service: checkout, cancellation, expiry sweep and payment proof.

LIFECYCLE:
1. PENDING: Created by checkout. Stock is already taken from the nearest
   warehouse and the cart is deactivated.
2. PAID: Payment proof uploaded (shipped_at scheduled).
3. CANCELED: Cancelled by the customer/admin or by the expiry sweep. Checkout's
   effects are reversed: stock goes back to the order's warehouse, the cart
   is reactivated and a REFUND is recorded.

Only PENDING orders without a payment proof can be cancelled, whatever the
cancellation source. The status guard is part of the UPDATE statement itself,
so two concurrent cancellations can never both succeed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import select, update

from ..extensions import db
from ..errors import ConflictingStateError, NotFoundError, StorefrontError, ValidationError
from ..models import Address, Cart, Order, OrderItem, Product, TransactionHistory
from ..models.orders import (
    CANCELLATION_SOURCE_SYSTEM,
    CANCELLATION_SOURCE_USER,
    CANCELLATION_SOURCES,
    HISTORY_TYPE_PURCHASE,
    HISTORY_TYPE_REFUND,
    PAYMENT_STATUS_CANCELED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUSES,
)
from ..time_utils import deadline_after, utcnow
from .allocation_planner import StockRequest
from .concurrency import lock_for_update, run_atomic
from .stock_service import apply_allocation, increase_stock
from .warehouse_service import find_nearest_warehouse


@dataclass(frozen=True)
class CheckoutItem:
    product_id: int
    quantity: int
    price: int
    total: int | None = None

    @property
    def line_total(self) -> int:
        return self.total if self.total is not None else self.price * self.quantity


@dataclass(frozen=True)
class CheckoutRequest:
    cart_id: int
    items: list[CheckoutItem]
    latitude: float
    longitude: float
    total: int
    shipping_cost: int = 0
    payment_method: str | None = None
    address_id: int | None = None
    name: str | None = None


@dataclass(frozen=True)
class SweepFailure:
    order_id: int
    reason: str


@dataclass
class SweepReport:
    """Outcome of one expiry sweep."""
    cancelled_order_ids: list[int] = field(default_factory=list)
    failures: list[SweepFailure] = field(default_factory=list)

    @property
    def cancelled_count(self) -> int:
        return len(self.cancelled_order_ids)

    def to_dict(self) -> dict:
        return {
            "cancelled_count": self.cancelled_count,
            "cancelled_order_ids": list(self.cancelled_order_ids),
            "failures": [{"order_id": f.order_id, "reason": f.reason} for f in self.failures],
        }


def _validate_checkout(request: CheckoutRequest) -> None:
    if not request.items:
        raise ValidationError("Checkout requires at least one item")
    for item in request.items:
        if not isinstance(item.quantity, int) or isinstance(item.quantity, bool) or item.quantity <= 0:
            raise ValidationError(f"Quantity for product {item.product_id} must be a positive integer")
        if item.price < 0 or item.line_total < 0:
            raise ValidationError(f"Price for product {item.product_id} cannot be negative")
    if request.total < 0 or request.shipping_cost < 0:
        raise ValidationError("Order total and shipping cost cannot be negative")


def _owned_cart_ids(user_id: int):
    return select(Cart.id).where(Cart.user_id == user_id)


def checkout(user_id: int, request: CheckoutRequest) -> Order:
    """
    Turn the user's active cart into a PENDING order.

    Steps (one unit of work):
    - create the order and its items
    - allocate stock at the warehouse nearest to the requester, pulling
      from other warehouses when it runs short
    - deactivate the cart
    - record a PURCHASE in the transaction history

    Returns:
        Order: The created order

    Raises:
        NotFoundError: If no warehouse exists, or the cart/address is not the user's
        ConflictingStateError: If the cart is no longer active
        ValidationError: If the request is malformed
        InsufficientStockError: If the items cannot be covered by any warehouse
    """
    _validate_checkout(request)

    warehouse = find_nearest_warehouse(request.latitude, request.longitude)
    warehouse_id = warehouse.id

    def _op():
        cart = lock_for_update(db.session.query(Cart).filter_by(id=request.cart_id)).first()
        if not cart or cart.user_id != user_id:
            raise NotFoundError(f"Cart {request.cart_id} not found")
        if not cart.is_active:
            raise ConflictingStateError(f"Cart {cart.id} is no longer active")

        if request.address_id is not None:
            address = db.session.get(Address, request.address_id)
            if not address or address.user_id != user_id:
                raise NotFoundError(f"Address {request.address_id} not found")

        now = utcnow()
        hold_minutes = current_app.config.get("ORDER_PAYMENT_HOLD_MINUTES", 2)

        order = Order(
            name=request.name,
            payment_status=PAYMENT_STATUS_PENDING,
            payment_method=request.payment_method,
            shipping_cost=request.shipping_cost,
            total=request.total,
            expire_payment=deadline_after(hold_minutes, now),
            warehouse_id=warehouse_id,
            cart_id=cart.id,
            address_id=request.address_id,
        )
        db.session.add(order)
        db.session.flush()  # Get ID

        if not order.name:
            order.name = f"INV/{now:%Y%m%d}/{order.id:06d}"

        for item in request.items:
            db.session.add(
                OrderItem(
                    order_id=order.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price=item.price,
                    total=item.line_total,
                )
            )

        apply_allocation(
            warehouse_id,
            [StockRequest(product_id=item.product_id, quantity=item.quantity) for item in request.items],
            request.latitude,
            request.longitude,
            order_id=order.id,
        )

        cart.is_active = False

        db.session.add(
            TransactionHistory(
                user_id=user_id,
                order_id=order.id,
                amount=request.total,
                type=HISTORY_TYPE_PURCHASE,
            )
        )
        db.session.flush()

        return order

    order = run_atomic(_op)
    current_app.logger.info("Order %s created for user %s at warehouse %s", order.id, user_id, warehouse_id)
    return order


def _mark_cancelled(order_id: int, source: str, *conditions) -> bool:
    """
    Conditionally flip a PENDING, proof-less order to CANCELED.

    Returns True when exactly this call performed the transition.
    """
    stmt = (
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_status == PAYMENT_STATUS_PENDING,
            Order.payment_proof.is_(None),
            *conditions,
        )
        .values(
            payment_status=PAYMENT_STATUS_CANCELED,
            cancellation_source=source,
            cancelled_at=utcnow(),
            version_id=Order.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def _reactivate_cart(cart: Cart) -> None:
    # Keep at most one active cart per user
    others = (
        db.session.query(Cart)
        .filter(Cart.user_id == cart.user_id, Cart.id != cart.id, Cart.is_active.is_(True))
        .all()
    )
    for other in others:
        other.is_active = False
    if others:
        current_app.logger.info(
            "Deactivated cart(s) %s of user %s to reactivate cart %s",
            [other.id for other in others], cart.user_id, cart.id,
        )
    cart.is_active = True


def _reverse_checkout(order: Order, user_id: int, reason: str) -> None:
    """Undo checkout's stock, cart and ledger effects for a freshly cancelled order."""
    cart = lock_for_update(db.session.query(Cart).filter_by(id=order.cart_id)).first()
    _reactivate_cart(cart)

    warehouse_name = order.warehouse.name
    for item in order.items:
        product = db.session.get(Product, item.product_id)
        increase_stock(
            product_id=item.product_id,
            warehouse_id=order.warehouse_id,
            quantity=item.quantity,
            description=(
                f"Stock IN {product.name} to {warehouse_name} warehouse {reason}, qty: {item.quantity}"
            ),
            order_id=order.id,
        )

    db.session.add(
        TransactionHistory(
            user_id=user_id,
            order_id=order.id,
            amount=order.total,
            type=HISTORY_TYPE_REFUND,
        )
    )
    db.session.flush()


def cancel_order(user_id: int, order_id: int, source: str = CANCELLATION_SOURCE_USER) -> Order:
    """
    Cancel a PENDING order owned by the user and reverse its checkout.

    Args:
        user_id: Owner of the order's cart
        order_id: Order to cancel
        source: USER, SYSTEM or ADMIN

    Returns:
        Order: The cancelled order

    Raises:
        ValidationError: If source is unknown
        NotFoundError: If the order does not exist or is not the user's
        ConflictingStateError: If the order is paid, already cancelled, or has a payment proof
    """
    if source not in CANCELLATION_SOURCES:
        raise ValidationError(f"Unknown cancellation source: {source}")

    def _op():
        if not _mark_cancelled(order_id, source, Order.cart_id.in_(_owned_cart_ids(user_id))):
            order = (
                db.session.query(Order)
                .filter(Order.id == order_id, Order.cart_id.in_(_owned_cart_ids(user_id)))
                .first()
            )
            if not order:
                raise NotFoundError(f"Order {order_id} not found")
            if order.payment_proof:
                raise ConflictingStateError(
                    f"Order {order_id} cannot be cancelled: payment proof already uploaded"
                )
            raise ConflictingStateError(
                f"Cannot cancel order {order_id} in {order.payment_status} status"
            )

        order = db.session.get(Order, order_id, populate_existing=True)
        _reverse_checkout(order, user_id, "due to order cancellation")
        return order

    order = run_atomic(_op)
    current_app.logger.info("Order %s cancelled by %s (user %s)", order_id, source, user_id)
    return order


def _cancel_expired_order(order_id: int, now: datetime) -> Order:
    if not _mark_cancelled(order_id, CANCELLATION_SOURCE_SYSTEM, Order.expire_payment < now):
        raise ConflictingStateError(f"Order {order_id} is no longer eligible for expiry")

    order = db.session.get(Order, order_id, populate_existing=True)
    _reverse_checkout(order, order.cart.user_id, "for CANCELED ORDER")
    return order


def cancel_expired_orders(now: datetime | None = None) -> SweepReport:
    """
    Cancel every unpaid order whose payment window has passed.

    Eligible: status PENDING, no payment proof, expire_payment < now.
    Each order is reversed in its own unit of work; a failure is logged and
    recorded in the report, and the sweep moves on to the next order.
    """
    if now is None:
        now = utcnow()

    order_ids = [
        order_id
        for (order_id,) in db.session.query(Order.id)
        .filter(
            Order.payment_status == PAYMENT_STATUS_PENDING,
            Order.payment_proof.is_(None),
            Order.expire_payment < now,
        )
        .order_by(Order.id)
        .all()
    ]

    report = SweepReport()
    for order_id in order_ids:
        try:
            run_atomic(lambda: _cancel_expired_order(order_id, now))
        except StorefrontError as exc:
            current_app.logger.warning("Skipped expired order %s: %s", order_id, exc)
            report.failures.append(SweepFailure(order_id=order_id, reason=str(exc)))
        except Exception as exc:
            current_app.logger.exception("Failed to cancel expired order %s", order_id)
            report.failures.append(SweepFailure(order_id=order_id, reason=str(exc)))
        else:
            report.cancelled_order_ids.append(order_id)

    current_app.logger.info(
        "Expiry sweep finished: %d cancelled, %d failed", report.cancelled_count, len(report.failures)
    )
    return report


def upload_payment_proof(user_id: int, order_id: int, filename: str) -> Order:
    """
    Attach a payment proof to a PENDING order and mark it PAID.

    The file itself is stored by the caller; only its public path is kept.

    Raises:
        NotFoundError: If the order does not exist or is not the user's
        ConflictingStateError: If the order is not PENDING
    """
    if not filename:
        raise ValidationError("Payment proof filename is required")

    def _op():
        order = lock_for_update(
            db.session.query(Order).filter(
                Order.id == order_id,
                Order.cart_id.in_(_owned_cart_ids(user_id)),
            )
        ).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")

        if order.payment_status != PAYMENT_STATUS_PENDING:
            raise ConflictingStateError(
                f"Cannot upload payment proof for order in {order.payment_status} status"
            )

        prefix = current_app.config.get("PAYMENT_PROOF_URL_PREFIX", "/assets/payment").rstrip("/")
        delay_minutes = current_app.config.get("ORDER_SHIPPING_DELAY_MINUTES", 2)

        order.payment_proof = f"{prefix}/{filename}"
        order.payment_status = PAYMENT_STATUS_PAID
        order.shipped_at = deadline_after(delay_minutes)
        db.session.flush()
        return order

    return run_atomic(_op)


def get_order_for_user(user_id: int, order_id: int) -> Order:
    order = (
        db.session.query(Order)
        .filter(Order.id == order_id, Order.cart_id.in_(_owned_cart_ids(user_id)))
        .first()
    )
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders_for_user(user_id: int, status: str | None = None) -> list[Order]:
    query = db.session.query(Order).filter(Order.cart_id.in_(_owned_cart_ids(user_id)))
    if status is not None:
        if status not in PAYMENT_STATUSES:
            raise ValidationError(f"Unknown payment status: {status}")
        query = query.filter(Order.payment_status == status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()
