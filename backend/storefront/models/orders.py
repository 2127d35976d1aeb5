from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Payment status values
PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_PAID = "PAID"
PAYMENT_STATUS_SHIPPED = "SHIPPED"
PAYMENT_STATUS_DELIVERED = "DELIVERED"
PAYMENT_STATUS_CANCELED = "CANCELED"
PAYMENT_STATUS_FAILED = "FAILED"

PAYMENT_STATUSES = (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_SHIPPED,
    PAYMENT_STATUS_DELIVERED,
    PAYMENT_STATUS_CANCELED,
    PAYMENT_STATUS_FAILED,
)

# Who initiated a cancellation
CANCELLATION_SOURCE_USER = "USER"
CANCELLATION_SOURCE_SYSTEM = "SYSTEM"
CANCELLATION_SOURCE_ADMIN = "ADMIN"

CANCELLATION_SOURCES = (
    CANCELLATION_SOURCE_USER,
    CANCELLATION_SOURCE_SYSTEM,
    CANCELLATION_SOURCE_ADMIN,
)

# TransactionHistory.type values
HISTORY_TYPE_PURCHASE = "PURCHASE"
HISTORY_TYPE_REFUND = "REFUND"


class Order(db.Model):
    """
    Customer order created at checkout.

    LIFECYCLE (payment_status):
    1. PENDING: Created by checkout, stock already committed, awaiting payment proof
    2. PAID: Payment proof uploaded
    3. SHIPPED / DELIVERED: Fulfilment progress
    4. CANCELED: Cancelled by the customer, an admin, or the expiry sweep
       (stock and cart effects of checkout are reversed)
    5. FAILED: Terminal failure reported by the payment side

    Only PENDING orders without a payment proof can be cancelled.
    Orders are never deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_expire", "payment_status", "expire_payment"),
        db.Index("ix_orders_cart_status", "cart_id", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Invoice label, e.g. "INV/20261019/000042"
    name = db.Column(db.String(64), nullable=True, unique=True)

    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    payment_method = db.Column(db.String(32), nullable=True)
    payment_proof = db.Column(db.String(255), nullable=True)

    shipping_cost = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False, default=0)

    expire_payment = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=True)

    cancellation_source = db.Column(db.String(16), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    warehouse = db.relationship("Warehouse")
    cart = db.relationship("Cart", backref=db.backref("orders", lazy=True))
    address = db.relationship("Address")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} name={self.name!r} status={self.payment_status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_proof": self.payment_proof,
            "shipping_cost": self.shipping_cost,
            "total": self.total,
            "expire_payment": to_utc_z(self.expire_payment),
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "warehouse_id": self.warehouse_id,
            "cart_id": self.cart_id,
            "address_id": self.address_id,
            "cancellation_source": self.cancellation_source,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line item of an order. Written once at checkout, never updated."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Integer, nullable=False)
    total = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price": self.price,
            "total": self.total,
        }


class TransactionHistory(db.Model):
    """
    Append-only money ledger per user.

    PURCHASE is written at checkout; REFUND when the order is cancelled.
    """
    __tablename__ = "transaction_histories"
    __table_args__ = (
        db.Index("ix_txn_history_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "amount": self.amount,
            "type": self.type,
            "created_at": to_utc_z(self.created_at),
        }
