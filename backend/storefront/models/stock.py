from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# StockTransfer.status values
TRANSFER_STATUS_PENDING = "PENDING"
TRANSFER_STATUS_COMPLETED = "COMPLETED"
TRANSFER_STATUS_CANCELED = "CANCELED"

# StockTransferLog.transaction_type values
STOCK_LOG_IN = "IN"
STOCK_LOG_OUT = "OUT"


class StockTransfer(db.Model):
    """
    Inter-warehouse stock movement.

    Automatic transfers made during allocation are created directly in
    COMPLETED state with stock_process == stock_request; the matching OUT and
    IN StockTransferLog rows reference this record.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.Index("ix_stock_transfers_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    from_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    to_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    stock_request = db.Column(db.Integer, nullable=False)
    stock_process = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_PENDING, index=True)
    note = db.Column(db.String(255), nullable=True)

    # Set when the transfer was triggered by an order's allocation
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    from_warehouse = db.relationship("Warehouse", foreign_keys=[from_warehouse_id])
    to_warehouse = db.relationship("Warehouse", foreign_keys=[to_warehouse_id])

    def __repr__(self) -> str:
        return (
            f"<StockTransfer id={self.id} product_id={self.product_id} "
            f"{self.from_warehouse_id}->{self.to_warehouse_id} qty={self.stock_process}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "from_warehouse_id": self.from_warehouse_id,
            "to_warehouse_id": self.to_warehouse_id,
            "stock_request": self.stock_request,
            "stock_process": self.stock_process,
            "status": self.status,
            "note": self.note,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockTransferLog(db.Model):
    """
    Append-only stock audit entry.

    One row per stock change: OUT for decrements (orders, transfer sources),
    IN for increments (transfer destinations, cancellations).
    Rows are never updated or deleted.
    """
    __tablename__ = "stock_transfer_logs"
    __table_args__ = (
        db.Index("ix_stock_logs_warehouse_created", "warehouse_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quantity = db.Column(db.Integer, nullable=False)
    transaction_type = db.Column(db.String(8), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)

    product_stock_id = db.Column(db.Integer, db.ForeignKey("product_stocks.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    stock_transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product_stock = db.relationship("ProductStock", backref=db.backref("logs", lazy=True))
    stock_transfer = db.relationship("StockTransfer", backref=db.backref("logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quantity": self.quantity,
            "transaction_type": self.transaction_type,
            "description": self.description,
            "product_stock_id": self.product_stock_id,
            "warehouse_id": self.warehouse_id,
            "stock_transfer_id": self.stock_transfer_id,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
        }
