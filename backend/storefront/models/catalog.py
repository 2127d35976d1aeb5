from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    Price is stored in the smallest currency unit. Stock is not kept on the
    product; see ProductStock for per-warehouse quantities.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Warehouse(db.Model):
    """
    Physical stock-holding location.

    Latitude/longitude are static reference data used by the nearest-warehouse
    lookup and by the allocator to order candidate transfer sources.
    """
    __tablename__ = "warehouses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_at": to_utc_z(self.created_at),
        }


class ProductStock(db.Model):
    """
    On-hand quantity of one product at one warehouse.

    INVARIANTS:
    - Exactly one row per (product_id, warehouse_id).
    - stock is never negative after a committed transaction (CHECK constraint
      backs up the application-level checks).
    - Every change to stock is paired with a StockTransferLog row written in
      the same transaction.

    Concurrent writers are detected through version_id: an UPDATE issued from
    a stale read matches zero rows and raises StaleDataError, which the
    service layer retries.
    """
    __tablename__ = "product_stocks"
    __table_args__ = (
        db.UniqueConstraint("product_id", "warehouse_id", name="uq_product_stocks_product_warehouse"),
        db.CheckConstraint("stock >= 0", name="ck_product_stocks_stock_non_negative"),
        db.Index("ix_product_stocks_product_stock", "product_id", "stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stocks", lazy=True))
    warehouse = db.relationship("Warehouse", backref=db.backref("stocks", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<ProductStock id={self.id} product_id={self.product_id} "
            f"warehouse_id={self.warehouse_id} stock={self.stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "stock": self.stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
