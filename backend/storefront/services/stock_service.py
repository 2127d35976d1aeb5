# Overview: Service-layer operations for warehouse stock; applies allocation plans and writes stock logs.

"""
Stock Invariants (authoritative)

- ProductStock.stock is never negative after a commit.
- Every stock change writes exactly one StockTransferLog row in the same
  transaction: OUT for a decrement, IN for an increment.
- An automatic transfer writes one OUT log at the source, one IN log at the
  destination, and one COMPLETED StockTransfer; the OUT and IN quantities
  are always equal.
- allocate_stock is all-or-nothing: if any product cannot be covered, none
  of the transfers or decrements made for the call survive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError
from ..models import Product, ProductStock, StockTransfer, StockTransferLog, Warehouse
from ..models.stock import STOCK_LOG_IN, STOCK_LOG_OUT, TRANSFER_STATUS_COMPLETED
from .allocation_planner import StockRequest, TransferInstruction, plan_allocation
from .concurrency import lock_for_update, run_atomic
from .warehouse_service import warehouse_distances


@dataclass
class AllocationResult:
    warehouse_id: int
    transfers: list[StockTransfer] = field(default_factory=list)
    logs: list[StockTransferLog] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "warehouse_id": self.warehouse_id,
            "transfers": [transfer.to_dict() for transfer in self.transfers],
            "logs": [log.to_dict() for log in self.logs],
        }


def append_stock_log(
    *,
    product_stock: ProductStock,
    quantity: int,
    transaction_type: str,
    description: str,
    stock_transfer_id: int | None = None,
    order_id: int | None = None,
) -> StockTransferLog:
    """
    Append-only stock log entry.

    - No updates/deletes of existing entries.
    - Written in the same DB transaction as the stock change it records.
    """
    log = StockTransferLog(
        quantity=quantity,
        transaction_type=transaction_type,
        description=description[:255],
        product_stock_id=product_stock.id,
        warehouse_id=product_stock.warehouse_id,
        stock_transfer_id=stock_transfer_id,
        order_id=order_id,
    )
    db.session.add(log)
    db.session.flush()  # ensures log.id is assigned without committing
    return log


def _get_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")
    return warehouse


def _get_products(product_ids: Iterable[int]) -> dict[int, Product]:
    ids = set(product_ids)
    products = {
        product.id: product
        for product in db.session.query(Product).filter(Product.id.in_(ids)).all()
    }
    missing = ids - set(products)
    if missing:
        raise NotFoundError(f"Product {min(missing)} not found")
    return products


def _lock_stock_rows(product_ids: Iterable[int]) -> dict[tuple[int, int], ProductStock]:
    query = (
        db.session.query(ProductStock)
        .filter(ProductStock.product_id.in_(set(product_ids)))
        .order_by(ProductStock.id)
    )
    return {(row.product_id, row.warehouse_id): row for row in lock_for_update(query).all()}


def _get_or_create_stock(product_id: int, warehouse_id: int) -> ProductStock:
    query = db.session.query(ProductStock).filter_by(product_id=product_id, warehouse_id=warehouse_id)
    row = lock_for_update(query).first()
    if row is None:
        row = ProductStock(product_id=product_id, warehouse_id=warehouse_id, stock=0)
        db.session.add(row)
        db.session.flush()
    return row


def increase_stock(
    *,
    product_id: int,
    warehouse_id: int,
    quantity: int,
    description: str,
    order_id: int | None = None,
) -> StockTransferLog:
    """Add units to a warehouse's stock (creating the row if needed) and log IN."""
    row = _get_or_create_stock(product_id, warehouse_id)
    row.stock += quantity
    db.session.flush()

    return append_stock_log(
        product_stock=row,
        quantity=quantity,
        transaction_type=STOCK_LOG_IN,
        description=description,
        order_id=order_id,
    )


def _apply_transfer(
    instruction: TransferInstruction,
    rows: dict[tuple[int, int], ProductStock],
    products: dict[int, Product],
    warehouses: dict[int, Warehouse],
    order_id: int | None,
) -> tuple[StockTransfer, list[StockTransferLog]]:
    product = products[instruction.product_id]
    source_wh = warehouses[instruction.from_warehouse_id]
    target_wh = warehouses[instruction.to_warehouse_id]
    quantity = instruction.quantity

    source = rows[(instruction.product_id, instruction.from_warehouse_id)]
    if source.stock < quantity:
        raise InsufficientStockError(
            product_id=instruction.product_id,
            requested=quantity,
            available=source.stock,
        )

    destination = rows.get((instruction.product_id, instruction.to_warehouse_id))
    if destination is None:
        destination = ProductStock(
            product_id=instruction.product_id,
            warehouse_id=instruction.to_warehouse_id,
            stock=0,
        )
        db.session.add(destination)
        rows[(instruction.product_id, instruction.to_warehouse_id)] = destination

    transfer = StockTransfer(
        product_id=instruction.product_id,
        from_warehouse_id=instruction.from_warehouse_id,
        to_warehouse_id=instruction.to_warehouse_id,
        stock_request=quantity,
        stock_process=quantity,
        status=TRANSFER_STATUS_COMPLETED,
        note="Stock transfer for order fulfillment",
        order_id=order_id,
    )
    db.session.add(transfer)

    source.stock -= quantity
    destination.stock += quantity
    db.session.flush()

    out_log = append_stock_log(
        product_stock=source,
        quantity=quantity,
        transaction_type=STOCK_LOG_OUT,
        description=(
            f"Stock OUT {product.name} from {source_wh.name} to {target_wh.name}, "
            f"qty: {quantity} for ORDER. (Automatic Transfer)"
        ),
        stock_transfer_id=transfer.id,
        order_id=order_id,
    )
    in_log = append_stock_log(
        product_stock=destination,
        quantity=quantity,
        transaction_type=STOCK_LOG_IN,
        description=(
            f"Stock IN {product.name} to {target_wh.name} from {source_wh.name}, "
            f"qty: {quantity} for ORDER. (Automatic Transfer)"
        ),
        stock_transfer_id=transfer.id,
        order_id=order_id,
    )

    current_app.logger.info(
        "Automatic transfer of %d x product %d from warehouse %d to warehouse %d",
        quantity, instruction.product_id, instruction.from_warehouse_id, instruction.to_warehouse_id,
    )
    return transfer, [out_log, in_log]


def apply_allocation(
    warehouse_id: int,
    requests: list[StockRequest],
    latitude: float,
    longitude: float,
    *,
    order_id: int | None = None,
) -> AllocationResult:
    """
    Top up the target warehouse from the nearest other warehouses, then
    decrement it by each requested quantity.

    Does NOT commit; callers run it inside their own unit of work
    (see allocate_stock and order_service.checkout).

    Raises:
        NotFoundError: If the warehouse or a product does not exist
        ValidationError: If a quantity is not a positive integer
        InsufficientStockError: If the request cannot be covered
    """
    target_wh = _get_warehouse(warehouse_id)
    product_ids = [request.product_id for request in requests]
    products = _get_products(product_ids)
    rows = _lock_stock_rows(product_ids)

    snapshot = {key: row.stock for key, row in rows.items()}
    distances = warehouse_distances(latitude, longitude)
    plan = plan_allocation(warehouse_id, requests, snapshot, distances)

    involved_ids = {warehouse_id} | {instruction.from_warehouse_id for instruction in plan}
    warehouses = {
        wh.id: wh for wh in db.session.query(Warehouse).filter(Warehouse.id.in_(involved_ids)).all()
    }

    result = AllocationResult(warehouse_id=warehouse_id)
    for instruction in plan:
        transfer, logs = _apply_transfer(instruction, rows, products, warehouses, order_id)
        result.transfers.append(transfer)
        result.logs.extend(logs)

    for request in requests:
        row = rows.get((request.product_id, warehouse_id))
        available = row.stock if row is not None else 0
        if available < request.quantity:
            raise InsufficientStockError(
                product_id=request.product_id,
                requested=request.quantity,
                available=available,
            )

        row.stock -= request.quantity
        db.session.flush()

        product = products[request.product_id]
        if order_id is not None:
            description = f"Stock OUT {product.name} from {target_wh.name} for ORDER, qty: {request.quantity}"
        else:
            description = f"Stock OUT {product.name} from {target_wh.name} for ALLOCATION, qty: {request.quantity}"

        result.logs.append(
            append_stock_log(
                product_stock=row,
                quantity=request.quantity,
                transaction_type=STOCK_LOG_OUT,
                description=description,
                order_id=order_id,
            )
        )

    return result


def allocate_stock(
    warehouse_id: int,
    requests: list[StockRequest],
    latitude: float,
    longitude: float,
) -> AllocationResult:
    """
    Ensure a warehouse can cover the requested quantities and commit the decrement.

    Args:
        warehouse_id: Warehouse fulfilling the request
        requests: Product quantities to take from that warehouse
        latitude: Requester latitude (orders candidate sources by distance)
        longitude: Requester longitude

    Returns:
        AllocationResult: Transfers made and logs written

    Raises:
        NotFoundError, ValidationError, InsufficientStockError; on any error
        every change made by the call is rolled back.
    """
    def _op():
        return apply_allocation(warehouse_id, requests, latitude, longitude)

    return run_atomic(_op)


def get_stock_levels(product_id: int) -> list[dict]:
    """Per-warehouse stock for one product."""
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")

    rows = (
        db.session.query(ProductStock)
        .filter_by(product_id=product_id)
        .order_by(ProductStock.warehouse_id)
        .all()
    )
    return [row.to_dict() for row in rows]


def list_stock_logs(
    *,
    warehouse_id: int | None = None,
    product_id: int | None = None,
    order_id: int | None = None,
    limit: int = 100,
) -> list[StockTransferLog]:
    query = db.session.query(StockTransferLog)
    if warehouse_id is not None:
        query = query.filter(StockTransferLog.warehouse_id == warehouse_id)
    if product_id is not None:
        query = query.join(ProductStock, StockTransferLog.product_stock_id == ProductStock.id).filter(
            ProductStock.product_id == product_id
        )
    if order_id is not None:
        query = query.filter(StockTransferLog.order_id == order_id)
    return query.order_by(StockTransferLog.id.desc()).limit(limit).all()
