# Overview: Pure allocation planning for multi-warehouse order fulfilment (no database access).

"""
Allocation Planning Rules (authoritative)

Given a target warehouse, the requested quantity per product, a snapshot of
stock per (product, warehouse) and each warehouse's distance from the
requester:

- deficit = requested - stock at target (never below zero).
- Candidate sources are every OTHER warehouse holding the product with stock > 0,
  ordered by distance ascending; equal distances keep snapshot order.
- Pull min(source stock, remaining deficit) from each source in turn until
  the deficit is covered.
- A deficit still open after all sources are exhausted is an error; the plan
  is all-or-nothing.

Requests are planned one after another against a running copy of the
snapshot, so a product requested twice sees the effect of the first request.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping

from ..errors import InsufficientStockError, ValidationError


@dataclass(frozen=True)
class StockRequest:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class TransferInstruction:
    """Move `quantity` units of a product from one warehouse to another."""
    product_id: int
    from_warehouse_id: int
    to_warehouse_id: int
    quantity: int


def _validate_request(request: StockRequest) -> None:
    quantity = request.quantity
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError(
            f"Quantity for product {request.product_id} must be a positive integer"
        )


def plan_allocation(
    target_warehouse_id: int,
    requests: Iterable[StockRequest],
    stock: Mapping[tuple[int, int], int],
    distances: Mapping[int, float],
) -> list[TransferInstruction]:
    """
    Plan the transfers needed for the target warehouse to cover every request.

    Args:
        target_warehouse_id: Warehouse that will fulfil the requests
        requests: Requested quantities, in processing order
        stock: On-hand stock keyed by (product_id, warehouse_id)
        distances: Distance of each warehouse from the requester; warehouses
            without a distance are tried last

    Returns:
        list[TransferInstruction]: Transfers in the order they must be applied

    Raises:
        ValidationError: If a requested quantity is not a positive integer
        InsufficientStockError: If all warehouses together cannot cover a request
    """
    snapshot = dict(stock)
    plan: list[TransferInstruction] = []

    for request in requests:
        _validate_request(request)
        product_id = request.product_id
        target_key = (product_id, target_warehouse_id)
        local_stock = snapshot.get(target_key, 0)
        deficit = max(0, request.quantity - local_stock)

        if deficit > 0:
            sources = [
                (warehouse_id, qty)
                for (pid, warehouse_id), qty in snapshot.items()
                if pid == product_id and warehouse_id != target_warehouse_id and qty > 0
            ]
            # sorted() is stable: equal distances keep snapshot order
            sources.sort(key=lambda source: distances.get(source[0], math.inf))

            for warehouse_id, available in sources:
                if deficit <= 0:
                    break
                quantity = min(available, deficit)
                plan.append(
                    TransferInstruction(
                        product_id=product_id,
                        from_warehouse_id=warehouse_id,
                        to_warehouse_id=target_warehouse_id,
                        quantity=quantity,
                    )
                )
                snapshot[(product_id, warehouse_id)] = available - quantity
                local_stock += quantity
                deficit -= quantity

            if deficit > 0:
                raise InsufficientStockError(
                    product_id=product_id,
                    requested=request.quantity,
                    available=local_stock,
                )

        snapshot[target_key] = local_stock - request.quantity

    return plan
