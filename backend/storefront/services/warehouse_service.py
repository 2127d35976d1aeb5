# Overview: Service-layer operations for warehouse lookup and distance ordering.

from __future__ import annotations

import math
from typing import Iterable

from ..extensions import db
from ..errors import NotFoundError
from ..models import Warehouse


EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates, in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    # Rounding can push a just past 1.0 for near-antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def find_nearest_warehouse(latitude: float, longitude: float) -> Warehouse:
    """
    Return the warehouse closest to the given coordinate.

    Ties keep the first warehouse found (primary-key order).

    Raises:
        NotFoundError: If no warehouse exists
    """
    nearest = None
    nearest_distance = None
    for warehouse in db.session.query(Warehouse).order_by(Warehouse.id).all():
        distance = haversine_km(latitude, longitude, warehouse.latitude, warehouse.longitude)
        if nearest_distance is None or distance < nearest_distance:
            nearest = warehouse
            nearest_distance = distance

    if nearest is None:
        raise NotFoundError("No warehouse found")
    return nearest


def warehouse_distances(
    latitude: float,
    longitude: float,
    warehouse_ids: Iterable[int] | None = None,
) -> dict[int, float]:
    """Map warehouse id -> distance (km) from the given coordinate."""
    query = db.session.query(Warehouse)
    if warehouse_ids is not None:
        ids = list(warehouse_ids)
        if not ids:
            return {}
        query = query.filter(Warehouse.id.in_(ids))

    return {
        warehouse.id: haversine_km(latitude, longitude, warehouse.latitude, warehouse.longitude)
        for warehouse in query.all()
    }
