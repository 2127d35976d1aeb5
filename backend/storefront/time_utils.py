from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def deadline_after(minutes: int | float, now: Optional[datetime] = None) -> datetime:
    """
    Naive-UTC moment `minutes` after `now` (defaults to utcnow()).

    Used for payment windows (expire_payment) and scheduled shipping (shipped_at).
    """
    if now is None:
        now = utcnow()
    return now + timedelta(minutes=minutes)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with trailing 'Z', seconds precision. Naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
