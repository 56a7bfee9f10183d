# promo_api/core/clock.py
from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every promotion timestamp is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
