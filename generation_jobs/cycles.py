"""Cycle keys: the logical unit of work a requester may have one active job for."""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from dateutil import tz


def week_cycle_key(now: Optional[datetime] = None, timezone: Optional[str] = None) -> str:
    """
    Return the Monday-start week containing ``now`` as ``YYYY-MM-DD``.

    The week is computed in ``timezone`` when it names a known zone, so a
    requester late on Sunday in their own zone is still in that week. Naive
    datetimes are taken as UTC.
    """
    if now is None:
        now = datetime.now(tz.UTC)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=tz.UTC)

    zone = tz.gettz(timezone) if timezone else None
    local = now.astimezone(zone or tz.UTC)

    week_start = local.date() - timedelta(days=local.weekday())
    return week_start.isoformat()


def cycle_key_for_snapshot(
    input_snapshot: Dict[str, Any], now: Optional[datetime] = None
) -> str:
    """Derive the default cycle key from the snapshot's ``timezone`` field."""
    timezone = input_snapshot.get("timezone")
    if not isinstance(timezone, str):
        timezone = None
    return week_cycle_key(now, timezone)
