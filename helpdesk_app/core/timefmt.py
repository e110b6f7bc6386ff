# helpdesk_app/core/timefmt.py
"""
Datetime helpers.

Everything is stored as ISO-8601 UTC text (same format on SQLite and
Postgres); replies to users show dates in the Brazilian dd/mm/yyyy style.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time in UTC, tz-aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to UTC. Naive values are assumed to already be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string in UTC (seconds precision), or None."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="seconds")


def now_iso() -> str:
    return to_iso(utcnow())


def parse_iso(value) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into a tz-aware UTC datetime.

    Postgres drivers may hand back datetime objects directly; those are
    normalized too. Returns None when the value is empty or unparseable.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        dt = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return ensure_utc(dt)


def iso_days_ago(days: int) -> str:
    return to_iso(utcnow() - timedelta(days=days))


def human_br(value) -> str:
    """
    '26/11/2025 14:30' style for chat replies. Accepts datetime or ISO text.
    Returns '-' when the value is missing.
    """
    dt = parse_iso(value)
    if dt is None:
        return "-"
    return dt.strftime("%d/%m/%Y %H:%M")


def human_date_br(value) -> str:
    dt = parse_iso(value)
    if dt is None:
        return "-"
    return dt.strftime("%d/%m/%Y")
