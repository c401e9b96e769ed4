#!filepath: src/canopticon_app/utils/dates.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_iso(dt: datetime) -> str:
    """Fixed width UTC ISO string, safe for lexical comparison in SQL."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now_iso() -> str:
    return to_iso(utc_now())


def iso_ago(*, minutes: float = 0, hours: float = 0, days: float = 0) -> str:
    return to_iso(utc_now() - timedelta(minutes=minutes, hours=hours, days=days))


def parse_iso(text: Optional[str]) -> Optional[datetime]:
    raw = str(text or "").strip()
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_any_date_to_iso(text: Optional[str]) -> Optional[str]:
    """Parse RFC 822 or ISO 8601 dates into UTC ISO, None when unparseable."""
    raw = str(text or "").strip()
    if not raw:
        return None

    try:
        dt = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        dt = None

    if dt is None:
        dt = parse_iso(raw)
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return to_iso(dt)
