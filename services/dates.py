# services/dates.py
from __future__ import annotations

from datetime import date as _date, datetime, timedelta
from typing import Any, Optional


def parse_iso_date(value: Any) -> Optional[_date]:
    """Parse an ISO calendar date (a full ISO datetime is accepted too). None if unparseable."""
    if isinstance(value, _date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    try:
        return _date.fromisoformat(s)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        return None


def inclusive_day_span(start: Any, end: Any) -> Optional[int]:
    """Number of calendar days from start to end, both included; None when unknown or non-positive."""
    sd = parse_iso_date(start)
    ed = parse_iso_date(end)
    if sd is None or ed is None:
        return None
    days = (ed - sd).days + 1
    return days if days > 0 else None


def shift_date(start: Any, offset: int) -> Optional[str]:
    sd = parse_iso_date(start)
    if sd is None:
        return None
    return (sd + timedelta(days=offset)).isoformat()


def today_iso() -> str:
    return _date.today().isoformat()
