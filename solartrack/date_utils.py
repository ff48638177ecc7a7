"""Shared timestamp normalization helpers."""
from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y/%m/%d", "%Y/%m/%d %H:%M:%S", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def normalize_iso_date(value: Any) -> str | None:
    """Convert mixed date inputs into ISO strings.

    Blank values become None. Unparseable text is kept verbatim so a filled-in
    field still counts as set.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _format_datetime_utc(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return None
        if _DATE_ONLY_RE.match(token):
            try:
                return date.fromisoformat(token).isoformat()
            except ValueError:
                return token
        parsed_dt = _parse_datetime_token(token)
        if parsed_dt:
            return _format_datetime_utc(parsed_dt)
        return token
    return None


def utc_now_iso() -> str:
    return _format_datetime_utc(datetime.now(timezone.utc))
