from __future__ import annotations

import datetime as dt
import math


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def days_ago_iso(days: float, *, now: dt.datetime | None = None) -> str:
    reference = now or dt.datetime.now(dt.UTC)
    return (reference - dt.timedelta(days=days)).isoformat()


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def format_date(value: str | None) -> str:
    if not value:
        return ""
    parsed = parse_iso8601(value)
    if parsed is None:
        return value
    return parsed.date().isoformat()
