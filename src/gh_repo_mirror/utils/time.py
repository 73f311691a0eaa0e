from __future__ import annotations

from datetime import datetime, timezone


def parse_datetime(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.replace("Z", "+00:00")
        return datetime.fromisoformat(text)
    raise ValueError(f"Unsupported datetime value: {value!r}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_since(value: datetime | str) -> str:
    dt = parse_datetime(value)
    if dt is None:
        raise ValueError("since value is required")
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def max_datetime(current: datetime | None, candidate) -> datetime | None:
    parsed = parse_datetime(candidate)
    if parsed is None:
        return current
    if current is None or parsed > parse_datetime(current):
        return parsed
    return current
