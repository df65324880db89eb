from __future__ import annotations

import re
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Callable, Iterable, Mapping, Optional

from services.normalize_service import clean_text, row_value


DEFAULT_WINDOW_MINUTES = 5
DEFAULT_TIME = "00:00:00"
UNKNOWN = "Unknown"
RESERVATION_MARKER = "booking request"

_DATE_SPLIT = re.compile(r"[ T]")
_SHORT_HOUR = re.compile(r"^\d:\d{2}")


def _split_date_time(raw: str) -> tuple[str, str]:
    parts = raw.strip().split(" ", 1)
    date_part = parts[0]
    time_part = parts[1].strip() if len(parts) > 1 else ""
    return date_part, time_part or DEFAULT_TIME


def _from_iso(candidate: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def _int_parts(values: list[str]) -> Optional[tuple[int, int, int]]:
    if len(values) != 3:
        return None
    cleaned = [value.strip() for value in values]
    if not all(value.isdigit() for value in cleaned):
        return None
    return int(cleaned[0]), int(cleaned[1]), int(cleaned[2])


def _combine(year: int, month: int, day: int, time_part: str) -> Optional[datetime]:
    # Upstream sometimes drops the leading zero of the hour ("9:03").
    if _SHORT_HOUR.match(time_part):
        time_part = f"0{time_part}"
    return _from_iso(f"{year:04d}-{month:02d}-{day:02d}T{time_part}")


def _parse_direct(raw: str) -> Optional[datetime]:
    return _from_iso(raw.strip().replace(" ", "T", 1))


def _parse_day_first(raw: str) -> Optional[datetime]:
    date_part, time_part = _split_date_time(raw)
    if "/" not in date_part:
        return None
    parts = _int_parts(date_part.split("/"))
    if not parts:
        return None
    day, month, year = parts
    return _combine(year, month, day, time_part)


def _parse_year_first(raw: str) -> Optional[datetime]:
    date_part, time_part = _split_date_time(raw)
    if "-" not in date_part:
        return None
    parts = _int_parts(date_part.split("-"))
    if not parts:
        return None
    year, month, day = parts
    return _combine(year, month, day, time_part)


PARSE_STRATEGIES: list[Callable[[str], Optional[datetime]]] = [
    _parse_direct,
    _parse_day_first,
    _parse_year_first,
]


def parse_start_datetime(raw: Any, tz: tzinfo = timezone.utc) -> Optional[datetime]:
    text = clean_text(raw)
    if not text:
        return None
    for strategy in PARSE_STRATEGIES:
        parsed = strategy(text)
        if parsed is None:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=tz)
        return parsed
    return None


def format_instant(value: datetime) -> str:
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def bucket_timestamp(raw: Any, window_minutes: int = DEFAULT_WINDOW_MINUTES, tz: tzinfo = timezone.utc) -> str:
    """Floor a start timestamp to its window; unparseable input is returned unchanged."""
    if raw is None or str(raw) == "":
        return UNKNOWN
    parsed = parse_start_datetime(raw, tz)
    if parsed is None:
        return str(raw)
    window_ms = max(int(window_minutes), 1) * 60 * 1000
    epoch_ms = int(parsed.timestamp() * 1000)
    floored = (epoch_ms // window_ms) * window_ms
    return format_instant(datetime.fromtimestamp(floored / 1000, tz=timezone.utc))


def parse_start_date_parts(raw: Any) -> Optional[tuple[int, int, int]]:
    text = clean_text(raw)
    if not text:
        return None
    date_part = _DATE_SPLIT.split(text, 1)[0]
    if "/" in date_part:
        parts = _int_parts(date_part.split("/"))
        if parts:
            day, month, year = parts
            return year, month, day
        return None
    if "-" in date_part:
        parts = _int_parts(date_part.split("-"))
        if parts:
            return parts
        return None
    parsed = parse_start_datetime(text)
    if parsed is None:
        return None
    return parsed.year, parsed.month, parsed.day


def is_same_day_start(raw: Any, day: date) -> bool:
    parts = parse_start_date_parts(raw)
    if not parts:
        return False
    return parts == (day.year, day.month, day.day)


def is_listable_row(row: Mapping[str, Any], day: date) -> bool:
    status = clean_text(row_value(row, "currentstatus"))
    if not status:
        return False
    if RESERVATION_MARKER in status.lower():
        return False
    return is_same_day_start(row_value(row, "startdatetime"), day)


def group_username(row: Mapping[str, Any]) -> str:
    for name in ("username", "userbarcode"):
        value = clean_text(row_value(row, name))
        if value:
            return value
    return UNKNOWN


def make_group_key(username: Any, bucket: Any) -> str:
    return f"{clean_text(username) or UNKNOWN}_{clean_text(bucket) or UNKNOWN}"


def group_rows(
    rows: Iterable[Mapping[str, Any]],
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
    tz: tzinfo = timezone.utc,
) -> dict[str, dict[str, Any]]:
    """Bucket rows by (username, start window), keeping first-seen order."""
    grouped: dict[str, dict[str, Any]] = {}
    for row in rows:
        username = group_username(row)
        bucket = bucket_timestamp(row_value(row, "startdatetime"), window_minutes, tz)
        key = make_group_key(username, bucket)
        group = grouped.get(key)
        if group is None:
            group = {"username": username, "startdatetime": bucket, "groupKey": key, "rows": []}
            grouped[key] = group
        group["rows"].append(row)
    return grouped
