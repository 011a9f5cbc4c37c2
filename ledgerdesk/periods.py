from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Literal

from ledgerdesk.errors import InvalidGroup

ReportGroup = Literal["day", "month"]
REPORT_GROUPS: tuple[str, ...] = ("day", "month")
DEFAULT_GROUP: ReportGroup = "day"

Timestamp = datetime | date | str


def format_period(moment: Timestamp, group: str) -> str:
    """Return the UTC bucket key for ``moment``.

    Keys are zero padded so that sorting them as strings sorts them in time.
    """
    if group not in REPORT_GROUPS:
        raise InvalidGroup(f"Invalid group value: {group}")
    value = to_utc(moment)
    if group == "month":
        return f"{value.year:04d}-{value.month:02d}"
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def to_utc(moment: Timestamp) -> datetime:
    if isinstance(moment, str):
        moment = parse_iso_timestamp(moment)
    elif not isinstance(moment, datetime):
        moment = datetime.combine(moment, time.min)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_iso_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 date or datetime; naive values are taken as UTC."""
    cleaned = value.strip()
    if cleaned.endswith(("Z", "z")):
        cleaned = f"{cleaned[:-1]}+00:00"
    parsed = datetime.fromisoformat(cleaned)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def isoformat_utc(moment: Timestamp) -> str:
    """Serialize as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    value = to_utc(moment)
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
        f".{value.microsecond // 1000:03d}Z"
    )
