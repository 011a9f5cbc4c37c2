from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from ledgerdesk.errors import InvalidDate, InvalidGroup, InvalidRange
from ledgerdesk.pagination import QueryMapping, QueryValue, single_value
from ledgerdesk.periods import DEFAULT_GROUP, REPORT_GROUPS, ReportGroup, parse_iso_timestamp

DEFAULT_WINDOW_DAYS = 30
END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime


def resolve_date_range(query: QueryMapping, now: Optional[datetime] = None) -> DateRange:
    """Resolve ``from``/``to`` into an inclusive UTC day range.

    Missing bounds default to the trailing 30 days ending today. Inverted
    ranges are rejected rather than swapped.
    """
    to_value = _parse_date_input(query.get("to"))
    from_value = _parse_date_input(query.get("from"))

    reference = to_value or now or datetime.now(timezone.utc)
    end = end_of_day_utc(reference)
    if from_value is None:
        start = start_of_day_utc(end) - timedelta(days=DEFAULT_WINDOW_DAYS - 1)
    else:
        start = start_of_day_utc(from_value)

    if start > end:
        raise InvalidRange('"from" cannot be after "to"')
    return DateRange(start=start, end=end)


def parse_group_param(value: QueryValue) -> ReportGroup:
    single = single_value(value)
    if not single:
        return DEFAULT_GROUP
    if single in REPORT_GROUPS:
        return single  # type: ignore[return-value]
    raise InvalidGroup(f"Invalid group value: {single}")


def start_of_day_utc(value: datetime) -> datetime:
    return datetime.combine(_as_utc(value).date(), time.min, tzinfo=timezone.utc)


def end_of_day_utc(value: datetime) -> datetime:
    return datetime.combine(_as_utc(value).date(), END_OF_DAY, tzinfo=timezone.utc)


def _parse_date_input(value: QueryValue) -> Optional[datetime]:
    single = single_value(value)
    if not single:
        return None
    try:
        return parse_iso_timestamp(single)
    except ValueError as exc:
        raise InvalidDate(f"Invalid date: {single}") from exc


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
