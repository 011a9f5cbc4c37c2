from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ledgerdesk.errors import DataIntegrityError
from ledgerdesk.money import AmountInput, format_amount, to_minor_units
from ledgerdesk.periods import Timestamp, format_period

INCOME = "INCOME"
EXPENSE = "EXPENSE"
MOVEMENT_TYPES = (INCOME, EXPENSE)


@dataclass(frozen=True)
class ReportMovement:
    type: str
    amount: AmountInput
    date: Timestamp
    concept: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None


@dataclass(frozen=True)
class SummaryPoint:
    period: str
    income: str
    expense: str
    net: str


@dataclass(frozen=True)
class Totals:
    total_income: str
    total_expense: str
    balance: str


@dataclass(frozen=True)
class SummaryResult:
    total_income: str
    total_expense: str
    balance: str
    points: List[SummaryPoint] = field(default_factory=list)


@dataclass
class _Bucket:
    income: int = 0
    expense: int = 0


def aggregate(movements: Iterable[ReportMovement], group: str) -> SummaryResult:
    buckets: dict[str, _Bucket] = {}
    total = _Bucket()
    for movement in movements:
        movement_type = normalize_movement_type(movement.type)
        period = format_period(movement.date, group)
        amount = to_minor_units(movement.amount)
        bucket = buckets.setdefault(period, _Bucket())
        _accumulate(bucket, movement_type, amount)
        _accumulate(total, movement_type, amount)

    return SummaryResult(
        total_income=format_amount(total.income),
        total_expense=format_amount(total.expense),
        balance=format_amount(total.income - total.expense),
        points=_serialize_points(buckets),
    )


def calculate_totals(movements: Iterable[ReportMovement]) -> Totals:
    total = _Bucket()
    for movement in movements:
        _accumulate(
            total,
            normalize_movement_type(movement.type),
            to_minor_units(movement.amount),
        )
    return Totals(
        total_income=format_amount(total.income),
        total_expense=format_amount(total.expense),
        balance=format_amount(total.income - total.expense),
    )


def build_points(movements: Iterable[ReportMovement], group: str) -> List[SummaryPoint]:
    buckets: dict[str, _Bucket] = {}
    for movement in movements:
        movement_type = normalize_movement_type(movement.type)
        bucket = buckets.setdefault(format_period(movement.date, group), _Bucket())
        _accumulate(bucket, movement_type, to_minor_units(movement.amount))
    return _serialize_points(buckets)


def normalize_movement_type(value: str) -> str:
    normalized = value.strip().upper() if isinstance(value, str) else ""
    if normalized not in MOVEMENT_TYPES:
        raise DataIntegrityError(f"Unsupported movement type: {value!r}")
    return normalized


def _accumulate(bucket: _Bucket, movement_type: str, amount: int) -> None:
    if movement_type == INCOME:
        bucket.income += amount
    else:
        bucket.expense += amount


def _serialize_points(buckets: dict[str, _Bucket]) -> List[SummaryPoint]:
    return [
        SummaryPoint(
            period=period,
            income=format_amount(bucket.income),
            expense=format_amount(bucket.expense),
            net=format_amount(bucket.income - bucket.expense),
        )
        for period, bucket in sorted(buckets.items())
    ]
