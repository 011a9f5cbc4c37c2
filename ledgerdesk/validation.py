"""Validation of request bodies for movement creation and user updates.

Both validators return a ``ValidationOutcome`` instead of raising: exactly one
of ``data`` and ``error`` is set, and ``error`` is the first problem found.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, Mapping, Optional, TypeVar

from ledgerdesk.aggregation import MOVEMENT_TYPES
from ledgerdesk.errors import InvalidAmount
from ledgerdesk.money import parse_amount_strict
from ledgerdesk.periods import parse_iso_timestamp, to_utc

ADMIN = "ADMIN"
USER = "USER"
ROLES = (ADMIN, USER)

T = TypeVar("T")


@dataclass(frozen=True)
class ValidationOutcome(Generic[T]):
    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "ValidationOutcome[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, message: str) -> "ValidationOutcome[T]":
        return cls(error=message)


@dataclass(frozen=True)
class MovementInput:
    type: str
    amount: Decimal
    concept: str
    date: datetime


@dataclass(frozen=True)
class UserUpdateInput:
    name: Optional[str] = None
    role: Optional[str] = None
    phone: Optional[str] = None

    def changes(self) -> dict[str, str]:
        return {
            key: value
            for key, value in (("name", self.name), ("role", self.role), ("phone", self.phone))
            if value is not None
        }


def validate_movement(body: Any) -> ValidationOutcome[MovementInput]:
    if not isinstance(body, Mapping):
        return ValidationOutcome.failure("Invalid body")

    movement_type = body.get("type")
    if movement_type not in MOVEMENT_TYPES:
        return ValidationOutcome.failure("type must be INCOME or EXPENSE")

    try:
        amount = parse_amount_strict(_reject_containers(body.get("amount")))
    except InvalidAmount as exc:
        return ValidationOutcome.failure(str(exc))

    concept = body.get("concept")
    if not isinstance(concept, str) or not concept.strip():
        return ValidationOutcome.failure("concept is required")

    moment = _parse_movement_date(body.get("date"))
    if moment is None:
        return ValidationOutcome.failure("date must be a valid ISO string")

    return ValidationOutcome.success(
        MovementInput(
            type=movement_type,
            amount=amount,
            concept=concept.strip(),
            date=moment,
        )
    )


def validate_user_update(body: Any) -> ValidationOutcome[UserUpdateInput]:
    if not isinstance(body, Mapping):
        return ValidationOutcome.failure("Invalid payload")

    values: dict[str, Optional[str]] = {}
    for key in ("name", "phone"):
        raw = body.get(key)
        if raw is None:
            values[key] = None
            continue
        if not isinstance(raw, str) or not raw.strip():
            return ValidationOutcome.failure(f"{key} must be a non-empty string")
        values[key] = raw.strip()

    role = body.get("role")
    if role is not None and role not in ROLES:
        return ValidationOutcome.failure("role must be ADMIN or USER")

    update = UserUpdateInput(name=values["name"], role=role, phone=values["phone"])
    if not update.changes():
        return ValidationOutcome.failure("At least one field must be provided")
    return ValidationOutcome.success(update)


def _reject_containers(value: Any) -> Any:
    if isinstance(value, (str, int, float, Decimal)) and not isinstance(value, bool):
        return value
    return None


def _parse_movement_date(value: Any) -> Optional[datetime]:
    if isinstance(value, (datetime, date)):
        return to_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return parse_iso_timestamp(value)
    except ValueError:
        return None
