from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional, Sequence, Union

from pydantic import BaseModel

from ledgerdesk.errors import InvalidParam

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
# Largest row offset a 64-bit OFFSET clause accepts.
MAX_OFFSET = 2**63 - 1

# A query string value is absent, given once, or repeated.
QueryValue = Union[None, str, Sequence[str]]
QueryMapping = Mapping[str, QueryValue]


@dataclass(frozen=True)
class PaginationParams:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


def single_value(value: QueryValue) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value[0] if len(value) else None


def resolve_pagination(
    query: QueryMapping,
    *,
    default_page: int = DEFAULT_PAGE,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> PaginationParams:
    page = _integer_param(query, "page", default=default_page, minimum=1)
    limit = _integer_param(
        query, "limit", default=default_limit, minimum=1, maximum=max_limit
    )
    if (page - 1) * limit > MAX_OFFSET:
        raise InvalidParam(
            "page", f'"page" cannot be greater than {MAX_OFFSET // limit + 1}.'
        )
    return PaginationParams(page=page, limit=limit)


def parse_search_param(query: QueryMapping, name: str = "search") -> Optional[str]:
    value = single_value(query.get(name))
    if not value:
        return None
    trimmed = value.strip()
    return trimmed or None


def total_pages(total: int, limit: int) -> int:
    if total <= 0:
        return 0
    return math.ceil(total / max(1, limit))


def build_page_meta(params: PaginationParams, total: int) -> PageMeta:
    return PageMeta(
        page=params.page,
        limit=params.limit,
        total=total,
        totalPages=total_pages(total, params.limit),
    )


def _integer_param(
    query: QueryMapping,
    name: str,
    *,
    default: int,
    minimum: int,
    maximum: int | None = None,
) -> int:
    raw = single_value(query.get(name))
    if not raw:
        return default

    parsed = _parse_integer(raw)
    if parsed is None or parsed < minimum:
        raise InvalidParam(
            name, f'"{name}" must be an integer greater than or equal to {minimum}.'
        )
    if maximum is not None and parsed > maximum:
        raise InvalidParam(name, f'"{name}" cannot be greater than {maximum}.')
    return parsed


def _parse_integer(value: str) -> int | None:
    cleaned = value.strip()
    if not cleaned:
        return None
    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not number.is_finite() or number != number.to_integral_value():
        return None
    return int(number)
