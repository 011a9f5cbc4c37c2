from __future__ import annotations

import csv
import io
from decimal import Decimal
from typing import Any, Iterable, Sequence

from pydantic import BaseModel

from ledgerdesk.aggregation import ReportMovement
from ledgerdesk.money import normalize_amount
from ledgerdesk.periods import isoformat_utc

CSV_HEADER = ("type", "amount", "concept", "date", "userName", "userEmail")
CSV_FILENAME = "report.csv"

_QUOTE_TRIGGERS = (",", '"', "\n", "\r")


class CsvPreview(BaseModel):
    headers: list[str]
    keys: list[str]
    rows: list[list[str]]


def encode_movements(movements: Iterable[ReportMovement]) -> str:
    lines = [",".join(CSV_HEADER)]
    for movement in movements:
        fields = (
            movement.type,
            normalize_amount(movement.amount),
            movement.concept or "",
            isoformat_utc(movement.date),
            movement.user_name or "",
            movement.user_email or "",
        )
        lines.append(",".join(escape_field(value) for value in fields))
    return "\n".join(lines)


def escape_field(value: str) -> str:
    escaped = value.replace('"', '""')
    if any(trigger in value for trigger in _QUOTE_TRIGGERS):
        return f'"{escaped}"'
    return escaped


def decode_preview(text: str) -> CsvPreview:
    cleaned = text.lstrip("\ufeff")
    if not cleaned.strip():
        return CsvPreview(headers=[], keys=[], rows=[])
    parsed = [row for row in csv.reader(io.StringIO(cleaned)) if row]
    if not parsed:
        return CsvPreview(headers=[], keys=[], rows=[])
    return build_preview(parsed[0], parsed[1:])


def build_preview(header_row: Sequence[Any], rows: Sequence[Sequence[Any]]) -> CsvPreview:
    headers = [
        normalize_cell(value) or column_label(index)
        for index, value in enumerate(header_row)
    ]
    width = max([len(headers), *(len(row) for row in rows)])
    while len(headers) < width:
        headers.append(column_label(len(headers)))

    normalized_rows = [
        [normalize_cell(row[index]) if index < len(row) else "" for index in range(width)]
        for row in rows
    ]
    return CsvPreview(headers=headers, keys=unique_keys(headers), rows=normalized_rows)


def normalize_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def column_label(index: int) -> str:
    return f"Column {index + 1}"


def unique_keys(headers: Sequence[str]) -> list[str]:
    seen: dict[str, int] = {}
    used: set[str] = set()
    keys: list[str] = []
    for header in headers:
        occurrence = seen.get(header, 0) + 1
        seen[header] = occurrence
        key = header if occurrence == 1 else f"{header}#{occurrence}"
        while key in used:
            occurrence += 1
            key = f"{header}#{occurrence}"
        used.add(key)
        keys.append(key)
    return keys
