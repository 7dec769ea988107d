from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from io import BytesIO
from typing import Any, Union

from openpyxl import load_workbook

MAX_WORKBOOK_BYTES = 10 * 1024 * 1024

_LEADING_NUMBER = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


class MalformedInput(ValueError):
    """The uploaded bytes are not a readable route workbook."""


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class DateValue:
    value: datetime


@dataclass(frozen=True)
class Empty:
    pass


EMPTY = Empty()

CellValue = Union[Text, Number, DateValue, Empty]
Grid = list[list[CellValue]]


def to_cell(value: Any) -> CellValue:
    if value is None:
        return EMPTY
    if isinstance(value, bool):
        return Number(1.0 if value else 0.0)
    if isinstance(value, (int, float)):
        return Number(float(value))
    if isinstance(value, datetime):
        return DateValue(value)
    if isinstance(value, date):
        return DateValue(datetime.combine(value, time.min))
    if isinstance(value, time):
        return Text(value.isoformat())
    raw = str(value)
    if raw == "":
        return EMPTY
    return Text(raw)


def is_empty(cell: CellValue) -> bool:
    return isinstance(cell, Empty)


def cell_text(cell: CellValue) -> str:
    """Render a cell the way an operator typed it, trimmed."""
    if isinstance(cell, Text):
        return cell.value.replace("\xa0", " ").strip()
    if isinstance(cell, Number):
        if cell.value.is_integer():
            return str(int(cell.value))
        return repr(cell.value)
    if isinstance(cell, DateValue):
        return cell.value.date().isoformat()
    return ""


def cell_number(cell: CellValue) -> float | None:
    """Numeric value of a cell, reading a leading number out of text cells."""
    if isinstance(cell, Number):
        return cell.value
    if isinstance(cell, Text):
        match = _LEADING_NUMBER.match(cell.value.replace(",", ""))
        if match is None:
            return None
        return float(match.group(0))
    return None


def cell_at(row: list[CellValue], index: int | None) -> CellValue:
    if index is None or index < 0 or index >= len(row):
        return EMPTY
    return row[index]


def read_workbook(content: bytes, *, max_bytes: int = MAX_WORKBOOK_BYTES) -> Grid:
    """Decode the first worksheet of an .xlsx workbook into a rectangular grid.

    Wholly blank rows are dropped. Short rows are padded with EMPTY so every
    row has the width of the widest one.
    """
    if not content:
        raise MalformedInput("File is empty.")
    if len(content) > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise MalformedInput(f"File size too large. Maximum allowed size is {limit_mb}MB.")

    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise MalformedInput(f"Could not read workbook: {exc}") from exc

    try:
        if not workbook.worksheets:
            raise MalformedInput("Workbook has no worksheets.")
        sheet = workbook.worksheets[0]
        grid: Grid = []
        for values in sheet.iter_rows(values_only=True):
            row = [to_cell(v) for v in values]
            if all(is_empty(c) for c in row):
                continue
            grid.append(row)
    finally:
        workbook.close()

    width = max((len(r) for r in grid), default=0)
    for row in grid:
        if len(row) < width:
            row.extend([EMPTY] * (width - len(row)))
    return grid
