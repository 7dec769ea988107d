from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from route_intake.clock import RouteClock
from route_intake.column_mapper import ColumnLayout, ColumnMap, MissingColumnsError, map_columns
from route_intake.row_filter import (
    MIN_CUSTOMER_NAME_LENGTH,
    sanitize_customer_name,
    parse_sequence,
    should_ignore_customer,
    should_ignore_driver,
)
from route_intake.workbook_reader import (
    MAX_WORKBOOK_BYTES,
    CellValue,
    DateValue,
    MalformedInput,
    Number,
    cell_at,
    cell_number,
    cell_text,
    is_empty,
    read_workbook,
)

logger = logging.getLogger(__name__)

# Row 0 holds the headers and row 1 is reserved for template summaries.
DATA_START_ROW = 2
EXCEL_EPOCH = date(1899, 12, 30)
# 9999-12-31, the last day Excel can represent.
MAX_EXCEL_SERIAL = 2958465
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d", "%m-%d-%Y")


@dataclass
class ParsedStop:
    sequence: int
    customer_name: str
    driver_name: str
    customer_group_code: str | None = None
    customer_email: str | None = None
    order_number_web: str = ""
    quickbooks_invoice_num: str = ""
    initial_driver_notes: str | None = None
    admin_notes: str | None = None
    is_cod: bool = False
    payment_flag_cash: bool = False
    payment_flag_check: bool = False
    payment_flag_cc: bool = False
    payment_flag_not_paid: bool = True
    return_flag_initial: bool = False
    driver_remark_initial: str | None = None
    amount: float | None = None
    payment_amount_cash: float | None = None
    payment_amount_check: float | None = None
    payment_amount_cc: float | None = None
    total_payment_amount: float | None = None


@dataclass
class ParsedRoute:
    route_number: str
    driver_name: str
    date: datetime
    stops: list[ParsedStop] = field(default_factory=list)

    @property
    def route_date(self) -> date:
        return self.date.date()

    def as_dict(self) -> dict[str, Any]:
        return {
            "route_number": self.route_number,
            "driver_name": self.driver_name,
            "date": self.route_date.isoformat(),
            "stops": [asdict(s) for s in self.stops],
        }


@dataclass
class ParseResult:
    success: bool = False
    route: ParsedRoute | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rows_processed: int = 0
    rows_succeeded: int = 0
    rows_failed: int = 0
    rows_skipped_blank: int = 0

    def reject(self, row_number: int, message: str) -> None:
        self.warnings.append(f"Row {row_number}: {message}")
        self.rows_failed += 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "route": self.route.as_dict() if self.route else None,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "rows_processed": self.rows_processed,
            "rows_succeeded": self.rows_succeeded,
            "rows_failed": self.rows_failed,
            "rows_skipped_blank": self.rows_skipped_blank,
        }


def _optional_text(cell: CellValue) -> str | None:
    return cell_text(cell) or None


def _flag(cell: CellValue) -> bool:
    value = cell_number(cell)
    return value is not None and value > 0


def _positive_amount(cell: CellValue) -> float | None:
    value = cell_number(cell)
    if value is None or value <= 0:
        return None
    return value


def _to_route_day(cell: CellValue) -> date | None:
    if isinstance(cell, DateValue):
        return cell.value.date()
    if isinstance(cell, Number):
        if not 1 <= cell.value <= MAX_EXCEL_SERIAL:
            logger.warning("Failed to parse date from Excel serial %s", cell.value)
            return None
        return EXCEL_EPOCH + timedelta(days=int(cell.value))
    raw = cell_text(cell)
    if not raw:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def build_stop(
    row: list[CellValue],
    columns: ColumnMap,
    *,
    sequence: int,
    customer_name: str,
    driver_name: str,
) -> ParsedStop:
    """Resolve a validated row into a typed stop record."""
    stop = ParsedStop(
        sequence=sequence,
        customer_name=customer_name,
        driver_name=driver_name,
        customer_group_code=_optional_text(cell_at(row, columns.customer_group_code)),
        customer_email=_optional_text(cell_at(row, columns.customer_email)),
        order_number_web=cell_text(cell_at(row, columns.order_number_web)),
        quickbooks_invoice_num=cell_text(cell_at(row, columns.invoice_number)),
        initial_driver_notes=_optional_text(cell_at(row, columns.initial_driver_notes)),
        admin_notes=_optional_text(cell_at(row, columns.admin_notes)),
        is_cod="cod" in cell_text(cell_at(row, columns.cod_flag)).lower(),
        payment_flag_cash=_flag(cell_at(row, columns.payment_flag_cash)),
        payment_flag_check=_flag(cell_at(row, columns.payment_flag_check)),
        payment_flag_cc=_flag(cell_at(row, columns.payment_flag_cc)),
        return_flag_initial=bool(cell_text(cell_at(row, columns.return_flag))),
        driver_remark_initial=_optional_text(cell_at(row, columns.driver_remark)),
        amount=cell_number(cell_at(row, columns.amount)),
        payment_amount_cash=_positive_amount(cell_at(row, columns.payment_amount_cash)),
        payment_amount_check=_positive_amount(cell_at(row, columns.payment_amount_check)),
        payment_amount_cc=_positive_amount(cell_at(row, columns.payment_amount_cc)),
    )
    stop.payment_flag_not_paid = not (
        stop.payment_flag_cash or stop.payment_flag_check or stop.payment_flag_cc
    )

    amounts = (stop.payment_amount_cash, stop.payment_amount_check, stop.payment_amount_cc)
    if any(a is not None for a in amounts):
        stop.total_payment_amount = sum(a or 0.0 for a in amounts)
    return stop


def parse_route_workbook(
    content: bytes,
    *,
    clock: RouteClock,
    layout: ColumnLayout | None = None,
    max_bytes: int = MAX_WORKBOOK_BYTES,
) -> ParseResult:
    """Parse a route workbook into a ParsedRoute.

    Fatal problems (unreadable or oversized file, missing required columns, no
    surviving stops) land in ``errors``. Rejected rows land in ``warnings`` and
    never stop the batch.
    """
    result = ParseResult()

    try:
        grid = read_workbook(content, max_bytes=max_bytes)
    except MalformedInput as exc:
        result.errors.append(str(exc))
        return result

    if len(grid) < 2:
        result.errors.append("Excel file does not contain enough data")
        return result

    try:
        columns = map_columns(grid[0], layout)
    except MissingColumnsError as exc:
        result.errors.extend(exc.messages)
        return result

    route = ParsedRoute(route_number="", driver_name="", date=clock.start_of_today())
    route_day_found = False

    for offset, row in enumerate(grid[DATA_START_ROW:], start=1):
        # header + 1-based offset among data rows
        row_number = offset + 1
        result.rows_processed += 1

        if is_empty(cell_at(row, columns.customer_name)):
            result.rows_skipped_blank += 1
            continue

        driver_name = cell_text(cell_at(row, columns.driver))
        if should_ignore_driver(driver_name):
            result.reject(row_number, f'Ignored row with invalid driver name: "{driver_name}"')
            continue

        raw_customer_name = cell_text(cell_at(row, columns.customer_name))
        customer_name = sanitize_customer_name(raw_customer_name)
        if should_ignore_customer(customer_name):
            result.reject(row_number, f'Ignored row with invalid customer name: "{raw_customer_name}"')
            continue
        if len(customer_name) < MIN_CUSTOMER_NAME_LENGTH:
            result.reject(row_number, f'Invalid customer name: "{raw_customer_name}"')
            continue

        raw_sequence = cell_text(cell_at(row, columns.sequence))
        sequence = parse_sequence(raw_sequence)
        if sequence is None:
            result.reject(row_number, f'Invalid sequence number: "{raw_sequence}"')
            continue

        stop = build_stop(
            row,
            columns,
            sequence=sequence,
            customer_name=customer_name,
            driver_name=driver_name,
        )
        if stop.sequence <= 0:
            stop.sequence = len(route.stops) + 1
            result.warnings.append(
                f"Row {row_number}: Invalid sequence number for customer {customer_name}; "
                f"using {stop.sequence}"
            )

        if not route.route_number:
            route.route_number = cell_text(cell_at(row, columns.route_number))
        if not route.driver_name:
            route.driver_name = driver_name
        if not route_day_found:
            route_day = _to_route_day(cell_at(row, columns.date))
            if route_day is not None:
                route.date = clock.midnight(route_day)
                route_day_found = True

        route.stops.append(stop)
        result.rows_succeeded += 1

    if not route.stops:
        result.errors.append("No valid stops found in the Excel file")
        return result

    logger.info(
        "Parsed route %s for %s: %s stops, %s rows rejected",
        route.route_number or "(unnumbered)",
        route.route_date.isoformat(),
        len(route.stops),
        result.rows_failed,
    )
    result.route = route
    result.success = True
    return result
