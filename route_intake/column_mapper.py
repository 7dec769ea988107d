from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace

from route_intake.workbook_reader import CellValue, cell_text

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("route_number", "driver", "sequence", "customer_name")

HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "route_number": ("Route #",),
    "driver": ("Driver",),
    "sequence": ("S No",),
    "customer_name": ("Customers",),
    "customer_group_code": ("Customer GROUP CODE",),
    "customer_email": ("Customer Email",),
    "order_number_web": ("Order # (Web)",),
    "date": ("Date", "Route Date", "Delivery Date", "Schedule Date"),
    "invoice_number": ("Invoice #", "Invoice#", "Invoice", "QB Invoice #", "QB Invoice"),
    "initial_driver_notes": ("NOTES to be updated at top of the INVOICE",),
    "admin_notes": ("Notes for Drivers",),
    "cod_flag": ("COD Account/ Send Inv to Customer",),
    "payment_flag_cash": ("Cash",),
    "payment_flag_check": ("Check",),
    "payment_flag_cc": ("Credit Card",),
    "return_flag": ("Payments & Returns Remarks",),
    "driver_remark": ("Other Remarks",),
    "amount": ("Amount",),
    "payment_amount_cash": ("Cash Amount",),
    "payment_amount_check": ("Check Amount",),
    "payment_amount_cc": ("Credit Card Amount",),
}


@dataclass(frozen=True)
class ColumnLayout:
    """Fixed 0-based column positions that win over header matching.

    Upstream template authors mislabel or move these headers, so their
    positions are pinned per template version. A field left as None falls
    back to the header alias match.
    """

    name: str
    driver: int | None
    invoice_number: int | None
    amount: int | None
    payment_amount_cash: int | None
    payment_amount_check: int | None
    payment_amount_cc: int | None


LAYOUTS: dict[str, ColumnLayout] = {
    # AI invoice, AJ/AK/AL payments, invoice amount by header.
    "2024-ai": ColumnLayout(
        name="2024-ai",
        driver=2,
        invoice_number=34,
        amount=None,
        payment_amount_cash=35,
        payment_amount_check=36,
        payment_amount_cc=37,
    ),
    # AJ invoice, AK/AL/AM payments, invoice amount by header.
    "2025-ak": ColumnLayout(
        name="2025-ak",
        driver=2,
        invoice_number=35,
        amount=None,
        payment_amount_cash=36,
        payment_amount_check=37,
        payment_amount_cc=38,
    ),
    # AJ invoice, AK amount, AL/AM/AN payments.
    "2025-aj": ColumnLayout(
        name="2025-aj",
        driver=2,
        invoice_number=35,
        amount=36,
        payment_amount_cash=37,
        payment_amount_check=38,
        payment_amount_cc=39,
    ),
}
DEFAULT_LAYOUT = "2025-aj"


@dataclass(frozen=True)
class ColumnMap:
    route_number: int | None = None
    driver: int | None = None
    sequence: int | None = None
    customer_name: int | None = None
    customer_group_code: int | None = None
    customer_email: int | None = None
    order_number_web: int | None = None
    date: int | None = None
    invoice_number: int | None = None
    initial_driver_notes: int | None = None
    admin_notes: int | None = None
    cod_flag: int | None = None
    payment_flag_cash: int | None = None
    payment_flag_check: int | None = None
    payment_flag_cc: int | None = None
    return_flag: int | None = None
    driver_remark: int | None = None
    amount: int | None = None
    payment_amount_cash: int | None = None
    payment_amount_check: int | None = None
    payment_amount_cc: int | None = None


class MissingColumnsError(ValueError):
    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        self.messages = [f"Required column '{name}' not found in the Excel file" for name in missing]
        super().__init__("; ".join(self.messages))


def get_layout(name: str | None) -> ColumnLayout:
    key = (name or DEFAULT_LAYOUT).strip().lower()
    try:
        return LAYOUTS[key]
    except KeyError:
        allowed = ", ".join(sorted(LAYOUTS))
        raise ValueError(f"Unknown column layout '{name}'. Allowed: {allowed}.") from None


def _header_index(headers: list[CellValue]) -> dict[str, int]:
    index: dict[str, int] = {}
    for position, header in enumerate(headers):
        label = cell_text(header)
        if label and label not in index:
            index[label] = position
    return index


def map_columns(headers: list[CellValue], layout: ColumnLayout | None = None) -> ColumnMap:
    layout = layout or LAYOUTS[DEFAULT_LAYOUT]
    header_index = _header_index(headers)

    found: dict[str, int | None] = {}
    for field_name, aliases in HEADER_ALIASES.items():
        found[field_name] = next((header_index[a] for a in aliases if a in header_index), None)

    overrides = {
        f.name: getattr(layout, f.name)
        for f in fields(ColumnLayout)
        if f.name != "name" and getattr(layout, f.name) is not None
    }
    columns = replace(ColumnMap(**found), **overrides)
    logger.debug("Column layout %s mapped to %s", layout.name, columns)

    _warn_on_shared_columns(columns, headers)

    missing = [name for name in REQUIRED_FIELDS if getattr(columns, name) is None]
    if missing:
        raise MissingColumnsError(missing)
    return columns


def _warn_on_shared_columns(columns: ColumnMap, headers: list[CellValue]) -> None:
    amount_fields = ("payment_amount_cash", "payment_amount_check", "payment_amount_cc")
    for field_name in amount_fields:
        position = getattr(columns, field_name)
        if position is not None and position == columns.amount:
            header = cell_text(headers[position]) if position < len(headers) else ""
            logger.warning(
                "Invoice amount and %s share column %s (header %r)",
                field_name,
                position,
                header,
            )
