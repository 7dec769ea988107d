from datetime import datetime, timezone
from io import BytesIO

from openpyxl import Workbook
from sqlalchemy import text

from route_intake.clock import RouteClock

WIDTH = 40
HEADERS = {
    0: "S No",
    1: "Route #",
    2: "Driver",
    3: "Customers",
    4: "Customer GROUP CODE",
    5: "Customer Email",
    6: "Order # (Web)",
    7: "Date",
    8: "NOTES to be updated at top of the INVOICE",
    9: "Notes for Drivers",
    10: "COD Account/ Send Inv to Customer",
    11: "Cash",
    12: "Check",
    13: "Credit Card",
    14: "Payments & Returns Remarks",
    15: "Other Remarks",
    35: "Invoice #",
    36: "Amount",
    37: "Cash Amount",
    38: "Check Amount",
    39: "Credit Card Amount",
}
FIELD_COLUMNS = {
    "group_code": 4,
    "email": 5,
    "order": 6,
    "date": 7,
    "driver_notes": 8,
    "admin_notes": 9,
    "cod": 10,
    "cash": 11,
    "check": 12,
    "card": 13,
    "returns": 14,
    "remark": 15,
    "invoice": 35,
    "amount": 36,
    "cash_amount": 37,
    "check_amount": 38,
    "card_amount": 39,
}


def fixed_clock(year=2026, month=3, day=2, hour=18) -> RouteClock:
    moment = datetime(year, month, day, hour, 0, tzinfo=timezone.utc)
    return RouteClock("America/Los_Angeles", now=lambda: moment)


def header_row(headers=None) -> list:
    row = [None] * WIDTH
    for index, label in (headers or HEADERS).items():
        row[index] = label
    return row


def summary_row() -> list:
    # Second template row carries totals, never stops.
    row = [None] * WIDTH
    row[0] = "Totals"
    return row


def stop_row(sequence, customer, driver="John Smith", route="R-12", **fields) -> list:
    row = [None] * WIDTH
    row[0] = sequence
    row[1] = route
    row[2] = driver
    row[3] = customer
    for name, value in fields.items():
        row[FIELD_COLUMNS[name]] = value
    return row


def build_workbook(rows, headers=None, *, with_summary=True) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Route"
    sheet.append(header_row(headers))
    if with_summary:
        sheet.append(summary_row())
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def seed_user(engine, username, role="ADMIN", *, is_deleted=False) -> int:
    with engine.begin() as conn:
        return conn.execute(
            text(
                """
                INSERT INTO users (username, password, role, full_name, is_deleted, created_at, updated_at)
                VALUES (:username, 'x', :role, :username, :is_deleted, :now, :now)
                RETURNING id
                """
            ),
            {
                "username": username,
                "role": role,
                "is_deleted": is_deleted,
                "now": datetime(2026, 1, 1, tzinfo=timezone.utc),
            },
        ).scalar_one()

