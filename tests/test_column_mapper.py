import pytest

from route_intake.column_mapper import (
    LAYOUTS,
    MissingColumnsError,
    get_layout,
    map_columns,
)
from route_intake.workbook_reader import to_cell
from tests.helpers import HEADERS, header_row


def headers(mapping=None):
    return [to_cell(v) for v in header_row(mapping)]


def test_map_columns_uses_fixed_layout_for_mislabeled_fields():
    labels = dict(HEADERS)
    labels[20] = "Invoice #"
    labels.pop(35)
    labels[5] = "Driver"

    columns = map_columns(headers(labels), LAYOUTS["2025-aj"])

    assert columns.invoice_number == 35
    assert columns.driver == 2
    assert columns.amount == 36
    assert (columns.payment_amount_cash, columns.payment_amount_check, columns.payment_amount_cc) == (37, 38, 39)
    assert columns.customer_name == 3
    assert columns.sequence == 0


def test_map_columns_accepts_header_aliases():
    labels = {0: "S No", 1: "Route #", 3: "Customers", 6: "Delivery Date", 36: "Amount"}

    columns = map_columns(headers(labels), LAYOUTS["2025-ak"])

    assert columns.date == 6
    assert columns.invoice_number == 35
    assert columns.payment_amount_cash == 36
    # this layout leaves the invoice amount to its header
    assert columns.amount == 36


def test_map_columns_reports_every_missing_required_column():
    labels = {2: "Driver", 7: "Date"}

    with pytest.raises(MissingColumnsError) as excinfo:
        map_columns(headers(labels))

    assert excinfo.value.missing == ["route_number", "sequence", "customer_name"]
    assert "Required column 'route_number' not found in the Excel file" in excinfo.value.messages


def test_get_layout_rejects_unknown_layout():
    assert get_layout(None).name == "2025-aj"
    assert get_layout("2024-AI").invoice_number == 34
    with pytest.raises(ValueError, match="Unknown column layout"):
        get_layout("1999")
