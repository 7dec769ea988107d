import pytest

from route_intake.row_filter import (
    parse_sequence,
    sanitize_customer_name,
    should_ignore_customer,
    should_ignore_driver,
)


@pytest.mark.parametrize("name", ["test@example.com", "user@domain.org", "ops@example.com"])
def test_customer_email_addresses_are_ignored(name):
    assert should_ignore_customer(name) is True


@pytest.mark.parametrize("name", ["John Doe", "ABC Company", "Restaurant Supply Co", "Joe's Bar & Grill"])
def test_real_customer_names_are_kept(name):
    assert should_ignore_customer(name) is False


@pytest.mark.parametrize("name", ["", None])
def test_empty_customer_names_are_ignored(name):
    assert should_ignore_customer(name) is True


@pytest.mark.parametrize(
    "name",
    [
        "End of Route – Post-Trip Documentation",
        "END OF ROUTE – POST-TRIP DOCUMENTATION",
        "End of Route - Post-Trip Documentation",
        "End of Route  –  Post-Trip Documentation",
        "End of Route–Post-Trip Documentation",
        "End of Route — Post‑Trip Documentation",
        "Break Compliance – California Law",
        "break compliance - california law",
        "BREAK COMPLIANCE  –  CALIFORNIA LAW",
    ],
)
def test_documentation_entries_are_ignored(name):
    assert should_ignore_customer(name) is True


@pytest.mark.parametrize(
    "name",
    ["End of Route Restaurant", "California Law Firm", "Post-Trip Catering", "Break Time Cafe"],
)
def test_names_resembling_documentation_entries_are_kept(name):
    assert should_ignore_customer(name) is False


@pytest.mark.parametrize(
    "name",
    ["INV123", "CRM456", "test@email.com", "LUIS", "BARAK", "KHIARA", "ADMIN", "Driver TEST", "Unknown", "J0hn", ""],
)
def test_noise_driver_names_are_ignored(name):
    assert should_ignore_driver(name) is True


@pytest.mark.parametrize("name", ["John Smith", "Maria Garcia", "Mary-Jane Watson", "Luis Ortega"])
def test_real_driver_names_are_kept(name):
    assert should_ignore_driver(name) is False


def test_sanitize_customer_name_keeps_business_punctuation():
    assert sanitize_customer_name('  <b>Joe\'s "Bar" & Grill</b>\x07 ') == "bJoe's Bar & Grill/b"


def test_sanitize_customer_name_truncates():
    assert len(sanitize_customer_name("A" * 150)) == 100


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", 1), ("12", 12), ("7abc", 7), ("0", 0), ("", 0), ("9999", 9999), ("10000", None), ("-1", None), ("abc", None)],
)
def test_parse_sequence(raw, expected):
    assert parse_sequence(raw) == expected
