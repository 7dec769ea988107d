"""Noise filtering for route workbook rows.

Source sheets mix real delivery stops with operator noise: credit memo and
invoice markers typed into the driver column, email addresses pasted into the
customer column, and compliance notices the dispatch system appends to every
route. These helpers decide which rows are real stops.
"""
from __future__ import annotations

import re

MAX_CUSTOMER_NAME_LENGTH = 100
MIN_CUSTOMER_NAME_LENGTH = 2
MAX_SEQUENCE = 9999

IGNORED_DRIVER_TOKENS = ("INV", "CRM", "@", "CUSTOMER", "ADMIN", "TEST", "UNKNOWN")
IGNORED_DRIVER_NAMES = frozenset({"LUIS", "BARAK", "KHIARA"})

DOCUMENTATION_ENTRIES = (
    "End of Route – Post-Trip Documentation",
    "Break Compliance – California Law",
)

_VALID_DRIVER_NAME = re.compile(r"[A-Za-z\s\-]+")
_UNSAFE_NAME_CHARS = re.compile(r"[<>\"\x00-\x1f\x7f]")
_DASHES = re.compile("[\u2010-\u2015\u2212]")
_AROUND_DASH = re.compile(r"\s*-\s*")
_WHITESPACE = re.compile(r"\s+")
_LEADING_INT = re.compile(r"^\s*[-+]?\d+")


def _normalize_entry(value: str) -> str:
    lowered = _DASHES.sub("-", value.lower())
    lowered = _AROUND_DASH.sub("-", lowered)
    return _WHITESPACE.sub(" ", lowered).strip()


_NORMALIZED_DOCUMENTATION_ENTRIES = frozenset(_normalize_entry(e) for e in DOCUMENTATION_ENTRIES)


def should_ignore_driver(driver_name: str | None) -> bool:
    if not driver_name:
        return True

    upper_name = driver_name.upper()
    if any(token in upper_name for token in IGNORED_DRIVER_TOKENS):
        return True
    if upper_name in IGNORED_DRIVER_NAMES:
        return True

    # Codes and other non-name strings.
    return _VALID_DRIVER_NAME.fullmatch(driver_name) is None


def is_documentation_entry(customer_name: str) -> bool:
    return _normalize_entry(customer_name) in _NORMALIZED_DOCUMENTATION_ENTRIES


def should_ignore_customer(customer_name: str | None) -> bool:
    if not customer_name:
        return True
    if "@" in customer_name:
        return True
    return is_documentation_entry(customer_name)


def sanitize_customer_name(raw: str, max_length: int = MAX_CUSTOMER_NAME_LENGTH) -> str:
    """Strip markup and control characters; keep '&' and apostrophes."""
    return _UNSAFE_NAME_CHARS.sub("", raw).strip()[:max_length]


def parse_sequence(raw: str) -> int | None:
    """Leading integer of a sequence cell, or None when it is out of range."""
    match = _LEADING_INT.match(raw or "0")
    if match is None:
        return None
    sequence = int(match.group(0))
    if sequence < 0 or sequence > MAX_SEQUENCE:
        return None
    return sequence
