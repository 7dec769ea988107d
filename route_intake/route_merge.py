from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from route_intake.route_parser import ParsedRoute, ParsedStop

logger = logging.getLogger(__name__)

LOCKED_ROUTE_STATUSES = {"IN_PROGRESS", "COMPLETED"}
PAYMENT_AMOUNT_FIELDS = ("payment_amount_cash", "payment_amount_check", "payment_amount_cc")


@dataclass
class InvoiceRefs:
    quickbooks_invoice_num: str | None
    order_number_web: str | None


@dataclass
class MergeOutcome:
    to_create: list[ParsedStop] = field(default_factory=list)
    updated_stop_ids: list[int] = field(default_factory=list)
    carry_forward: dict[str, InvoiceRefs] = field(default_factory=dict)


def find_existing_route(db: Session, route_number: str, route_date: date) -> dict[str, Any] | None:
    row = db.execute(
        text(
            """
            SELECT id, route_number, route_date, status, driver_id, uploaded_by, source_file
            FROM routes
            WHERE route_number = :route_number
              AND route_date = :route_date
              AND is_deleted = :is_deleted
            ORDER BY id
            LIMIT 1
            """
        ),
        {"route_number": route_number, "route_date": route_date, "is_deleted": False},
    ).mappings().first()
    return dict(row) if row is not None else None


def count_route_stops(db: Session, route_id: int) -> int:
    return int(
        db.execute(
            text("SELECT COUNT(*) FROM stops WHERE route_id = :route_id AND is_deleted = :is_deleted"),
            {"route_id": route_id, "is_deleted": False},
        ).scalar_one()
    )


def purge_route(db: Session, route_id: int) -> None:
    """Hard-delete a route together with its stops, admin notes and safety checks."""
    stop_ids = [
        int(r)
        for r in db.execute(
            text("SELECT id FROM stops WHERE route_id = :route_id"),
            {"route_id": route_id},
        ).scalars()
    ]
    if stop_ids:
        db.execute(
            text("DELETE FROM admin_notes WHERE stop_id IN :stop_ids").bindparams(
                bindparam("stop_ids", expanding=True)
            ),
            {"stop_ids": stop_ids},
        )
    db.execute(text("DELETE FROM stops WHERE route_id = :route_id"), {"route_id": route_id})
    db.execute(text("DELETE FROM safety_checks WHERE route_id = :route_id"), {"route_id": route_id})
    db.execute(text("DELETE FROM routes WHERE id = :route_id"), {"route_id": route_id})
    logger.info("Deleted route %s with %s stops", route_id, len(stop_ids))


def create_route(
    db: Session,
    parsed_route: ParsedRoute,
    *,
    uploaded_by: int,
    source_file: str,
    now: datetime,
) -> dict[str, Any]:
    params = {
        "route_number": parsed_route.route_number,
        "route_date": parsed_route.route_date,
        "status": "PENDING",
        "uploaded_by": uploaded_by,
        "source_file": source_file,
        "is_deleted": False,
        "now": now,
    }
    # Routes can carry several drivers, so no primary driver is set.
    route_id = db.execute(
        text(
            """
            INSERT INTO routes (
              route_number, route_date, status, driver_id, uploaded_by, uploaded_at,
              source_file, is_deleted, created_at, updated_at
            )
            VALUES (
              :route_number, :route_date, :status, NULL, :uploaded_by, :now,
              :source_file, :is_deleted, :now, :now
            )
            RETURNING id
            """
        ),
        params,
    ).scalar_one()
    return {
        "id": int(route_id),
        "route_number": parsed_route.route_number,
        "route_date": parsed_route.route_date,
        "status": "PENDING",
        "driver_id": None,
        "uploaded_by": uploaded_by,
        "source_file": source_file,
    }


def refresh_route(
    db: Session,
    existing: dict[str, Any],
    parsed_route: ParsedRoute,
    *,
    uploaded_by: int,
    source_file: str,
    now: datetime,
) -> dict[str, Any]:
    """Update upload metadata; a route already underway keeps its status."""
    status = existing["status"] if existing["status"] in LOCKED_ROUTE_STATUSES else "PENDING"
    db.execute(
        text(
            """
            UPDATE routes
            SET route_date = :route_date,
                uploaded_by = :uploaded_by,
                uploaded_at = :now,
                source_file = :source_file,
                status = :status,
                updated_at = :now
            WHERE id = :route_id
            """
        ),
        {
            "route_id": existing["id"],
            "route_date": parsed_route.route_date,
            "uploaded_by": uploaded_by,
            "source_file": source_file,
            "status": status,
            "now": now,
        },
    )
    return {
        **existing,
        "route_date": parsed_route.route_date,
        "status": status,
        "uploaded_by": uploaded_by,
        "source_file": source_file,
    }


def _existing_stops(db: Session, route_id: int) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT s.id, s.sequence, s.customer_name_from_upload, c.name AS customer_name,
                   s.quickbooks_invoice_num, s.order_number_web, s.initial_driver_notes,
                   s.driver_remark_initial, s.amount,
                   s.payment_amount_cash, s.payment_amount_check, s.payment_amount_cc
            FROM stops s
            JOIN customers c ON c.id = s.customer_id
            WHERE s.route_id = :route_id AND s.is_deleted = :is_deleted
            ORDER BY s.id
            """
        ),
        {"route_id": route_id, "is_deleted": False},
    ).mappings().all()
    return [dict(r) for r in rows]


def payment_amounts_changed(new_stop: ParsedStop, existing: dict[str, Any]) -> bool:
    """True when the upload carries a per-method amount that differs from the stored one.

    Amounts the upload leaves blank never count as a change, so a partial
    sheet cannot wipe payments a driver already recorded.
    """
    for name in PAYMENT_AMOUNT_FIELDS:
        new_value = getattr(new_stop, name)
        if new_value is None:
            continue
        if new_value != float(existing[name] or 0):
            return True
    return False


def _stop_update_values(new_stop: ParsedStop, existing: dict[str, Any], now: datetime) -> dict[str, Any]:
    values: dict[str, Any] = {
        "sequence": new_stop.sequence,
        "customer_name_from_upload": new_stop.customer_name,
        "driver_name_from_upload": new_stop.driver_name,
        "quickbooks_invoice_num": new_stop.quickbooks_invoice_num or existing["quickbooks_invoice_num"],
        "order_number_web": new_stop.order_number_web or existing["order_number_web"],
        "initial_driver_notes": new_stop.initial_driver_notes or existing["initial_driver_notes"],
        "is_cod": new_stop.is_cod,
        "payment_flag_cash": new_stop.payment_flag_cash,
        "payment_flag_check": new_stop.payment_flag_check,
        "payment_flag_cc": new_stop.payment_flag_cc,
        "payment_flag_not_paid": new_stop.payment_flag_not_paid,
        "return_flag_initial": new_stop.return_flag_initial,
        "driver_remark_initial": new_stop.driver_remark_initial,
        "amount": new_stop.amount if new_stop.amount is not None else existing["amount"],
        "updated_at": now,
    }

    if payment_amounts_changed(new_stop, existing):
        total = 0.0
        for name in PAYMENT_AMOUNT_FIELDS:
            new_value = getattr(new_stop, name)
            values[name] = new_value if new_value is not None else existing[name]
            total += float(values[name] or 0)
        values["total_payment_amount"] = total
        logger.info(
            "Payment amounts updated for %r: cash=%s check=%s card=%s",
            new_stop.customer_name,
            values["payment_amount_cash"],
            values["payment_amount_check"],
            values["payment_amount_cc"],
        )
    return values


def merge_stops(db: Session, route_id: int, stops: list[ParsedStop], *, now: datetime) -> MergeOutcome:
    """Fold uploaded stops into an existing route.

    A stop matches an existing one by customer name, then by sequence number.
    Two different customers sharing a name are treated as the same stop.
    Matched stops are updated in place; the rest are returned for creation.
    """
    by_customer: dict[str, dict[str, Any]] = {}
    by_sequence: dict[int, dict[str, Any]] = {}
    for existing in _existing_stops(db, route_id):
        by_customer[existing["customer_name_from_upload"] or existing["customer_name"]] = existing
        by_sequence[existing["sequence"]] = existing

    outcome = MergeOutcome()
    for new_stop in stops:
        existing = by_customer.get(new_stop.customer_name) or by_sequence.get(new_stop.sequence)
        if existing is None:
            outcome.to_create.append(new_stop)
            continue

        values = _stop_update_values(new_stop, existing, now)
        assignments = ", ".join(f"{column} = :{column}" for column in values)
        db.execute(
            text(f"UPDATE stops SET {assignments} WHERE id = :stop_id"),
            {**values, "stop_id": existing["id"]},
        )
        outcome.updated_stop_ids.append(int(existing["id"]))
        outcome.carry_forward[new_stop.customer_name] = InvoiceRefs(
            quickbooks_invoice_num=existing["quickbooks_invoice_num"],
            order_number_web=existing["order_number_web"],
        )

    logger.info(
        "Merged route %s: %s stops updated, %s new",
        route_id,
        len(outcome.updated_stop_ids),
        len(outcome.to_create),
    )
    return outcome


def create_stops(
    db: Session,
    route_id: int,
    stops: list[ParsedStop],
    customers: dict[str, dict[str, Any]],
    *,
    admin_id: int,
    carry_forward: dict[str, InvoiceRefs] | None = None,
    now: datetime,
) -> list[int]:
    carry_forward = carry_forward or {}
    created: list[int] = []

    for stop in stops:
        customer = customers.get(stop.customer_name)
        if customer is None:
            logger.warning("Customer not found for stop %r; stop skipped", stop.customer_name)
            continue

        previous = carry_forward.get(stop.customer_name)
        invoice_num = stop.quickbooks_invoice_num or (previous.quickbooks_invoice_num if previous else "") or ""
        order_number = stop.order_number_web or (previous.order_number_web if previous else "") or ""

        stop_id = db.execute(
            text(
                """
                INSERT INTO stops (
                  route_id, customer_id, sequence, address,
                  customer_name_from_upload, driver_name_from_upload,
                  order_number_web, quickbooks_invoice_num, initial_driver_notes, status,
                  is_cod, payment_flag_cash, payment_flag_check, payment_flag_cc, payment_flag_not_paid,
                  return_flag_initial, driver_remark_initial, amount,
                  payment_amount_cash, payment_amount_check, payment_amount_cc, total_payment_amount,
                  is_deleted, created_at, updated_at
                )
                VALUES (
                  :route_id, :customer_id, :sequence, :address,
                  :customer_name, :driver_name,
                  :order_number_web, :quickbooks_invoice_num, :initial_driver_notes, 'PENDING',
                  :is_cod, :payment_flag_cash, :payment_flag_check, :payment_flag_cc, :payment_flag_not_paid,
                  :return_flag_initial, :driver_remark_initial, :amount,
                  :payment_amount_cash, :payment_amount_check, :payment_amount_cc, :total_payment_amount,
                  :is_deleted, :now, :now
                )
                RETURNING id
                """
            ),
            {
                "route_id": route_id,
                "customer_id": customer["id"],
                "sequence": stop.sequence,
                "address": customer.get("address") or "",
                "customer_name": stop.customer_name,
                "driver_name": stop.driver_name,
                "order_number_web": order_number,
                "quickbooks_invoice_num": invoice_num,
                "initial_driver_notes": stop.initial_driver_notes,
                "is_cod": stop.is_cod,
                "payment_flag_cash": stop.payment_flag_cash,
                "payment_flag_check": stop.payment_flag_check,
                "payment_flag_cc": stop.payment_flag_cc,
                "payment_flag_not_paid": stop.payment_flag_not_paid,
                "return_flag_initial": stop.return_flag_initial,
                "driver_remark_initial": stop.driver_remark_initial,
                "amount": stop.amount,
                "payment_amount_cash": stop.payment_amount_cash,
                "payment_amount_check": stop.payment_amount_check,
                "payment_amount_cc": stop.payment_amount_cc,
                "total_payment_amount": stop.total_payment_amount,
                "is_deleted": False,
                "now": now,
            },
        ).scalar_one()
        created.append(int(stop_id))

        if stop.admin_notes and stop.admin_notes.strip():
            db.execute(
                text(
                    """
                    INSERT INTO admin_notes (stop_id, admin_id, note, read_by_driver, is_deleted, created_at, updated_at)
                    VALUES (:stop_id, :admin_id, :note, :read_by_driver, :is_deleted, :now, :now)
                    """
                ),
                {
                    "stop_id": stop_id,
                    "admin_id": admin_id,
                    "note": stop.admin_notes,
                    "read_by_driver": False,
                    "is_deleted": False,
                    "now": now,
                },
            )

    return created
