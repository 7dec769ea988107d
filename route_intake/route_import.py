from __future__ import annotations

import logging
from datetime import date
from typing import Any

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from route_intake.clock import RouteClock
from route_intake.column_mapper import get_layout
from route_intake.config import Settings
from route_intake.entity_resolver import resolve_customers, resolve_drivers
from route_intake.route_merge import (
    count_route_stops,
    create_route,
    create_stops,
    find_existing_route,
    merge_stops,
    purge_route,
    refresh_route,
)
from route_intake.route_parser import ParsedRoute, ParseResult, parse_route_workbook
from route_intake.row_filter import should_ignore_customer, should_ignore_driver

logger = logging.getLogger(__name__)

ADMIN_ROLES = {"ADMIN", "SUPER_ADMIN"}
VALID_SAVE_MODES = {"auto", "force_create"}
SAVE_MODE_ALIASES = {
    "": "auto",
    "update": "auto",
    "create": "force_create",
    "forcecreate": "force_create",
}


def normalize_save_mode(mode: str | None) -> str:
    raw = (mode or "").strip().lower().replace("-", "_")
    resolved = SAVE_MODE_ALIASES.get(raw.replace("_", ""), raw)
    if resolved not in VALID_SAVE_MODES:
        allowed = ", ".join(sorted(VALID_SAVE_MODES))
        raise HTTPException(status_code=400, detail=f"Invalid save mode '{mode}'. Allowed: {allowed}.")
    return resolved


def _require_admin(db: Session, user_id: int) -> dict[str, Any]:
    user = db.execute(
        text("SELECT id, username, role FROM users WHERE id = :user_id AND is_deleted = :is_deleted"),
        {"user_id": user_id, "is_deleted": False},
    ).mappings().first()
    if user is None:
        raise HTTPException(status_code=404, detail=f"Admin user with ID {user_id} not found")
    if user["role"] not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail=f"User {user['username']} does not have admin privileges")
    return dict(user)


def _apply_route(
    db: Session,
    parsed_route: ParsedRoute,
    uploaded_by: int,
    source_file: str,
    mode: str,
    clock: RouteClock,
) -> tuple[dict[str, Any], bool]:
    now = clock.now()
    admin = _require_admin(db, uploaded_by)

    stops = [
        s
        for s in parsed_route.stops
        if not should_ignore_driver(s.driver_name) and not should_ignore_customer(s.customer_name)
    ]
    resolve_drivers(db, (s.driver_name for s in stops), now=now)

    existing = None
    if parsed_route.route_number:
        existing = find_existing_route(db, parsed_route.route_number, parsed_route.route_date)

    if existing is not None and mode == "force_create":
        logger.info("Replacing route %s dated %s", existing["route_number"], parsed_route.route_date)
        purge_route(db, existing["id"])
        existing = None

    carry_forward = {}
    if existing is not None:
        route = refresh_route(
            db, existing, parsed_route, uploaded_by=uploaded_by, source_file=source_file, now=now
        )
        outcome = merge_stops(db, route["id"], stops, now=now)
        stops = outcome.to_create
        carry_forward = outcome.carry_forward
        is_update = True
    else:
        route = create_route(db, parsed_route, uploaded_by=uploaded_by, source_file=source_file, now=now)
        is_update = False

    customers = resolve_customers(db, stops, now=now)
    create_stops(
        db,
        route["id"],
        stops,
        customers,
        admin_id=admin["id"],
        carry_forward=carry_forward,
        now=now,
    )
    return route, is_update


def save_route(
    db: Session,
    parsed_route: ParsedRoute,
    uploaded_by: int,
    source_file: str,
    mode: str = "auto",
    *,
    clock: RouteClock,
) -> tuple[dict[str, Any], bool]:
    """Reconcile a parsed route with the store as one unit of work.

    ``mode="auto"`` merges into an existing route with the same number and
    date; ``mode="force_create"`` deletes that route and builds a fresh one.
    Returns the route row and whether an existing route was updated. Any
    failure rolls the whole import back.
    """
    resolved_mode = normalize_save_mode(mode)
    try:
        route, is_update = _apply_route(db, parsed_route, uploaded_by, source_file, resolved_mode, clock)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return route, is_update


def check_route_conflict(db: Session, parsed_route: ParsedRoute) -> dict[str, Any]:
    """Report whether an upload would land on an existing route."""
    existing = None
    if parsed_route.route_number:
        existing = find_existing_route(db, parsed_route.route_number, parsed_route.route_date)

    response: dict[str, Any] = {
        "route_number": parsed_route.route_number,
        "route_date": parsed_route.route_date.isoformat(),
        "has_conflict": existing is not None,
        "existing_route": None,
    }
    if existing is not None:
        response["existing_route"] = {
            "id": existing["id"],
            "status": existing["status"],
            "source_file": existing["source_file"],
            "stop_count": count_route_stops(db, existing["id"]),
        }
    return response


def _start_upload(db: Session, filename: str, uploaded_by: int, clock: RouteClock) -> tuple[int, str]:
    now = clock.now()
    stored_name = f"route_{int(now.timestamp() * 1000)}.xlsx"
    upload_id = db.execute(
        text(
            """
            INSERT INTO route_uploads (
              file_name, original_file_name, uploaded_by, uploaded_at, status,
              rows_processed, rows_succeeded, rows_failed
            )
            VALUES (:file_name, :original_file_name, :uploaded_by, :now, 'PROCESSING', 0, 0, 0)
            RETURNING id
            """
        ),
        {
            "file_name": stored_name,
            "original_file_name": filename,
            "uploaded_by": uploaded_by,
            "now": now,
        },
    ).scalar_one()
    db.commit()
    return int(upload_id), stored_name


def _finish_upload(
    db: Session,
    upload_id: int,
    result: ParseResult,
    clock: RouteClock,
    *,
    status: str,
    error_message: str | None = None,
) -> None:
    db.execute(
        text(
            """
            UPDATE route_uploads
            SET rows_processed = :rows_processed,
                rows_succeeded = :rows_succeeded,
                rows_failed = :rows_failed,
                status = :status,
                error_message = :error_message,
                processed_at = :now
            WHERE id = :upload_id
            """
        ),
        {
            "upload_id": upload_id,
            "rows_processed": result.rows_processed,
            "rows_succeeded": result.rows_succeeded,
            "rows_failed": result.rows_failed,
            "status": status,
            "error_message": error_message,
            "now": clock.now(),
        },
    )
    db.commit()


def parse_upload(content: bytes, *, clock: RouteClock, settings: Settings) -> ParseResult:
    return parse_route_workbook(
        content,
        clock=clock,
        layout=get_layout(settings.route_column_layout),
        max_bytes=settings.max_workbook_bytes,
    )


def import_route_workbook(
    db: Session,
    content: bytes,
    filename: str,
    uploaded_by: int,
    mode: str = "auto",
    *,
    clock: RouteClock,
    settings: Settings,
) -> dict[str, Any]:
    """Parse an uploaded workbook and save it, keeping an audit record of the attempt.

    The upload record stays PROCESSING until the route is saved; a rejected
    parse or a failed save marks it FAILED with the reason.
    """
    resolved_mode = normalize_save_mode(mode)
    upload_id, stored_name = _start_upload(db, filename, uploaded_by, clock)

    result = parse_upload(content, clock=clock, settings=settings)
    if not result.success or result.route is None:
        _finish_upload(db, upload_id, result, clock, status="FAILED", error_message="; ".join(result.errors))
        raise HTTPException(
            status_code=400,
            detail={
                "message": "Failed to parse route data",
                "errors": result.errors,
                "warnings": result.warnings,
            },
        )

    try:
        route, is_update = save_route(db, result.route, uploaded_by, stored_name, resolved_mode, clock=clock)
    except HTTPException as exc:
        _finish_upload(db, upload_id, result, clock, status="FAILED", error_message=str(exc.detail))
        raise
    except SQLAlchemyError:
        _finish_upload(db, upload_id, result, clock, status="FAILED", error_message="Database error while saving route")
        raise
    _finish_upload(db, upload_id, result, clock, status="COMPLETED")

    route_date = route["route_date"]
    return {
        "message": "Route updated successfully" if is_update else "Route uploaded and processed successfully",
        "upload_id": upload_id,
        "route_id": route["id"],
        "route_number": route["route_number"],
        "route_date": route_date.isoformat() if isinstance(route_date, date) else str(route_date),
        "status": route["status"],
        "stop_count": len(result.route.stops),
        "warnings": result.warnings,
        "rows_processed": result.rows_processed,
        "rows_succeeded": result.rows_succeeded,
        "rows_failed": result.rows_failed,
        "rows_skipped_blank": result.rows_skipped_blank,
        "is_update": is_update,
    }
