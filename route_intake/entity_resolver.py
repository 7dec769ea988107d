from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from passlib.context import CryptContext
from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from route_intake.route_parser import ParsedStop

logger = logging.getLogger(__name__)

DRIVER_ROLE = "DRIVER"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def default_driver_password(driver_name: str) -> str:
    # Drivers are told to sign in with their name followed by 123.
    return f"{driver_name}123"


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


def _users_by_username(db: Session, names: list[str], *, drivers_only: bool) -> list[dict[str, Any]]:
    sql = "SELECT id, username, role, is_deleted FROM users WHERE username IN :names"
    if drivers_only:
        sql += " AND role = :role AND is_deleted = :is_deleted"
    stmt = text(sql).bindparams(bindparam("names", expanding=True))
    params: dict[str, Any] = {"names": names}
    if drivers_only:
        params.update({"role": DRIVER_ROLE, "is_deleted": False})
    return [dict(r) for r in db.execute(stmt, params).mappings().all()]


def _create_driver(db: Session, driver_name: str, now: datetime) -> dict[str, Any] | None:
    try:
        with db.begin_nested():
            driver_id = db.execute(
                text(
                    """
                    INSERT INTO users (username, password, role, full_name, is_deleted, created_at, updated_at)
                    VALUES (:username, :password, :role, :full_name, :is_deleted, :now, :now)
                    RETURNING id
                    """
                ),
                {
                    "username": driver_name,
                    "password": pwd_context.hash(default_driver_password(driver_name)),
                    "role": DRIVER_ROLE,
                    "full_name": driver_name,
                    "is_deleted": False,
                    "now": now,
                },
            ).scalar_one()
    except IntegrityError as exc:
        logger.error("Failed to create driver %r: %s", driver_name, exc.orig)
        existing = db.execute(
            text(
                """
                SELECT id, username, role, is_deleted
                FROM users
                WHERE LOWER(username) = LOWER(:username)
                ORDER BY id
                LIMIT 1
                """
            ),
            {"username": driver_name},
        ).mappings().first()
        if existing is None:
            return None
        logger.warning(
            "Using existing user %r (role: %s, deleted: %s) for stops assigned to %r",
            existing["username"],
            existing["role"],
            bool(existing["is_deleted"]),
            driver_name,
        )
        return dict(existing)

    logger.info("Created new driver %r with default password", driver_name)
    return {"id": int(driver_id), "username": driver_name, "role": DRIVER_ROLE, "is_deleted": False}


def resolve_drivers(db: Session, driver_names: Iterable[str], *, now: datetime) -> dict[str, dict[str, Any]]:
    """Make sure every driver named in the workbook has an account.

    Returns the driver rows keyed by the spreadsheet name. A name that cannot
    be resolved is left out of the result rather than failing the import.
    """
    names = _unique(driver_names)
    if not names:
        return {}

    drivers = {row["username"]: row for row in _users_by_username(db, names, drivers_only=True)}

    taken = set()
    for user in _users_by_username(db, names, drivers_only=False):
        taken.add(user["username"])
        if user["username"] not in drivers:
            logger.warning(
                "Username %r already exists with role %s (deleted: %s); not creating it as a driver",
                user["username"],
                user["role"],
                bool(user["is_deleted"]),
            )

    for name in names:
        if name in drivers or name in taken:
            continue
        driver = _create_driver(db, name, now)
        if driver is None:
            logger.warning("Could not resolve driver %r; stops keep the uploaded name only", name)
            continue
        drivers[name] = driver

    return drivers


def _first_stop_by_customer(stops: Iterable[ParsedStop]) -> dict[str, ParsedStop]:
    first: dict[str, ParsedStop] = {}
    for stop in stops:
        first.setdefault(stop.customer_name, stop)
    return first


def resolve_customers(db: Session, stops: Iterable[ParsedStop], *, now: datetime) -> dict[str, dict[str, Any]]:
    """Find, restore or create the customer behind each stop, keyed by name.

    A soft-deleted customer with the same name is brought back instead of
    creating a duplicate. Group code and email are only written when the
    stored value is empty.
    """
    source = _first_stop_by_customer(stops)
    if not source:
        return {}

    stmt = text(
        """
        SELECT id, name, address, group_code, email, is_deleted
        FROM customers
        WHERE name IN :names AND is_deleted = :is_deleted
        ORDER BY id
        """
    ).bindparams(bindparam("names", expanding=True))
    customers: dict[str, dict[str, Any]] = {}
    for row in db.execute(stmt, {"names": list(source), "is_deleted": False}).mappings().all():
        customers.setdefault(row["name"], dict(row))

    for name, stop in source.items():
        customer = customers.get(name)
        if customer is not None:
            _backfill_customer(db, customer, stop, now)
            continue

        history = db.execute(
            text(
                """
                SELECT id, name, address, group_code, email, is_deleted
                FROM customers
                WHERE name = :name
                ORDER BY created_at DESC, id DESC
                """
            ),
            {"name": name},
        ).mappings().first()

        if history is None:
            customers[name] = _create_customer(db, stop, now)
            continue

        customer = dict(history)
        if customer["is_deleted"]:
            db.execute(
                text(
                    """
                    UPDATE customers
                    SET is_deleted = :is_deleted,
                        group_code = COALESCE(NULLIF(group_code, ''), :group_code),
                        email = COALESCE(NULLIF(email, ''), :email),
                        updated_at = :now
                    WHERE id = :customer_id
                    """
                ),
                {
                    "customer_id": customer["id"],
                    "is_deleted": False,
                    "group_code": stop.customer_group_code,
                    "email": stop.customer_email,
                    "now": now,
                },
            )
            customer["is_deleted"] = False
            customer["group_code"] = customer["group_code"] or stop.customer_group_code
            customer["email"] = customer["email"] or stop.customer_email
            logger.info("Restored deleted customer %r", name)
        customers[name] = customer

    return customers


def _backfill_customer(db: Session, customer: dict[str, Any], stop: ParsedStop, now: datetime) -> None:
    group_code = stop.customer_group_code if not customer["group_code"] else None
    email = stop.customer_email if not customer["email"] else None
    if not group_code and not email:
        return

    db.execute(
        text(
            """
            UPDATE customers
            SET group_code = COALESCE(NULLIF(group_code, ''), :group_code),
                email = COALESCE(NULLIF(email, ''), :email),
                updated_at = :now
            WHERE id = :customer_id
            """
        ),
        {"customer_id": customer["id"], "group_code": group_code, "email": email, "now": now},
    )
    customer["group_code"] = customer["group_code"] or group_code
    customer["email"] = customer["email"] or email


def _create_customer(db: Session, stop: ParsedStop, now: datetime) -> dict[str, Any]:
    customer_id = db.execute(
        text(
            """
            INSERT INTO customers (name, address, group_code, email, is_deleted, created_at, updated_at)
            VALUES (:name, '', :group_code, :email, :is_deleted, :now, :now)
            RETURNING id
            """
        ),
        {
            "name": stop.customer_name,
            "group_code": stop.customer_group_code,
            "email": stop.customer_email,
            "is_deleted": False,
            "now": now,
        },
    ).scalar_one()
    logger.info("Created customer %r", stop.customer_name)
    return {
        "id": int(customer_id),
        "name": stop.customer_name,
        "address": "",
        "group_code": stop.customer_group_code,
        "email": stop.customer_email,
        "is_deleted": False,
    }
