from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column

from route_intake.database import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('ADMIN','SUPER_ADMIN','DRIVER')", name="user_role_chk"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(Text, unique=True)
    password: Mapped[str] = mapped_column(Text)
    role: Mapped[str] = mapped_column(String(16))
    full_name: Mapped[str | None] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, server_default=false())
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(Text, index=True)
    address: Mapped[str] = mapped_column(Text, default="")
    group_code: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, server_default=false())
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Route(Base):
    __tablename__ = "routes"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','IN_PROGRESS','COMPLETED','CANCELLED')",
            name="route_status_chk",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    route_number: Mapped[str | None] = mapped_column(Text, index=True)
    route_date: Mapped[date] = mapped_column(Date, index=True)
    status: Mapped[str] = mapped_column(String(16))
    driver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    uploaded_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    source_file: Mapped[str | None] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, server_default=false())
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Stop(Base):
    __tablename__ = "stops"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','ON_THE_WAY','ARRIVED','COMPLETED','CANCELLED','FAILED')",
            name="stop_status_chk",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    route_id: Mapped[int] = mapped_column(ForeignKey("routes.id"), index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"))
    sequence: Mapped[int] = mapped_column(Integer)
    address: Mapped[str] = mapped_column(Text, default="")
    customer_name_from_upload: Mapped[str | None] = mapped_column(Text)
    driver_name_from_upload: Mapped[str | None] = mapped_column(Text)
    order_number_web: Mapped[str | None] = mapped_column(Text)
    quickbooks_invoice_num: Mapped[str | None] = mapped_column(Text)
    initial_driver_notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16))
    arrival_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completion_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    signed_invoice_pdf_url: Mapped[str | None] = mapped_column(Text)
    driver_notes: Mapped[str | None] = mapped_column(Text)
    is_cod: Mapped[bool] = mapped_column(Boolean, server_default=false())
    payment_flag_cash: Mapped[bool] = mapped_column(Boolean, server_default=false())
    payment_flag_check: Mapped[bool] = mapped_column(Boolean, server_default=false())
    payment_flag_cc: Mapped[bool] = mapped_column(Boolean, server_default=false())
    payment_flag_not_paid: Mapped[bool] = mapped_column(Boolean, server_default=false())
    return_flag_initial: Mapped[bool] = mapped_column(Boolean, server_default=false())
    driver_remark_initial: Mapped[str | None] = mapped_column(Text)
    amount: Mapped[float | None] = mapped_column(Float)
    payment_amount_cash: Mapped[float | None] = mapped_column(Float)
    payment_amount_check: Mapped[float | None] = mapped_column(Float)
    payment_amount_cc: Mapped[float | None] = mapped_column(Float)
    total_payment_amount: Mapped[float | None] = mapped_column(Float)
    is_deleted: Mapped[bool] = mapped_column(Boolean, server_default=false())
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class AdminNote(Base):
    __tablename__ = "admin_notes"

    id: Mapped[int] = mapped_column(primary_key=True)
    stop_id: Mapped[int] = mapped_column(ForeignKey("stops.id"), index=True)
    admin_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    note: Mapped[str] = mapped_column(Text)
    read_by_driver: Mapped[bool] = mapped_column(Boolean, server_default=false())
    is_deleted: Mapped[bool] = mapped_column(Boolean, server_default=false())
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class SafetyCheck(Base):
    __tablename__ = "safety_checks"
    __table_args__ = (
        CheckConstraint("check_type IN ('START_OF_DAY','END_OF_DAY')", name="safety_check_type_chk"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    route_id: Mapped[int] = mapped_column(ForeignKey("routes.id"), index=True)
    driver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    check_type: Mapped[str] = mapped_column(String(16))
    responses: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class RouteUpload(Base):
    __tablename__ = "route_uploads"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','PROCESSING','COMPLETED','FAILED')",
            name="route_upload_status_chk",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    file_name: Mapped[str] = mapped_column(Text)
    original_file_name: Mapped[str] = mapped_column(Text)
    uploaded_by: Mapped[int] = mapped_column(Integer)
    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(16))
    error_message: Mapped[str | None] = mapped_column(Text)
    rows_processed: Mapped[int] = mapped_column(Integer, default=0)
    rows_succeeded: Mapped[int] = mapped_column(Integer, default=0)
    rows_failed: Mapped[int] = mapped_column(Integer, default=0)
