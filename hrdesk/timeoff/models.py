"""Time-off ORM models: TimeOffPolicy, Holiday, TimeOffRequest, TimeOffRequestHistory."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrdesk.common.constants import HistoryAction, LeaveCategory, RequestStatus
from hrdesk.database import Base
from hrdesk.employees.models import Employee


def _enum_values(enum_cls) -> list[str]:
    # Persist the display values ("Sick Day"), not the member names
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimeOffPolicy(Base):
    """Per-company weekend definition and annual reset policy."""

    __tablename__ = "time_off_policies"

    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("companies.id", ondelete="CASCADE"),
        primary_key=True,
    )
    # {"sun": bool, "mon": bool, ..., "sat": bool}, True means non-working
    weekends: Mapped[dict] = mapped_column(JSONB, nullable=False)

    reset_month: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reset_day: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    vacation_max: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    sick_max: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    personal_max: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reset_vacation: Mapped[bool] = mapped_column(sa.Boolean, nullable=False)
    reset_sick: Mapped[bool] = mapped_column(sa.Boolean, nullable=False)
    reset_personal: Mapped[bool] = mapped_column(sa.Boolean, nullable=False)
    last_reset_year: Mapped[Optional[int]] = mapped_column(sa.Integer)

    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_by_email: Mapped[Optional[str]] = mapped_column(sa.String(255))

    def __repr__(self) -> str:
        return f"<TimeOffPolicy company={self.company_id} last_reset={self.last_reset_year}>"


class Holiday(Base):
    __tablename__ = "time_off_holidays"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "date", name="uq_holiday_company_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )


class TimeOffRequest(Base):
    __tablename__ = "time_off_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_request_date_order"),
        sa.CheckConstraint("total_days >= 0", name="ck_request_total_days"),
        sa.Index("ix_time_off_requests_company_status", "company_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    category: Mapped[LeaveCategory] = mapped_column(
        sa.Enum(LeaveCategory, name="leave_category", values_callable=_enum_values),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    # Always the calendar function applied to the current date range
    total_days: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    status: Mapped[RequestStatus] = mapped_column(
        sa.Enum(RequestStatus, name="request_status", values_callable=_enum_values),
        nullable=False,
        default=RequestStatus.pending,
    )
    # Bumped by every transition; part of the compare-and-swap predicate
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    reviewed_by_email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reviewer_remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    requested_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="time_off_requests")

    def __repr__(self) -> str:
        return f"<TimeOffRequest {self.id} {self.category.value} {self.status.value}>"


class TimeOffRequestHistory(Base):
    """Append-only lifecycle log. Rows are never updated."""

    __tablename__ = "time_off_request_history"
    __table_args__ = (
        sa.Index("ix_request_history_request_ts", "request_id", "timestamp"),
    )

    id: Mapped[int] = mapped_column(
        sa.BigInteger().with_variant(sa.Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("time_off_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[HistoryAction] = mapped_column(
        sa.Enum(HistoryAction, name="history_action", values_callable=_enum_values),
        nullable=False,
    )
    actor_email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    timestamp: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<TimeOffRequestHistory {self.request_id} {self.action.value}>"
