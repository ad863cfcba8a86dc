"""Directory ORM models: Company, Employee.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations.
The three ``*_balance`` columns on Employee are the leave ledger; they are
written only through ``hrdesk.timeoff.ledger``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrdesk.database import Base

if TYPE_CHECKING:
    from hrdesk.timeoff.models import TimeOffRequest


# ═════════════════════════════════════════════════════════════════════
# Company
# ═════════════════════════════════════════════════════════════════════


class Company(Base):
    """Tenant. Every employee, policy, holiday and request belongs to one."""

    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    owner_email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # Relationships
    employees: Mapped[list[Employee]] = relationship(back_populates="company")

    def is_owner(self, email: str) -> bool:
        return self.owner_email.lower() == email.lower()

    def __repr__(self) -> str:
        return f"<Company {self.name}>"


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    """Employee record, including the per-category leave balances."""

    __tablename__ = "employees"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "email", name="uq_employee_company_email"),
        sa.Index("ix_employees_company_manager", "company_id", "manager_email"),
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
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    position: Mapped[Optional[str]] = mapped_column(sa.String(200))
    department: Mapped[Optional[str]] = mapped_column(sa.String(100))
    # Parent pointer by email, not id; see employees.service.build_org_chart
    manager_email: Mapped[Optional[str]] = mapped_column(sa.String(255))

    vacation_balance: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, server_default=sa.text("0"),
    )
    sick_balance: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, server_default=sa.text("0"),
    )
    personal_balance: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, server_default=sa.text("0"),
    )

    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="employees")
    time_off_requests: Mapped[list[TimeOffRequest]] = relationship(
        back_populates="employee",
    )

    def __repr__(self) -> str:
        return f"<Employee {self.email}>"
