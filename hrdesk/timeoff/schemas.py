"""Time-off Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request / *Update → request bodies (write)
  - *Out                         → response bodies (read)
  - *Brief                       → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hrdesk.common.constants import (
    WEEKDAY_KEYS,
    HistoryAction,
    LeaveCategory,
    RequestStatus,
)

# Display order of the weekend toggles
WEEKDAY_ORDER = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

# Any non-leap year: Feb 29 is not a valid yearly reset date
_REFERENCE_YEAR = 2001


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class EmployeeBrief(BaseModel):
    """Minimal employee info embedded in request responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    department: Optional[str] = None


class HistoryEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action: HistoryAction
    actor_email: Optional[str] = None
    timestamp: datetime


# ═════════════════════════════════════════════════════════════════════
# Settings: weekends, holidays, reset policy
# ═════════════════════════════════════════════════════════════════════


def normalise_weekends(weekends: dict[str, bool]) -> dict[str, bool]:
    """Return a full sun…sat mapping, unknown keys rejected."""
    out = {day: False for day in WEEKDAY_ORDER}
    for key, value in weekends.items():
        short = str(key).lower()[:3]
        if short not in WEEKDAY_KEYS:
            raise ValueError(f"Unknown weekday '{key}'.")
        out[short] = bool(value)
    return out


class WeekendsUpdate(BaseModel):
    """Weekday → is-non-working toggles. Omitted days are working days."""

    weekends: dict[str, bool]

    @field_validator("weekends")
    @classmethod
    def _validate_weekends(cls, v: dict[str, bool]) -> dict[str, bool]:
        normalised = normalise_weekends(v)
        if all(normalised.values()):
            raise ValueError("At least one day of the week must be a working day.")
        return normalised


class WeekendsOut(BaseModel):
    weekends: dict[str, bool]


class ResetPolicyUpdate(BaseModel):
    """Annual reset configuration. ``last_reset_year`` is not writable."""

    reset_month: int = Field(1, ge=1, le=12)
    reset_day: int = Field(1, ge=1, le=31)
    vacation_max: int = Field(15, ge=0, le=365)
    sick_max: int = Field(5, ge=0, le=365)
    personal_max: int = Field(3, ge=0, le=365)
    reset_vacation: bool = True
    reset_sick: bool = True
    reset_personal: bool = True

    @model_validator(mode="after")
    def _validate_reset_date(self) -> "ResetPolicyUpdate":
        try:
            date(_REFERENCE_YEAR, self.reset_month, self.reset_day)
        except ValueError:
            raise ValueError(
                f"{self.reset_month:02d}-{self.reset_day:02d} is not a valid yearly reset date."
            )
        return self


class ResetPolicyOut(ResetPolicyUpdate):
    model_config = ConfigDict(from_attributes=True)

    last_reset_year: Optional[int] = None


class HolidayCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    date: date


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    date: date


# ═════════════════════════════════════════════════════════════════════
# Requests: write
# ═════════════════════════════════════════════════════════════════════


class TimeOffRequestCreate(BaseModel):
    """Payload for submitting a request. ``total_days`` is always computed."""

    category: LeaveCategory
    start_date: date = Field(..., description="First day off (inclusive)")
    end_date: date = Field(..., description="Last day off (inclusive)")
    reason: Optional[str] = Field(None, max_length=1000)


class RescheduleRequest(BaseModel):
    start_date: date
    end_date: date


class ReviewRequest(BaseModel):
    remarks: Optional[str] = Field(None, max_length=1000)


class WithdrawRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Requests: read
# ═════════════════════════════════════════════════════════════════════


class TimeOffRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    employee_id: uuid.UUID
    category: LeaveCategory
    start_date: date
    end_date: date
    total_days: int
    status: RequestStatus
    reason: Optional[str] = None
    reviewed_by_email: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewer_remarks: Optional[str] = None
    requested_at: datetime
    updated_at: datetime

    # Filled by the service, not from ORM
    employee: Optional[EmployeeBrief] = None
    history: list[HistoryEntryOut] = Field(default_factory=list)


class TransitionOut(TimeOffRequestOut):
    """A request after a ledger-affecting transition.

    ``balance_after`` is None for categories without a balance.
    ``overdrawn`` is a warning only; it never blocks unless configured.
    """

    balance_after: Optional[Decimal] = None
    overdrawn: bool = False


class BalancesOut(BaseModel):
    employee_id: uuid.UUID
    vacation: Decimal
    sick: Decimal
    personal: Decimal


class CalendarEntryOut(BaseModel):
    request_id: uuid.UUID
    employee: EmployeeBrief
    category: LeaveCategory
    start_date: date
    end_date: date
    total_days: int


# ═════════════════════════════════════════════════════════════════════
# Annual reset
# ═════════════════════════════════════════════════════════════════════


class ResetResultOut(BaseModel):
    year: int
    employees_affected: int
    employees_failed: int
    completed: bool


class ResetStatusOut(BaseModel):
    last_reset_year: Optional[int] = None
    next_reset_date: date
    due: bool
