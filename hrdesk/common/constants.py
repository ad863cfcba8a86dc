"""Enums and constants for HR desk — matching the database enum values."""

from __future__ import annotations

import enum
from typing import Optional


# ── Time off ────────────────────────────────────────────────────────

class LeaveCategory(str, enum.Enum):
    vacation = "Vacation"
    sick_day = "Sick Day"
    personal_unpaid = "Personal (Unpaid)"


class RequestStatus(str, enum.Enum):
    pending = "Pending"
    approved = "Approved"
    denied = "Denied"
    withdrawn = "Withdrawn"


class HistoryAction(str, enum.Enum):
    created = "Created"
    approved = "Approved"
    denied = "Denied"
    rescheduled = "Rescheduled"
    withdrawn = "Withdrawn"


class BalanceField(str, enum.Enum):
    """Ledger columns on the ``employees`` table."""

    vacation = "vacation_balance"
    sick = "sick_balance"
    personal = "personal_balance"


# Static category → ledger column mapping. Categories mapped to None have
# no backing balance and never touch the ledger.
CATEGORY_BALANCE_FIELDS: dict[LeaveCategory, Optional[BalanceField]] = {
    LeaveCategory.vacation: BalanceField.vacation,
    LeaveCategory.sick_day: BalanceField.sick,
    LeaveCategory.personal_unpaid: None,
}


def balance_field_for(category: LeaveCategory) -> Optional[BalanceField]:
    """Return the ledger column charged by *category*, or None."""
    return CATEGORY_BALANCE_FIELDS[category]


# ── Calendar ────────────────────────────────────────────────────────

# Longest request, in calendar days with both ends inclusive
MAX_REQUEST_SPAN_DAYS = 366

# Keys of the stored weekend definition, mapped to ``date.weekday()``.
WEEKDAY_KEYS: dict[str, int] = {
    "mon": 0,
    "tue": 1,
    "wed": 2,
    "thu": 3,
    "fri": 4,
    "sat": 5,
    "sun": 6,
}


# ── Change notifications ────────────────────────────────────────────

class ChangeOperation(str, enum.Enum):
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"


# ── Misc ────────────────────────────────────────────────────────────

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
