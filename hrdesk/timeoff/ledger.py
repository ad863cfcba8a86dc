"""Leave balance ledger — the only writer of the ``employees.*_balance`` columns.

Deltas are applied as server-side increments (``SET col = col + :delta``)
so concurrent submissions for the same employee cannot lose updates.
Nothing here commits: the caller's transaction decides.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hrdesk.common.constants import BalanceField
from hrdesk.common.exceptions import (
    InsufficientBalanceError,
    NotFoundException,
    io_errors_as_transient,
)
from hrdesk.employees.models import Employee

logger = logging.getLogger(__name__)

Days = Union[int, Decimal]


class LeaveBalanceLedger:
    """Per-employee, per-category day balances."""

    @staticmethod
    async def _sync_instance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        field: BalanceField,
    ) -> Decimal:
        # Bring any Employee already in the identity map in line with the row
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        await db.refresh(employee, attribute_names=[field.value, "updated_at"])
        return Decimal(getattr(employee, field.value))

    @staticmethod
    async def apply_delta(
        db: AsyncSession,
        employee_id: uuid.UUID,
        field: BalanceField,
        delta_days: Days,
        *,
        floor: Optional[Days] = None,
    ) -> Decimal:
        """Add *delta_days* (negative = consume) and return the new balance.

        Without *floor* the delta is applied unconditionally and a balance
        may go below zero. With *floor* a consuming delta is only applied
        when the resulting balance stays at or above it; the guard is part
        of the UPDATE predicate, so two concurrent consumers cannot both
        slip past it.

        Raises:
            InsufficientBalanceError: the floor would be crossed.
        """
        delta = Decimal(delta_days)
        column = getattr(Employee, field.value)
        stmt = update(Employee).where(Employee.id == employee_id)
        if floor is not None and delta < 0:
            stmt = stmt.where(column + delta >= Decimal(floor))

        with io_errors_as_transient("apply ledger delta"):
            result = await db.execute(
                stmt
                .values(
                    **{field.value: column + delta},
                    updated_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                balances = await LeaveBalanceLedger.get_balances(db, employee_id)
                raise InsufficientBalanceError(field.name, balances[field], -delta)
            new_balance = await LeaveBalanceLedger._sync_instance(db, employee_id, field)

        logger.debug(
            "Ledger %s %s %+s → %s", employee_id, field.value, delta_days, new_balance,
        )
        return new_balance

    @staticmethod
    async def reset_to_maximum(
        db: AsyncSession,
        employee_id: uuid.UUID,
        field: BalanceField,
        max_days: Days,
    ) -> Decimal:
        """Overwrite the balance with *max_days*. Idempotent."""
        with io_errors_as_transient("reset balance"):
            result = await db.execute(
                update(Employee)
                .where(Employee.id == employee_id)
                .values(**{field.value: Decimal(max_days)}, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundException("Employee", str(employee_id))
            return await LeaveBalanceLedger._sync_instance(db, employee_id, field)

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> dict[BalanceField, Decimal]:
        """Read all three balances straight from the row."""
        result = await db.execute(
            select(
                Employee.vacation_balance,
                Employee.sick_balance,
                Employee.personal_balance,
            ).where(Employee.id == employee_id)
        )
        row = result.first()
        if row is None:
            raise NotFoundException("Employee", str(employee_id))
        return {
            BalanceField.vacation: Decimal(row.vacation_balance),
            BalanceField.sick: Decimal(row.sick_balance),
            BalanceField.personal: Decimal(row.personal_balance),
        }
