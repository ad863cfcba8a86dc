"""Annual balance reset — once per company per calendar year.

Run manually by the company owner (``POST /time-off/reset``) or by the
scheduled job in ``scripts/run_annual_reset.py``. The engine writes
straight to the ledger and never goes through the request state machine.
"""

from __future__ import annotations

import calendar
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hrdesk.auth.schemas import RequestContext
from hrdesk.common.constants import BalanceField, ChangeOperation
from hrdesk.common.exceptions import AlreadyResetError, AppException, io_errors_as_transient
from hrdesk.employees.models import Company, Employee
from hrdesk.notifications.service import queue_change
from hrdesk.timeoff.ledger import LeaveBalanceLedger
from hrdesk.timeoff.models import TimeOffPolicy
from hrdesk.timeoff.policy_service import PolicyService
from hrdesk.timeoff.schemas import ResetResultOut, ResetStatusOut

logger = logging.getLogger(__name__)


def reset_date_for(policy: TimeOffPolicy, year: int) -> date:
    """The policy's reset date in *year*, clamped to the month's last day."""
    last_day = calendar.monthrange(year, policy.reset_month)[1]
    return date(year, policy.reset_month, min(policy.reset_day, last_day))


def is_reset_due(policy: TimeOffPolicy, today: date, year: Optional[int] = None) -> bool:
    """True on/after the reset date of *year* (default: today's) until it has run."""
    year = year or today.year
    return today >= reset_date_for(policy, year) and policy.last_reset_year != year


def next_reset_date(policy: TimeOffPolicy, today: date) -> date:
    if policy.last_reset_year is not None and policy.last_reset_year >= today.year:
        return reset_date_for(policy, today.year + 1)
    return reset_date_for(policy, today.year)


def reset_targets(policy: TimeOffPolicy) -> list[tuple[BalanceField, int]]:
    """Ledger fields enabled for reset, with their maxima."""
    targets = [
        (BalanceField.vacation, policy.reset_vacation, policy.vacation_max),
        (BalanceField.sick, policy.reset_sick, policy.sick_max),
        (BalanceField.personal, policy.reset_personal, policy.personal_max),
    ]
    return [(field, max_days) for field, enabled, max_days in targets if enabled]


class ResetService:

    @staticmethod
    async def _claim_year(
        db: AsyncSession,
        company_id: uuid.UUID,
        year: int,
    ) -> None:
        # Compare-and-swap on last_reset_year; the loser of a race gets 0 rows
        result = await db.execute(
            update(TimeOffPolicy)
            .where(
                TimeOffPolicy.company_id == company_id,
                or_(
                    TimeOffPolicy.last_reset_year.is_(None),
                    TimeOffPolicy.last_reset_year != year,
                ),
            )
            .values(last_reset_year=year, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyResetError(year)

    @staticmethod
    async def _release_year(
        db: AsyncSession,
        company_id: uuid.UUID,
        previous_year: Optional[int],
    ) -> None:
        await db.execute(
            update(TimeOffPolicy)
            .where(TimeOffPolicy.company_id == company_id)
            .values(last_reset_year=previous_year)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def run_reset(
        db: AsyncSession,
        company_id: Optional[uuid.UUID] = None,
        current_year: Optional[int] = None,
        *,
        ctx: Optional[RequestContext] = None,
    ) -> ResetResultOut:
        """Reset every employee's enabled balances to the policy maxima.

        With *ctx* the actor must own the company. Each employee is reset
        inside its own SAVEPOINT; when any of them fails the year claim is
        released again so that a retry is allowed.

        Raises:
            AlreadyResetError: the reset already ran for *current_year*.
        """
        if ctx is not None:
            await PolicyService.require_company_owner(db, ctx)
            company_id = ctx.company_id
        if company_id is None:
            raise ValueError("company_id or ctx is required")
        year = current_year or datetime.now(timezone.utc).year

        with io_errors_as_transient("run annual reset"):
            policy = await PolicyService.get_policy_for_update(db, company_id)
            if policy.last_reset_year == year:
                raise AlreadyResetError(year)
            previous_year = policy.last_reset_year

            await ResetService._claim_year(db, company_id, year)

            targets = reset_targets(policy)
            employee_ids: Sequence[uuid.UUID] = []
            if targets:
                result = await db.execute(
                    select(Employee.id)
                    .where(Employee.company_id == company_id)
                    .order_by(Employee.created_at, Employee.id)
                )
                employee_ids = result.scalars().all()

            affected = 0
            failed = 0
            for employee_id in employee_ids:
                try:
                    async with db.begin_nested():
                        for field, max_days in targets:
                            await LeaveBalanceLedger.reset_to_maximum(
                                db, employee_id, field, max_days,
                            )
                except (SQLAlchemyError, AppException):
                    failed += 1
                    logger.exception("Reset failed for employee %s", employee_id)
                else:
                    affected += 1

            if failed:
                await ResetService._release_year(db, company_id, previous_year)
            await db.refresh(policy, attribute_names=["last_reset_year", "updated_at"])

        queue_change(db, company_id, "time_off_policies", ChangeOperation.update, company_id)
        queue_change(db, company_id, "employees", ChangeOperation.update)

        if failed:
            logger.warning(
                "Annual reset %s for company %s incomplete: %d reset, %d failed",
                year, company_id, affected, failed,
            )
        else:
            logger.info(
                "Annual reset %s for company %s: %d employees reset",
                year, company_id, affected,
            )
        return ResetResultOut(
            year=year,
            employees_affected=affected,
            employees_failed=failed,
            completed=failed == 0,
        )

    @staticmethod
    async def get_reset_status(
        db: AsyncSession,
        company_id: uuid.UUID,
        today: Optional[date] = None,
    ) -> ResetStatusOut:
        today = today or datetime.now(timezone.utc).date()
        policy = await PolicyService.get_policy(db, company_id)
        return ResetStatusOut(
            last_reset_year=policy.last_reset_year,
            next_reset_date=next_reset_date(policy, today),
            due=is_reset_due(policy, today),
        )

    @staticmethod
    async def companies_due(
        db: AsyncSession,
        today: date,
        *,
        year: Optional[int] = None,
        ignore_reset_date: bool = False,
    ) -> list[uuid.UUID]:
        """Companies whose reset for *year* (default: today's) is due.

        With *ignore_reset_date* every company is returned.
        """
        result = await db.execute(select(Company.id).order_by(Company.created_at))
        due: list[uuid.UUID] = []
        for company_id in result.scalars().all():
            policy = await PolicyService.get_policy(db, company_id)
            if ignore_reset_date or is_reset_due(policy, today, year):
                due.append(company_id)
        return due
