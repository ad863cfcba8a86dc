"""Time-off settings — weekend definition, holidays, annual reset policy.

A company without a stored policy row gets the configured defaults; the
row is created on first write.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hrdesk.auth.schemas import RequestContext
from hrdesk.common.constants import ChangeOperation
from hrdesk.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    io_errors_as_transient,
)
from hrdesk.config import settings
from hrdesk.employees.models import Company
from hrdesk.notifications.service import queue_change
from hrdesk.timeoff.models import Holiday, TimeOffPolicy
from hrdesk.timeoff.schemas import (
    HolidayCreate,
    ResetPolicyOut,
    ResetPolicyUpdate,
    normalise_weekends,
)

logger = logging.getLogger(__name__)


def default_policy(company_id: uuid.UUID) -> TimeOffPolicy:
    """Unsaved policy row carrying the configured defaults."""
    return TimeOffPolicy(
        company_id=company_id,
        weekends=normalise_weekends(settings.default_weekends),
        reset_month=settings.DEFAULT_RESET_MONTH,
        reset_day=settings.DEFAULT_RESET_DAY,
        vacation_max=settings.DEFAULT_VACATION_MAX,
        sick_max=settings.DEFAULT_SICK_MAX,
        personal_max=settings.DEFAULT_PERSONAL_MAX,
        reset_vacation=True,
        reset_sick=True,
        reset_personal=True,
        last_reset_year=None,
    )


class PolicyService:
    """Read and write a company's time-off configuration."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def require_company_owner(db: AsyncSession, ctx: RequestContext) -> Company:
        """Settings writes are reserved to the company owner."""
        company = await db.get(Company, ctx.company_id)
        if company is None:
            raise NotFoundException("Company", str(ctx.company_id))
        if not company.is_owner(ctx.actor_email):
            raise ForbiddenException("Only the company owner can change time-off settings.")
        return company

    @staticmethod
    async def _load_policy(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Optional[TimeOffPolicy]:
        query = select(TimeOffPolicy).where(TimeOffPolicy.company_id == company_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def get_policy_for_update(
        db: AsyncSession,
        company_id: uuid.UUID,
    ) -> TimeOffPolicy:
        """Row-locked policy, inserted with the defaults when missing."""
        policy = await PolicyService._load_policy(db, company_id, for_update=True)
        if policy is None:
            policy = default_policy(company_id)
            db.add(policy)
            await db.flush()
        return policy

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_policy(db: AsyncSession, company_id: uuid.UUID) -> TimeOffPolicy:
        """Stored policy, or an unsaved default one."""
        policy = await PolicyService._load_policy(db, company_id)
        return policy if policy is not None else default_policy(company_id)

    @staticmethod
    async def get_weekend_definition(
        db: AsyncSession,
        company_id: uuid.UUID,
    ) -> dict[str, bool]:
        policy = await PolicyService.get_policy(db, company_id)
        return normalise_weekends(policy.weekends or settings.default_weekends)

    @staticmethod
    async def get_holidays(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> Sequence[Holiday]:
        query = select(Holiday).where(Holiday.company_id == company_id)
        if from_date is not None:
            query = query.where(Holiday.date >= from_date)
        if to_date is not None:
            query = query.where(Holiday.date <= to_date)
        result = await db.execute(query.order_by(Holiday.date.asc()))
        return result.scalars().all()

    @staticmethod
    async def get_holiday_dates(
        db: AsyncSession,
        company_id: uuid.UUID,
        from_date: date,
        to_date: date,
    ) -> set[date]:
        holidays = await PolicyService.get_holidays(
            db, company_id, from_date=from_date, to_date=to_date,
        )
        return {h.date for h in holidays}

    @staticmethod
    async def get_reset_policy(db: AsyncSession, company_id: uuid.UUID) -> ResetPolicyOut:
        policy = await PolicyService.get_policy(db, company_id)
        return ResetPolicyOut.model_validate(policy)

    # ─────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_weekends(
        db: AsyncSession,
        ctx: RequestContext,
        weekends: dict[str, bool],
    ) -> dict[str, bool]:
        await PolicyService.require_company_owner(db, ctx)
        with io_errors_as_transient("update weekends"):
            policy = await PolicyService.get_policy_for_update(db, ctx.company_id)
            policy.weekends = normalise_weekends(weekends)
            policy.updated_at = datetime.now(timezone.utc)
            policy.updated_by_email = ctx.actor_email
            await db.flush()

        queue_change(db, ctx.company_id, "time_off_policies", ChangeOperation.update, ctx.company_id)
        logger.info("Weekends updated for company %s by %s", ctx.company_id, ctx.actor_email)
        return dict(policy.weekends)

    @staticmethod
    async def save_reset_policy(
        db: AsyncSession,
        ctx: RequestContext,
        data: ResetPolicyUpdate,
    ) -> ResetPolicyOut:
        """Upsert the reset policy. ``last_reset_year`` is left untouched."""
        await PolicyService.require_company_owner(db, ctx)
        with io_errors_as_transient("save reset policy"):
            policy = await PolicyService.get_policy_for_update(db, ctx.company_id)
            for field_name, value in data.model_dump().items():
                setattr(policy, field_name, value)
            policy.updated_at = datetime.now(timezone.utc)
            policy.updated_by_email = ctx.actor_email
            await db.flush()

        queue_change(db, ctx.company_id, "time_off_policies", ChangeOperation.update, ctx.company_id)
        logger.info("Reset policy saved for company %s by %s", ctx.company_id, ctx.actor_email)
        return ResetPolicyOut.model_validate(policy)

    @staticmethod
    async def add_holiday(
        db: AsyncSession,
        ctx: RequestContext,
        data: HolidayCreate,
    ) -> Holiday:
        await PolicyService.require_company_owner(db, ctx)

        existing = await db.execute(
            select(Holiday.id).where(
                Holiday.company_id == ctx.company_id,
                Holiday.date == data.date,
            )
        )
        if existing.scalar() is not None:
            raise ConflictError.duplicate("date", data.date.isoformat())

        holiday = Holiday(company_id=ctx.company_id, name=data.name.strip(), date=data.date)
        with io_errors_as_transient("add holiday"):
            db.add(holiday)
            try:
                await db.flush()
            except IntegrityError:
                raise ConflictError.duplicate("date", data.date.isoformat())

        queue_change(db, ctx.company_id, "time_off_holidays", ChangeOperation.insert, holiday.id)
        logger.info("Holiday %s (%s) added for company %s", holiday.name, holiday.date, ctx.company_id)
        return holiday

    @staticmethod
    async def delete_holiday(
        db: AsyncSession,
        ctx: RequestContext,
        holiday_id: uuid.UUID,
    ) -> None:
        await PolicyService.require_company_owner(db, ctx)

        result = await db.execute(
            select(Holiday).where(
                Holiday.id == holiday_id,
                Holiday.company_id == ctx.company_id,
            )
        )
        holiday = result.scalars().first()
        if holiday is None:
            raise NotFoundException("Holiday", str(holiday_id))

        with io_errors_as_transient("delete holiday"):
            await db.delete(holiday)
            await db.flush()

        queue_change(db, ctx.company_id, "time_off_holidays", ChangeOperation.delete, holiday_id)
        logger.info("Holiday %s removed for company %s", holiday_id, ctx.company_id)
