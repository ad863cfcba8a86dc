"""Time-off router — requests, review, balances, calendar, settings, reset.

All endpoints require a bearer token. Approve/deny are limited to the
request owner's manager; settings writes and the manual reset to the
company owner. Those checks live in the services.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hrdesk.auth.dependencies import get_request_context
from hrdesk.auth.schemas import RequestContext
from hrdesk.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, LeaveCategory, RequestStatus
from hrdesk.common.pagination import PaginatedResponse
from hrdesk.common.rate_limit import limiter
from hrdesk.config import settings
from hrdesk.database import get_db
from hrdesk.timeoff.policy_service import PolicyService
from hrdesk.timeoff.reset import ResetService
from hrdesk.timeoff.schemas import (
    BalancesOut,
    CalendarEntryOut,
    HolidayCreate,
    HolidayOut,
    RescheduleRequest,
    ResetPolicyOut,
    ResetPolicyUpdate,
    ResetResultOut,
    ResetStatusOut,
    ReviewRequest,
    TimeOffRequestCreate,
    TimeOffRequestOut,
    TransitionOut,
    WeekendsOut,
    WeekendsUpdate,
    WithdrawRequest,
)
from hrdesk.timeoff.service import TimeOffService

router = APIRouter(prefix="", tags=["time-off"])


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=TransitionOut, status_code=201)
async def create_request(
    body: TimeOffRequestCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Submit a time-off request. The balance is consumed immediately."""
    return await TimeOffService.create_request(db, ctx, body)


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=PaginatedResponse[TimeOffRequestOut])
async def list_requests(
    scope: str = Query("mine", pattern="^(mine|team|all)$"),
    status: Optional[RequestStatus] = Query(None),
    category: Optional[LeaveCategory] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """List requests: own (``mine``), direct reports (``team``) or company-wide (``all``)."""
    return await TimeOffService.list_requests(
        db,
        ctx,
        scope=scope,
        status=status,
        category=category,
        page=page,
        page_size=page_size,
    )


# ── GET /requests/pending-approvals ─────────────────────────────────

@router.get("/requests/pending-approvals", response_model=list[TimeOffRequestOut])
async def pending_approvals(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await TimeOffService.get_pending_approvals(db, ctx)


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=TimeOffRequestOut)
async def get_request(
    request_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Request detail including its lifecycle history."""
    return await TimeOffService.get_request(db, ctx, request_id)


# ── PUT /requests/{id}/approve ──────────────────────────────────────

@router.put("/requests/{request_id}/approve", response_model=TransitionOut)
async def approve_request(
    request_id: uuid.UUID,
    body: ReviewRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await TimeOffService.approve_request(db, ctx, request_id, remarks=body.remarks)


# ── PUT /requests/{id}/deny ─────────────────────────────────────────

@router.put("/requests/{request_id}/deny", response_model=TransitionOut)
async def deny_request(
    request_id: uuid.UUID,
    body: ReviewRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Deny a pending request. Restores the consumed days."""
    return await TimeOffService.deny_request(db, ctx, request_id, remarks=body.remarks)


# ── PUT /requests/{id}/withdraw ─────────────────────────────────────

@router.put("/requests/{request_id}/withdraw", response_model=TransitionOut)
async def withdraw_request(
    request_id: uuid.UUID,
    body: WithdrawRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw your own pending request. Restores the consumed days."""
    return await TimeOffService.withdraw_request(db, ctx, request_id, reason=body.reason)


# ── PUT /requests/{id}/reschedule ───────────────────────────────────

@router.put("/requests/{request_id}/reschedule", response_model=TransitionOut)
async def reschedule_request(
    request_id: uuid.UUID,
    body: RescheduleRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Move an approved request to new dates. It goes back to Pending."""
    return await TimeOffService.reschedule_request(
        db, ctx, request_id, body.start_date, body.end_date,
    )


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=BalancesOut)
async def get_balances(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await TimeOffService.get_balances(db, ctx)


# ── GET /calendar ───────────────────────────────────────────────────

@router.get("/calendar", response_model=list[CalendarEntryOut])
async def team_calendar(
    scope: str = Query("all", pattern="^(mine|team|all)$"),
    department: Optional[list[str]] = Query(None),
    category: Optional[LeaveCategory] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Approved time off, for the calendar view."""
    return await TimeOffService.get_team_calendar(
        db,
        ctx,
        scope=scope,
        departments=department or (),
        category=category,
        from_date=from_date,
        to_date=to_date,
    )


# ── Settings: weekends ──────────────────────────────────────────────

@router.get("/settings/weekends", response_model=WeekendsOut)
async def get_weekends(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    weekends = await PolicyService.get_weekend_definition(db, ctx.company_id)
    return WeekendsOut(weekends=weekends)


@router.put("/settings/weekends", response_model=WeekendsOut)
async def update_weekends(
    body: WeekendsUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    weekends = await PolicyService.update_weekends(db, ctx, body.weekends)
    return WeekendsOut(weekends=weekends)


# ── Settings: reset policy ──────────────────────────────────────────

@router.get("/settings/reset-policy", response_model=ResetPolicyOut)
async def get_reset_policy(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await PolicyService.get_reset_policy(db, ctx.company_id)


@router.put("/settings/reset-policy", response_model=ResetPolicyOut)
async def save_reset_policy(
    body: ResetPolicyUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Owner only. ``last_reset_year`` is never changed here."""
    return await PolicyService.save_reset_policy(db, ctx, body)


# ── Holidays ────────────────────────────────────────────────────────

@router.get("/holidays", response_model=list[HolidayOut])
async def list_holidays(
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await PolicyService.get_holidays(
        db, ctx.company_id, from_date=from_date, to_date=to_date,
    )


@router.post("/holidays", response_model=HolidayOut, status_code=201)
async def add_holiday(
    body: HolidayCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await PolicyService.add_holiday(db, ctx, body)


@router.delete("/holidays/{holiday_id}", status_code=204)
async def delete_holiday(
    holiday_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    await PolicyService.delete_holiday(db, ctx, holiday_id)


# ── POST /reset ─────────────────────────────────────────────────────

@router.post("/reset", response_model=ResetResultOut)
@limiter.limit(settings.RESET_RATE_LIMIT)
async def run_reset(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Run the annual balance reset now. Once per year; owner only."""
    return await ResetService.run_reset(db, ctx=ctx)


# ── GET /reset/status ───────────────────────────────────────────────

@router.get("/reset/status", response_model=ResetStatusOut)
async def reset_status(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await ResetService.get_reset_status(db, ctx.company_id)
