"""Time-off service layer — request lifecycle state machine and reads.

Lifecycle:
  (new) --create--> Pending --approve--> Approved --reschedule--> Pending
                    Pending --deny-----> Denied
                    Pending --withdraw-> Withdrawn

Every transition is one unit inside the caller's transaction:
  1. authorisation against the request owner
  2. compare-and-swap on (status, version)
  3. ledger delta for the request's category (none for unpaid leave)
  4. history entry
  5. change notification, delivered after commit

Restorations always use the ``total_days`` stored on the row at the moment
of the transition; dates are never re-evaluated for the old range.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hrdesk.auth.schemas import RequestContext
from hrdesk.common.constants import (
    BalanceField,
    ChangeOperation,
    HistoryAction,
    LeaveCategory,
    MAX_REQUEST_SPAN_DAYS,
    RequestStatus,
    balance_field_for,
)
from hrdesk.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
    io_errors_as_transient,
)
from hrdesk.common.pagination import PaginationMeta, paginate
from hrdesk.config import settings
from hrdesk.employees.models import Company, Employee
from hrdesk.employees.service import is_manager_of
from hrdesk.notifications.service import queue_change
from hrdesk.timeoff.calendar import count_chargeable_days
from hrdesk.timeoff.history import append_history, list_history
from hrdesk.timeoff.ledger import LeaveBalanceLedger
from hrdesk.timeoff.models import TimeOffRequest, TimeOffRequestHistory
from hrdesk.timeoff.policy_service import PolicyService
from hrdesk.timeoff.schemas import (
    BalancesOut,
    CalendarEntryOut,
    EmployeeBrief,
    HistoryEntryOut,
    TimeOffRequestCreate,
    TimeOffRequestOut,
    TransitionOut,
)

logger = logging.getLogger(__name__)

_REQUESTS_TABLE = "time_off_requests"

# Columns rewritten by a transition; reloaded after the compare-and-swap
_TRANSITION_COLUMNS = [
    "status",
    "version",
    "start_date",
    "end_date",
    "total_days",
    "reviewed_by_email",
    "reviewed_at",
    "reviewer_remarks",
    "updated_at",
]

_OUT_COLUMNS = (
    "id",
    "company_id",
    "employee_id",
    "category",
    "start_date",
    "end_date",
    "total_days",
    "status",
    "reason",
    "reviewed_by_email",
    "reviewed_at",
    "reviewer_remarks",
    "requested_at",
    "updated_at",
)


def _today() -> date:
    return datetime.now(timezone.utc).date()


# ═════════════════════════════════════════════════════════════════════
# TimeOffService
# ═════════════════════════════════════════════════════════════════════


class TimeOffService:
    """Async time-off operations: submit, review, withdraw, reschedule, reads."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _validate_range(start_date: date, end_date: date) -> None:
        if end_date < start_date:
            raise ValidationException(
                {"end_date": ["End date cannot be before the start date."]}
            )
        if (end_date - start_date).days + 1 > MAX_REQUEST_SPAN_DAYS:
            raise ValidationException(
                {"end_date": [f"A request cannot span more than {MAX_REQUEST_SPAN_DAYS} days."]}
            )

    @staticmethod
    async def compute_total_days(
        db: AsyncSession,
        company_id: uuid.UUID,
        start_date: date,
        end_date: date,
    ) -> int:
        """Chargeable days for the range under the company's calendar."""
        weekends = await PolicyService.get_weekend_definition(db, company_id)
        holidays = await PolicyService.get_holiday_dates(db, company_id, start_date, end_date)
        return count_chargeable_days(start_date, end_date, weekends, holidays)

    @staticmethod
    async def _load_request(
        db: AsyncSession,
        company_id: uuid.UUID,
        request_id: uuid.UUID,
    ) -> TimeOffRequest:
        result = await db.execute(
            select(TimeOffRequest)
            .where(
                TimeOffRequest.id == request_id,
                TimeOffRequest.company_id == company_id,
            )
            .options(selectinload(TimeOffRequest.employee))
        )
        req = result.scalars().first()
        if req is None:
            raise NotFoundException("TimeOffRequest", str(request_id))
        return req

    @staticmethod
    def _require_status(req: TimeOffRequest, *allowed: RequestStatus) -> None:
        if req.status not in allowed:
            raise ConflictError(
                f"Time-off request is already {req.status.value.lower()}.",
                errors={"status": [req.status.value]},
            )

    @staticmethod
    def _require_owner(ctx: RequestContext, req: TimeOffRequest, action: str) -> None:
        if req.employee_id != ctx.employee_id:
            raise ForbiddenException(f"You can only {action} your own time-off requests.")

    @staticmethod
    def _require_manager(ctx: RequestContext, req: TimeOffRequest, action: str) -> None:
        if not is_manager_of(ctx.actor_email, req.employee):
            raise ForbiddenException(
                f"You are not authorized to {action} this time-off request."
            )

    @staticmethod
    async def _compare_and_set(
        db: AsyncSession,
        req: TimeOffRequest,
        new_status: RequestStatus,
        **values: Any,
    ) -> None:
        """Move *req* to *new_status* only if nobody changed it since it was read."""
        expected_status = req.status
        expected_version = req.version
        result = await db.execute(
            update(TimeOffRequest)
            .where(
                TimeOffRequest.id == req.id,
                TimeOffRequest.status == expected_status,
                TimeOffRequest.version == expected_version,
            )
            .values(
                status=new_status,
                version=TimeOffRequest.version + 1,
                updated_at=datetime.now(timezone.utc),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await db.scalar(
                select(TimeOffRequest.status).where(TimeOffRequest.id == req.id)
            )
            logger.warning(
                "Lost transition race on request %s: expected %s/v%s, found %s",
                req.id, expected_status.value, expected_version,
                current.value if current else None,
            )
            raise ConflictError(
                "This time-off request was changed by someone else "
                f"(now {current.value.lower() if current else 'deleted'}). "
                "Refresh and try again."
            )
        await db.refresh(req, attribute_names=_TRANSITION_COLUMNS)

    @staticmethod
    async def _apply_ledger(
        db: AsyncSession,
        req: TimeOffRequest,
        delta_days: int,
    ) -> Optional[Decimal]:
        field = balance_field_for(req.category)
        if field is None:
            return None
        floor = None if settings.ALLOW_BALANCE_OVERDRAW else 0
        return await LeaveBalanceLedger.apply_delta(
            db, req.employee_id, field, delta_days, floor=floor,
        )

    @staticmethod
    def _build_response(
        req: TimeOffRequest,
        *,
        employee: Optional[Employee] = None,
        history: Iterable[TimeOffRequestHistory] = (),
        balance_after: Optional[Decimal] = None,
        out_cls: type[TimeOffRequestOut] = TimeOffRequestOut,
    ) -> TimeOffRequestOut:
        payload: dict[str, Any] = {col: getattr(req, col) for col in _OUT_COLUMNS}
        if employee is not None:
            payload["employee"] = EmployeeBrief.model_validate(employee)
        payload["history"] = [HistoryEntryOut.model_validate(h) for h in history]
        if out_cls is TransitionOut:
            payload["balance_after"] = balance_after
            payload["overdrawn"] = balance_after is not None and balance_after < 0
        return out_cls(**payload)

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_request(
        db: AsyncSession,
        ctx: RequestContext,
        data: TimeOffRequestCreate,
    ) -> TransitionOut:
        """Submit a request: status Pending, balance consumed immediately."""
        TimeOffService._validate_range(data.start_date, data.end_date)

        employee = await db.get(Employee, ctx.employee_id)
        if employee is None or employee.company_id != ctx.company_id or not employee.is_active:
            raise NotFoundException("Employee", str(ctx.employee_id))

        total_days = await TimeOffService.compute_total_days(
            db, ctx.company_id, data.start_date, data.end_date,
        )
        if total_days <= 0:
            raise ValidationException(
                {"dates": ["No chargeable days in the selected range "
                           "(all days are weekends or holidays)."]}
            )

        req = TimeOffRequest(
            company_id=ctx.company_id,
            employee_id=employee.id,
            category=data.category,
            start_date=data.start_date,
            end_date=data.end_date,
            total_days=total_days,
            status=RequestStatus.pending,
            version=1,
            reason=data.reason,
            reviewed_by_email=None,
            reviewed_at=None,
            reviewer_remarks=None,
        )
        with io_errors_as_transient("create time-off request"):
            # Ledger first: under the hard limit it fails before the row exists
            balance_after = await TimeOffService._apply_ledger(db, req, -total_days)
            db.add(req)
            await db.flush()
            entry = await append_history(
                db, req.id, HistoryAction.created, actor_email=ctx.actor_email,
            )

        queue_change(db, ctx.company_id, _REQUESTS_TABLE, ChangeOperation.insert, req.id)
        logger.info(
            "Request %s created: %s %s..%s (%d days) for %s",
            req.id, data.category.value, data.start_date, data.end_date,
            total_days, employee.email,
        )
        if balance_after is not None and balance_after < 0:
            logger.warning(
                "Request %s overdraws %s balance of %s to %s",
                req.id, data.category.value, employee.email, balance_after,
            )

        return TimeOffService._build_response(
            req, employee=employee, history=[entry],
            balance_after=balance_after, out_cls=TransitionOut,
        )

    # ─────────────────────────────────────────────────────────────────
    # Review: approve / deny
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_request(
        db: AsyncSession,
        ctx: RequestContext,
        request_id: uuid.UUID,
        *,
        remarks: Optional[str] = None,
    ) -> TransitionOut:
        """Pending → Approved. The balance was already consumed at submission."""
        req = await TimeOffService._load_request(db, ctx.company_id, request_id)
        TimeOffService._require_manager(ctx, req, "approve")
        TimeOffService._require_status(req, RequestStatus.pending)

        with io_errors_as_transient("approve time-off request"):
            await TimeOffService._compare_and_set(
                db, req, RequestStatus.approved,
                reviewed_by_email=ctx.actor_email,
                reviewed_at=datetime.now(timezone.utc),
                reviewer_remarks=remarks,
            )
            entry = await append_history(
                db, req.id, HistoryAction.approved, actor_email=ctx.actor_email,
            )

        queue_change(db, ctx.company_id, _REQUESTS_TABLE, ChangeOperation.update, req.id)
        logger.info("Request %s approved by %s", req.id, ctx.actor_email)
        return TimeOffService._build_response(
            req, employee=req.employee, history=[entry], out_cls=TransitionOut,
        )

    @staticmethod
    async def deny_request(
        db: AsyncSession,
        ctx: RequestContext,
        request_id: uuid.UUID,
        *,
        remarks: Optional[str] = None,
    ) -> TransitionOut:
        """Pending → Denied. Restores the stored ``total_days``."""
        req = await TimeOffService._load_request(db, ctx.company_id, request_id)
        TimeOffService._require_manager(ctx, req, "deny")
        TimeOffService._require_status(req, RequestStatus.pending)

        with io_errors_as_transient("deny time-off request"):
            await TimeOffService._compare_and_set(
                db, req, RequestStatus.denied,
                reviewed_by_email=ctx.actor_email,
                reviewed_at=datetime.now(timezone.utc),
                reviewer_remarks=remarks,
            )
            balance_after = await TimeOffService._apply_ledger(db, req, req.total_days)
            entry = await append_history(
                db, req.id, HistoryAction.denied, actor_email=ctx.actor_email,
            )

        queue_change(db, ctx.company_id, _REQUESTS_TABLE, ChangeOperation.update, req.id)
        logger.info(
            "Request %s denied by %s; %d days restored", req.id, ctx.actor_email, req.total_days,
        )
        return TimeOffService._build_response(
            req, employee=req.employee, history=[entry],
            balance_after=balance_after, out_cls=TransitionOut,
        )

    # ─────────────────────────────────────────────────────────────────
    # Owner actions: withdraw / reschedule
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def withdraw_request(
        db: AsyncSession,
        ctx: RequestContext,
        request_id: uuid.UUID,
        *,
        reason: Optional[str] = None,
    ) -> TransitionOut:
        """Pending → Withdrawn. The row and its history are kept."""
        req = await TimeOffService._load_request(db, ctx.company_id, request_id)
        TimeOffService._require_owner(ctx, req, "withdraw")
        TimeOffService._require_status(req, RequestStatus.pending)

        remarks = f"Withdrawn by employee: {reason}" if reason else None
        with io_errors_as_transient("withdraw time-off request"):
            await TimeOffService._compare_and_set(
                db, req, RequestStatus.withdrawn, reviewer_remarks=remarks,
            )
            balance_after = await TimeOffService._apply_ledger(db, req, req.total_days)
            entry = await append_history(
                db, req.id, HistoryAction.withdrawn, actor_email=ctx.actor_email,
            )

        queue_change(db, ctx.company_id, _REQUESTS_TABLE, ChangeOperation.update, req.id)
        logger.info("Request %s withdrawn; %d days restored", req.id, req.total_days)
        return TimeOffService._build_response(
            req, employee=req.employee, history=[entry],
            balance_after=balance_after, out_cls=TransitionOut,
        )

    @staticmethod
    async def reschedule_request(
        db: AsyncSession,
        ctx: RequestContext,
        request_id: uuid.UUID,
        start_date: date,
        end_date: date,
        *,
        today: Optional[date] = None,
    ) -> TransitionOut:
        """Approved → Pending with new dates; approval restarts.

        The ledger is re-settled with a single delta: the old stored total is
        given back and the freshly computed total is consumed.
        """
        today = today or _today()
        req = await TimeOffService._load_request(db, ctx.company_id, request_id)
        TimeOffService._require_owner(ctx, req, "reschedule")
        TimeOffService._validate_range(start_date, end_date)
        if start_date <= today:
            raise ValidationException(
                {"start_date": ["The new start date must be in the future."]}
            )
        TimeOffService._require_status(req, RequestStatus.approved)

        new_total = await TimeOffService.compute_total_days(
            db, ctx.company_id, start_date, end_date,
        )
        if new_total <= 0:
            raise ValidationException(
                {"dates": ["No chargeable days in the selected range "
                           "(all days are weekends or holidays)."]}
            )

        old_total = req.total_days
        with io_errors_as_transient("reschedule time-off request"):
            async with db.begin_nested():
                balance_after = await TimeOffService._apply_ledger(
                    db, req, old_total - new_total,
                )
                await TimeOffService._compare_and_set(
                    db, req, RequestStatus.pending,
                    start_date=start_date,
                    end_date=end_date,
                    total_days=new_total,
                    reviewed_by_email=None,
                    reviewed_at=None,
                    reviewer_remarks=None,
                )
                entry = await append_history(
                    db, req.id, HistoryAction.rescheduled, actor_email=ctx.actor_email,
                )

        queue_change(db, ctx.company_id, _REQUESTS_TABLE, ChangeOperation.update, req.id)
        logger.info(
            "Request %s rescheduled to %s..%s (%d → %d days)",
            req.id, start_date, end_date, old_total, new_total,
        )
        return TimeOffService._build_response(
            req, employee=req.employee, history=[entry],
            balance_after=balance_after, out_cls=TransitionOut,
        )

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(
        db: AsyncSession,
        ctx: RequestContext,
        request_id: uuid.UUID,
    ) -> TimeOffRequestOut:
        """Request detail with its full history, oldest entry first."""
        req = await TimeOffService._load_request(db, ctx.company_id, request_id)
        if req.employee_id != ctx.employee_id and not is_manager_of(ctx.actor_email, req.employee):
            company = await db.get(Company, ctx.company_id)
            if company is None or not company.is_owner(ctx.actor_email):
                raise ForbiddenException("You are not allowed to view this time-off request.")

        history = await list_history(db, req.id)
        return TimeOffService._build_response(req, employee=req.employee, history=history)

    @staticmethod
    async def _team_employee_ids(db: AsyncSession, ctx: RequestContext) -> list[uuid.UUID]:
        result = await db.execute(
            select(Employee.id).where(
                Employee.company_id == ctx.company_id,
                func.lower(Employee.manager_email) == ctx.actor_email,
            )
        )
        return [row[0] for row in result.all()]

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        ctx: RequestContext,
        *,
        scope: str = "mine",
        status: Optional[RequestStatus] = None,
        category: Optional[LeaveCategory] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> dict:
        """Requests visible to the actor, newest first.

        Scopes:
          - mine: own requests
          - team: direct reports' requests
          - all:  every request in the company
        """
        query = (
            select(TimeOffRequest)
            .where(TimeOffRequest.company_id == ctx.company_id)
            .order_by(TimeOffRequest.requested_at.desc())
        )

        if scope == "mine":
            query = query.where(TimeOffRequest.employee_id == ctx.employee_id)
        elif scope == "team":
            team_ids = await TimeOffService._team_employee_ids(db, ctx)
            if not team_ids:
                return {
                    "data": [],
                    "meta": PaginationMeta.build(page=page, page_size=page_size, total=0),
                }
            query = query.where(TimeOffRequest.employee_id.in_(team_ids))
        elif scope != "all":
            raise ValidationException({"scope": [f"Unknown scope '{scope}'."]})

        if status:
            query = query.where(TimeOffRequest.status == status)
        if category:
            query = query.where(TimeOffRequest.category == category)

        rows, meta = await paginate(
            db, query, page=page, page_size=page_size,
            options=[selectinload(TimeOffRequest.employee)],
        )
        return {
            "data": [
                TimeOffService._build_response(r, employee=r.employee) for r in rows
            ],
            "meta": meta,
        }

    @staticmethod
    async def get_pending_approvals(
        db: AsyncSession,
        ctx: RequestContext,
    ) -> list[TimeOffRequestOut]:
        """Pending requests from the actor's direct reports, oldest first."""
        team_ids = await TimeOffService._team_employee_ids(db, ctx)
        if not team_ids:
            return []

        result = await db.execute(
            select(TimeOffRequest)
            .where(
                TimeOffRequest.company_id == ctx.company_id,
                TimeOffRequest.employee_id.in_(team_ids),
                TimeOffRequest.status == RequestStatus.pending,
            )
            .options(selectinload(TimeOffRequest.employee))
            .order_by(TimeOffRequest.requested_at.asc())
        )
        return [
            TimeOffService._build_response(r, employee=r.employee)
            for r in result.scalars().all()
        ]

    @staticmethod
    async def get_balances(db: AsyncSession, ctx: RequestContext) -> BalancesOut:
        balances = await LeaveBalanceLedger.get_balances(db, ctx.employee_id)
        return BalancesOut(
            employee_id=ctx.employee_id,
            vacation=balances[BalanceField.vacation],
            sick=balances[BalanceField.sick],
            personal=balances[BalanceField.personal],
        )

    @staticmethod
    async def get_team_calendar(
        db: AsyncSession,
        ctx: RequestContext,
        *,
        scope: str = "all",
        departments: Sequence[str] = (),
        category: Optional[LeaveCategory] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> list[CalendarEntryOut]:
        """Approved requests for the calendar view."""
        query = (
            select(TimeOffRequest, Employee)
            .join(Employee, TimeOffRequest.employee_id == Employee.id)
            .where(
                TimeOffRequest.company_id == ctx.company_id,
                TimeOffRequest.status == RequestStatus.approved,
            )
            .order_by(TimeOffRequest.start_date.asc())
        )

        if scope == "mine":
            query = query.where(TimeOffRequest.employee_id == ctx.employee_id)
        elif scope == "team":
            query = query.where(func.lower(Employee.manager_email) == ctx.actor_email)
        elif scope != "all":
            raise ValidationException({"scope": [f"Unknown scope '{scope}'."]})

        if departments:
            query = query.where(Employee.department.in_(list(departments)))
        if category:
            query = query.where(TimeOffRequest.category == category)
        if from_date:
            query = query.where(TimeOffRequest.end_date >= from_date)
        if to_date:
            query = query.where(TimeOffRequest.start_date <= to_date)

        result = await db.execute(query)
        return [
            CalendarEntryOut(
                request_id=req.id,
                employee=EmployeeBrief.model_validate(emp),
                category=req.category,
                start_date=req.start_date,
                end_date=req.end_date,
                total_days=req.total_days,
            )
            for req, emp in result.all()
        ]
