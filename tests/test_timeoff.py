"""Time-off request lifecycle — state machine, ledger effects, history, reads.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from hrdesk.common.constants import BalanceField, HistoryAction, LeaveCategory, RequestStatus
from hrdesk.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from hrdesk.config import settings
from hrdesk.timeoff.history import list_history
from hrdesk.timeoff.ledger import LeaveBalanceLedger
from hrdesk.timeoff.models import Holiday, TimeOffRequest
from hrdesk.timeoff.schemas import TimeOffRequestCreate
from hrdesk.timeoff.service import TimeOffService
from tests.conftest import make_ctx, seed_employee

# 2026-03-02 is a Monday
MON = date(2026, 3, 2)
WED = date(2026, 3, 4)
FRI = date(2026, 3, 6)
TODAY = date(2026, 2, 20)


def _body(category=LeaveCategory.vacation, start=MON, end=FRI, reason=None):
    return TimeOffRequestCreate(category=category, start_date=start, end_date=end, reason=reason)


async def _balance(db, employee, field: BalanceField) -> Decimal:
    return (await LeaveBalanceLedger.get_balances(db, employee.id))[field]


async def _actions(db, request_id) -> list[HistoryAction]:
    return [h.action for h in await list_history(db, request_id)]


# ═════════════════════════════════════════════════════════════════════
# 1. Create
# ═════════════════════════════════════════════════════════════════════


class TestCreateRequest:

    async def test_consumes_balance_immediately(self, db, team):
        alice = team["alice"]
        result = await TimeOffService.create_request(db, make_ctx(alice), _body())

        assert result.status == RequestStatus.pending
        assert result.total_days == 5
        assert result.balance_after == Decimal("10")
        assert result.overdrawn is False
        assert await _balance(db, alice, BalanceField.vacation) == Decimal("10")
        assert await _actions(db, result.id) == [HistoryAction.created]

    async def test_total_days_excludes_company_holidays(self, db, team, company):
        db.add(Holiday(company_id=company.id, name="Founders Day", date=WED))
        await db.flush()

        result = await TimeOffService.create_request(db, make_ctx(team["alice"]), _body())
        assert result.total_days == 4

    async def test_end_before_start_rejected_without_side_effects(self, db, team):
        alice = team["alice"]
        with pytest.raises(ValidationException):
            await TimeOffService.create_request(db, make_ctx(alice), _body(start=FRI, end=MON))

        assert await _balance(db, alice, BalanceField.vacation) == Decimal("15")
        count = (await db.execute(select(TimeOffRequest))).scalars().all()
        assert count == []

    async def test_weekend_only_range_rejected(self, db, team):
        sat = MON - timedelta(days=2)
        with pytest.raises(ValidationException):
            await TimeOffService.create_request(
                db, make_ctx(team["alice"]), _body(start=sat, end=sat + timedelta(days=1)),
            )

    async def test_unpaid_never_touches_ledger(self, db, team):
        alice = team["alice"]
        result = await TimeOffService.create_request(
            db, make_ctx(alice), _body(category=LeaveCategory.personal_unpaid),
        )

        assert result.balance_after is None
        balances = await LeaveBalanceLedger.get_balances(db, alice.id)
        assert balances == {
            BalanceField.vacation: Decimal("15"),
            BalanceField.sick: Decimal("5"),
            BalanceField.personal: Decimal("3"),
        }

    async def test_overdraw_is_a_warning_by_default(self, db, company):
        emp = await seed_employee(db, company.id, email="low@acme.test", vacation=Decimal("2"))
        result = await TimeOffService.create_request(db, make_ctx(emp), _body())

        assert result.overdrawn is True
        assert result.balance_after == Decimal("-3")

    async def test_overdraw_blocked_when_configured(self, db, company, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_BALANCE_OVERDRAW", False)
        emp = await seed_employee(db, company.id, email="low@acme.test", vacation=Decimal("2"))

        with pytest.raises(ValidationException) as exc_info:
            await TimeOffService.create_request(db, make_ctx(emp), _body())

        assert "balance" in exc_info.value.errors
        assert await _balance(db, emp, BalanceField.vacation) == Decimal("2")
        assert (await db.execute(select(TimeOffRequest))).scalars().all() == []

    async def test_longer_reschedule_blocked_when_configured(self, db, team, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_BALANCE_OVERDRAW", False)
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(
            db, make_ctx(alice), _body(category=LeaveCategory.sick_day, end=MON),
        )
        await TimeOffService.approve_request(db, make_ctx(manager), created.id)
        assert await _balance(db, alice, BalanceField.sick) == Decimal("4")

        # Two full working weeks: 10 days against 4 left plus 1 given back
        with pytest.raises(ValidationException) as exc_info:
            await TimeOffService.reschedule_request(
                db, make_ctx(alice), created.id,
                MON + timedelta(days=7), FRI + timedelta(days=14),
                today=TODAY,
            )

        assert "balance" in exc_info.value.errors
        assert await _balance(db, alice, BalanceField.sick) == Decimal("4")
        status = (await db.execute(
            select(TimeOffRequest.status).where(TimeOffRequest.id == created.id)
        )).scalar_one()
        assert status == RequestStatus.approved
        assert await _actions(db, created.id) == [HistoryAction.created, HistoryAction.approved]

    async def test_reschedule_within_balance_allowed_when_configured(self, db, team, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_BALANCE_OVERDRAW", False)
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(
            db, make_ctx(alice), _body(category=LeaveCategory.sick_day, end=MON),
        )
        await TimeOffService.approve_request(db, make_ctx(manager), created.id)

        moved = await TimeOffService.reschedule_request(
            db, make_ctx(alice), created.id,
            MON + timedelta(days=7), FRI + timedelta(days=7),
            today=TODAY,
        )
        assert moved.total_days == 5
        assert moved.balance_after == Decimal("0")

    async def test_range_longer_than_a_year_rejected(self, db, team):
        with pytest.raises(ValidationException) as exc_info:
            await TimeOffService.create_request(
                db, make_ctx(team["alice"]), _body(start=date(1, 1, 1), end=date(9999, 12, 31)),
            )
        assert "end_date" in exc_info.value.errors
        assert await _balance(db, team["alice"], BalanceField.vacation) == Decimal("15")


# ═════════════════════════════════════════════════════════════════════
# 2. Review: approve / deny
# ═════════════════════════════════════════════════════════════════════


class TestReview:

    async def test_create_then_deny_restores_balance(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())
        assert await _balance(db, alice, BalanceField.vacation) == Decimal("10")

        denied = await TimeOffService.deny_request(
            db, make_ctx(manager), created.id, remarks="Release week",
        )

        assert denied.status == RequestStatus.denied
        assert denied.reviewed_by_email == manager.email
        assert denied.reviewer_remarks == "Release week"
        assert await _balance(db, alice, BalanceField.vacation) == Decimal("15")
        assert await _actions(db, created.id) == [HistoryAction.created, HistoryAction.denied]

    async def test_approve_never_changes_balances(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(
            db, make_ctx(alice), _body(category=LeaveCategory.sick_day, end=WED),
        )
        before = await LeaveBalanceLedger.get_balances(db, alice.id)

        approved = await TimeOffService.approve_request(db, make_ctx(manager), created.id)

        assert approved.status == RequestStatus.approved
        assert await LeaveBalanceLedger.get_balances(db, alice.id) == before

    async def test_only_direct_manager_may_review(self, db, team):
        alice, bob, owner = team["alice"], team["bob"], team["owner"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())

        for actor in (alice, bob, owner):
            with pytest.raises(ForbiddenException):
                await TimeOffService.approve_request(db, make_ctx(actor), created.id)
            with pytest.raises(ForbiddenException):
                await TimeOffService.deny_request(db, make_ctx(actor), created.id)

        assert await _balance(db, alice, BalanceField.vacation) == Decimal("10")

    async def test_second_review_conflicts(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())
        await TimeOffService.deny_request(db, make_ctx(manager), created.id)

        with pytest.raises(ConflictError):
            await TimeOffService.deny_request(db, make_ctx(manager), created.id)
        with pytest.raises(ConflictError):
            await TimeOffService.approve_request(db, make_ctx(manager), created.id)

        # Restored exactly once
        assert await _balance(db, alice, BalanceField.vacation) == Decimal("15")

    async def test_lost_race_is_a_conflict_without_ledger_effect(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())

        # Another writer bumps the row between our read and our write
        original_load = TimeOffService._load_request

        async def _load_then_race(session, company_id, request_id):
            req = await original_load(session, company_id, request_id)
            await session.execute(
                update(TimeOffRequest)
                .where(TimeOffRequest.id == request_id)
                .values(status=RequestStatus.withdrawn, version=TimeOffRequest.version + 1)
                .execution_options(synchronize_session=False)
            )
            return req

        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(TimeOffService, "_load_request", staticmethod(_load_then_race))
            with pytest.raises(ConflictError):
                await TimeOffService.deny_request(db, make_ctx(manager), created.id)

        assert await _balance(db, alice, BalanceField.vacation) == Decimal("10")
        assert await _actions(db, created.id) == [HistoryAction.created]

    async def test_unknown_request(self, db, team):
        with pytest.raises(NotFoundException):
            await TimeOffService.approve_request(db, make_ctx(team["manager"]), uuid.uuid4())


# ═════════════════════════════════════════════════════════════════════
# 3. Withdraw
# ═════════════════════════════════════════════════════════════════════


class TestWithdraw:

    async def test_create_then_withdraw_restores_balance_and_keeps_history(self, db, team):
        alice = team["alice"]
        created = await TimeOffService.create_request(
            db, make_ctx(alice), _body(category=LeaveCategory.sick_day, end=MON),
        )
        assert await _balance(db, alice, BalanceField.sick) == Decimal("4")

        withdrawn = await TimeOffService.withdraw_request(
            db, make_ctx(alice), created.id, reason="Feeling better",
        )

        assert withdrawn.status == RequestStatus.withdrawn
        assert await _balance(db, alice, BalanceField.sick) == Decimal("5")
        assert await db.get(TimeOffRequest, created.id) is not None
        assert await _actions(db, created.id) == [HistoryAction.created, HistoryAction.withdrawn]

    async def test_only_owner_may_withdraw(self, db, team):
        created = await TimeOffService.create_request(db, make_ctx(team["alice"]), _body())
        with pytest.raises(ForbiddenException):
            await TimeOffService.withdraw_request(db, make_ctx(team["manager"]), created.id)

    async def test_cannot_withdraw_approved(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())
        await TimeOffService.approve_request(db, make_ctx(manager), created.id)

        with pytest.raises(ConflictError):
            await TimeOffService.withdraw_request(db, make_ctx(alice), created.id)
        assert await _balance(db, alice, BalanceField.vacation) == Decimal("10")

    async def test_unpaid_withdraw_leaves_ledger_alone(self, db, team):
        alice = team["alice"]
        created = await TimeOffService.create_request(
            db, make_ctx(alice), _body(category=LeaveCategory.personal_unpaid),
        )
        result = await TimeOffService.withdraw_request(db, make_ctx(alice), created.id)

        assert result.balance_after is None
        assert await _balance(db, alice, BalanceField.personal) == Decimal("3")


# ═════════════════════════════════════════════════════════════════════
# 4. Reschedule
# ═════════════════════════════════════════════════════════════════════


class TestReschedule:

    async def test_reschedule_resettles_ledger_and_restarts_approval(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(
            db, make_ctx(alice), _body(category=LeaveCategory.sick_day, end=WED),
        )
        assert await _balance(db, alice, BalanceField.sick) == Decimal("2")

        await TimeOffService.approve_request(db, make_ctx(manager), created.id)
        assert await _balance(db, alice, BalanceField.sick) == Decimal("2")

        moved = await TimeOffService.reschedule_request(
            db, make_ctx(alice), created.id,
            MON + timedelta(days=7), MON + timedelta(days=8),
            today=TODAY,
        )

        assert moved.status == RequestStatus.pending
        assert moved.total_days == 2
        assert moved.balance_after == Decimal("3")
        assert moved.reviewed_by_email is None
        assert await _balance(db, alice, BalanceField.sick) == Decimal("3")
        assert await _actions(db, created.id) == [
            HistoryAction.created, HistoryAction.approved, HistoryAction.rescheduled,
        ]

    async def test_deny_after_reschedule_restores_new_total(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())
        await TimeOffService.approve_request(db, make_ctx(manager), created.id)
        await TimeOffService.reschedule_request(
            db, make_ctx(alice), created.id,
            MON + timedelta(days=7), MON + timedelta(days=8),
            today=TODAY,
        )
        assert await _balance(db, alice, BalanceField.vacation) == Decimal("13")

        await TimeOffService.deny_request(db, make_ctx(manager), created.id)
        assert await _balance(db, alice, BalanceField.vacation) == Decimal("15")

    async def test_reschedule_requires_approved(self, db, team):
        alice = team["alice"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())
        with pytest.raises(ConflictError):
            await TimeOffService.reschedule_request(
                db, make_ctx(alice), created.id, MON + timedelta(days=7), FRI + timedelta(days=7),
                today=TODAY,
            )

    async def test_new_start_must_be_in_future(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())
        await TimeOffService.approve_request(db, make_ctx(manager), created.id)

        with pytest.raises(ValidationException):
            await TimeOffService.reschedule_request(
                db, make_ctx(alice), created.id, TODAY, TODAY + timedelta(days=3), today=TODAY,
            )
        assert await _balance(db, alice, BalanceField.vacation) == Decimal("10")

    async def test_only_owner_may_reschedule(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())
        await TimeOffService.approve_request(db, make_ctx(manager), created.id)

        with pytest.raises(ForbiddenException):
            await TimeOffService.reschedule_request(
                db, make_ctx(manager), created.id, MON + timedelta(days=7), FRI + timedelta(days=7),
                today=TODAY,
            )

    async def test_unpaid_reschedule_leaves_ledger_alone(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(
            db, make_ctx(alice), _body(category=LeaveCategory.personal_unpaid),
        )
        await TimeOffService.approve_request(db, make_ctx(manager), created.id)
        await TimeOffService.reschedule_request(
            db, make_ctx(alice), created.id, MON + timedelta(days=7), MON + timedelta(days=7),
            today=TODAY,
        )

        balances = await LeaveBalanceLedger.get_balances(db, alice.id)
        assert balances[BalanceField.personal] == Decimal("3")
        assert balances[BalanceField.vacation] == Decimal("15")


# ═════════════════════════════════════════════════════════════════════
# 5. Reads
# ═════════════════════════════════════════════════════════════════════


class TestReads:

    async def test_get_request_includes_ordered_history(self, db, team):
        alice, manager = team["alice"], team["manager"]
        created = await TimeOffService.create_request(db, make_ctx(alice), _body())
        await TimeOffService.approve_request(db, make_ctx(manager), created.id)

        detail = await TimeOffService.get_request(db, make_ctx(alice), created.id)
        assert [h.action for h in detail.history] == [HistoryAction.created, HistoryAction.approved]
        assert detail.employee.email == alice.email

    async def test_get_request_visibility(self, db, team):
        created = await TimeOffService.create_request(db, make_ctx(team["alice"]), _body())

        await TimeOffService.get_request(db, make_ctx(team["manager"]), created.id)
        await TimeOffService.get_request(db, make_ctx(team["owner"]), created.id)
        with pytest.raises(ForbiddenException):
            await TimeOffService.get_request(db, make_ctx(team["bob"]), created.id)

    async def test_list_scopes(self, db, team):
        alice, bob, manager = team["alice"], team["bob"], team["manager"]
        await TimeOffService.create_request(db, make_ctx(alice), _body())
        await TimeOffService.create_request(db, make_ctx(bob), _body(end=MON))
        await TimeOffService.create_request(db, make_ctx(manager), _body(end=MON))

        mine = await TimeOffService.list_requests(db, make_ctx(alice), scope="mine")
        team_view = await TimeOffService.list_requests(db, make_ctx(manager), scope="team")
        everything = await TimeOffService.list_requests(db, make_ctx(bob), scope="all")

        assert mine["meta"].total == 1
        assert {r.employee_id for r in team_view["data"]} == {alice.id, bob.id}
        assert everything["meta"].total == 3

    async def test_list_filters_and_pagination(self, db, team):
        alice = team["alice"]
        for offset in range(3):
            start = MON + timedelta(days=7 * offset)
            await TimeOffService.create_request(db, make_ctx(alice), _body(start=start, end=start))
        await TimeOffService.create_request(
            db, make_ctx(alice), _body(category=LeaveCategory.sick_day, end=MON),
        )

        page = await TimeOffService.list_requests(
            db, make_ctx(alice), category=LeaveCategory.vacation, page=1, page_size=2,
        )
        assert page["meta"].total == 3
        assert page["meta"].has_next is True
        assert len(page["data"]) == 2

    async def test_unknown_scope_rejected(self, db, team):
        with pytest.raises(ValidationException):
            await TimeOffService.list_requests(db, make_ctx(team["alice"]), scope="everyone")

    async def test_pending_approvals_only_direct_reports(self, db, team):
        alice, bob, manager, owner = team["alice"], team["bob"], team["manager"], team["owner"]
        a = await TimeOffService.create_request(db, make_ctx(alice), _body())
        b = await TimeOffService.create_request(db, make_ctx(bob), _body())
        await TimeOffService.create_request(db, make_ctx(manager), _body())
        await TimeOffService.deny_request(db, make_ctx(manager), b.id)

        pending = await TimeOffService.get_pending_approvals(db, make_ctx(manager))
        assert [r.id for r in pending] == [a.id]

        owner_pending = await TimeOffService.get_pending_approvals(db, make_ctx(owner))
        assert [r.employee_id for r in owner_pending] == [manager.id]

    async def test_calendar_shows_approved_only(self, db, team):
        alice, bob, manager = team["alice"], team["bob"], team["manager"]
        a = await TimeOffService.create_request(db, make_ctx(alice), _body())
        b = await TimeOffService.create_request(db, make_ctx(bob), _body())
        await TimeOffService.approve_request(db, make_ctx(manager), a.id)
        await TimeOffService.approve_request(db, make_ctx(manager), b.id)
        await TimeOffService.create_request(db, make_ctx(alice), _body(start=MON + timedelta(days=7), end=MON + timedelta(days=7)))

        entries = await TimeOffService.get_team_calendar(db, make_ctx(alice))
        assert {e.request_id for e in entries} == {a.id, b.id}

        sales = await TimeOffService.get_team_calendar(db, make_ctx(alice), departments=["Sales"])
        assert [e.request_id for e in sales] == [b.id]

        later = await TimeOffService.get_team_calendar(
            db, make_ctx(alice), from_date=FRI + timedelta(days=1),
        )
        assert later == []

    async def test_balances(self, db, team):
        alice = team["alice"]
        await TimeOffService.create_request(db, make_ctx(alice), _body())
        balances = await TimeOffService.get_balances(db, make_ctx(alice))
        assert balances.vacation == Decimal("10")
        assert balances.sick == Decimal("5")
        assert balances.personal == Decimal("3")
