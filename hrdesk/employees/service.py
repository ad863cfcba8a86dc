"""Directory service layer — employee lookups, hiring, manager graph, org chart.

The reporting hierarchy is stored as a parent pointer by email
(``Employee.manager_email``). It is turned into an explicit
parent → children adjacency once per read, with cycle detection.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hrdesk.auth.schemas import RequestContext
from hrdesk.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    OrgChartCycleError,
    ValidationException,
    io_errors_as_transient,
)
from hrdesk.employees.models import Company, Employee
from hrdesk.employees.schemas import EmployeeCreate, OrgNode
from hrdesk.timeoff.policy_service import PolicyService

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# Pure graph helpers
# ═════════════════════════════════════════════════════════════════════


def is_manager_of(manager_email: str, employee: Employee) -> bool:
    """True when *employee* reports directly to *manager_email*."""
    return bool(employee.manager_email) and (
        employee.manager_email.lower() == manager_email.lower()
    )


def find_reporting_cycle(manager_of: Mapping[str, Optional[str]], start: str) -> list[str]:
    """Follow manager pointers from *start*; return the cycle hit, if any.

    *manager_of* maps lower-cased email → lower-cased manager email.
    """
    path: list[str] = []
    position: dict[str, int] = {}
    current: Optional[str] = start
    while current is not None and current in manager_of:
        if current in position:
            return path[position[current]:]
        position[current] = len(path)
        path.append(current)
        parent = manager_of[current]
        current = parent if parent != current else None
    return []


def build_org_chart(employees: Iterable[Employee]) -> list[OrgNode]:
    """Build the org forest from a flat employee list.

    Employees without a manager, with an unknown manager, or managing
    themselves are roots. Anyone not reachable from a root sits on or under
    a reporting cycle, which is reported instead of silently dropped.
    """
    people = list(employees)
    by_email = {e.email.lower(): e for e in people}

    children: dict[str, list[Employee]] = defaultdict(list)
    roots: list[Employee] = []
    for emp in people:
        email = emp.email.lower()
        manager = (emp.manager_email or "").lower()
        if manager and manager != email and manager in by_email:
            children[manager].append(emp)
        else:
            roots.append(emp)

    # Iterative walk: a reachability pass before any node is built
    reached: set[str] = set()
    stack = [e.email.lower() for e in roots]
    while stack:
        email = stack.pop()
        if email in reached:
            continue
        reached.add(email)
        stack.extend(c.email.lower() for c in children.get(email, []))

    if len(reached) != len(by_email):
        manager_of = {
            email: (e.manager_email or "").lower() or None for email, e in by_email.items()
        }
        for email in sorted(set(by_email) - reached):
            cycle = find_reporting_cycle(manager_of, email)
            if cycle:
                raise OrgChartCycleError(sorted(cycle))

    def _node(emp: Employee) -> OrgNode:
        return OrgNode(
            id=emp.id,
            name=emp.name,
            email=emp.email,
            position=emp.position,
            department=emp.department,
            children=[
                _node(c)
                for c in sorted(children.get(emp.email.lower(), []), key=lambda x: x.name)
            ],
        )

    return [_node(r) for r in sorted(roots, key=lambda x: x.name)]


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Async directory operations scoped to one company."""

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Employee:
        result = await db.execute(
            select(Employee).where(
                Employee.id == employee_id,
                Employee.company_id == company_id,
            )
        )
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def get_employee_by_email(
        db: AsyncSession,
        company_id: uuid.UUID,
        email: str,
    ) -> Optional[Employee]:
        result = await db.execute(
            select(Employee).where(
                Employee.company_id == company_id,
                func.lower(Employee.email) == email.strip().lower(),
            )
        )
        return result.scalars().first()

    @staticmethod
    async def get_employees_by_manager(
        db: AsyncSession,
        company_id: uuid.UUID,
        manager_email: str,
    ) -> Sequence[Employee]:
        """Direct reports of *manager_email*, ordered by name."""
        result = await db.execute(
            select(Employee)
            .where(
                Employee.company_id == company_id,
                func.lower(Employee.manager_email) == manager_email.strip().lower(),
                Employee.is_active.is_(True),
            )
            .order_by(Employee.name)
        )
        return result.scalars().all()

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        department: Optional[str] = None,
        include_inactive: bool = False,
    ) -> Sequence[Employee]:
        query = select(Employee).where(Employee.company_id == company_id)
        if not include_inactive:
            query = query.where(Employee.is_active.is_(True))
        if department:
            query = query.where(Employee.department == department)
        result = await db.execute(query.order_by(Employee.name))
        return result.scalars().all()

    @staticmethod
    async def get_org_chart(db: AsyncSession, company_id: uuid.UUID) -> list[OrgNode]:
        employees = await EmployeeService.list_employees(db, company_id)
        return build_org_chart(employees)

    # ─────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _manager_map(db: AsyncSession, company_id: uuid.UUID) -> dict[str, Optional[str]]:
        result = await db.execute(
            select(Employee.email, Employee.manager_email).where(
                Employee.company_id == company_id,
            )
        )
        return {
            email.lower(): (manager.lower() if manager else None)
            for email, manager in result.all()
        }

    @staticmethod
    async def _validate_manager(
        db: AsyncSession,
        company_id: uuid.UUID,
        employee_email: str,
        manager_email: Optional[str],
    ) -> None:
        if manager_email is None:
            return
        if manager_email == employee_email:
            raise ValidationException({"manager_email": ["An employee cannot manage themselves."]})

        manager_of = await EmployeeService._manager_map(db, company_id)
        if manager_email not in manager_of:
            raise ValidationException(
                {"manager_email": [f"No employee with email '{manager_email}' in this company."]}
            )

        manager_of[employee_email] = manager_email
        if find_reporting_cycle(manager_of, employee_email):
            raise ValidationException(
                {"manager_email": ["This assignment would create a circular reporting line."]}
            )

    @staticmethod
    async def create_employee(
        db: AsyncSession,
        company_id: uuid.UUID,
        data: EmployeeCreate,
    ) -> Employee:
        """Hire / sign-up. Balances default to the company's reset maxima."""
        if await db.get(Company, company_id) is None:
            raise NotFoundException("Company", str(company_id))

        if await EmployeeService.get_employee_by_email(db, company_id, data.email) is not None:
            raise ConflictError.duplicate("email", data.email)

        await EmployeeService._validate_manager(db, company_id, data.email, data.manager_email)

        policy = await PolicyService.get_reset_policy(db, company_id)
        employee = Employee(
            company_id=company_id,
            name=data.name.strip(),
            email=data.email,
            position=data.position,
            department=data.department,
            manager_email=data.manager_email,
            vacation_balance=(
                data.vacation_balance if data.vacation_balance is not None
                else Decimal(policy.vacation_max)
            ),
            sick_balance=(
                data.sick_balance if data.sick_balance is not None
                else Decimal(policy.sick_max)
            ),
            personal_balance=(
                data.personal_balance if data.personal_balance is not None
                else Decimal(policy.personal_max)
            ),
            is_active=True,
        )
        with io_errors_as_transient("create employee"):
            db.add(employee)
            try:
                await db.flush()
            except IntegrityError:
                raise ConflictError.duplicate("email", data.email)
            await db.refresh(employee, attribute_names=["created_at", "updated_at"])

        logger.info("Employee %s added to company %s", employee.email, company_id)
        return employee

    @staticmethod
    async def add_employee(
        db: AsyncSession,
        ctx: RequestContext,
        data: EmployeeCreate,
    ) -> Employee:
        """Owner-only wrapper around :meth:`create_employee`."""
        await PolicyService.require_company_owner(db, ctx)
        return await EmployeeService.create_employee(db, ctx.company_id, data)

    @staticmethod
    async def update_manager(
        db: AsyncSession,
        ctx: RequestContext,
        employee_id: uuid.UUID,
        manager_email: Optional[str],
    ) -> Employee:
        company = await db.get(Company, ctx.company_id)
        employee = await EmployeeService.get_employee(db, ctx.company_id, employee_id)
        if company is None or not (
            company.is_owner(ctx.actor_email) or is_manager_of(ctx.actor_email, employee)
        ):
            raise ForbiddenException("Only the company owner or current manager can reassign.")

        await EmployeeService._validate_manager(
            db, ctx.company_id, employee.email.lower(), manager_email,
        )

        with io_errors_as_transient("update manager"):
            employee.manager_email = manager_email
            await db.flush()

        logger.info("Employee %s now reports to %s", employee.email, manager_email)
        return employee
