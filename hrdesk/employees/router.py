"""Employee directory router.

Routes:
    /employees                — List, add employees
    /employees/me             — The authenticated employee
    /employees/my-team        — Direct reports of the authenticated employee
    /employees/org-chart      — Reporting hierarchy
    /employees/{id}           — Employee detail
    /employees/{id}/manager   — Reassign manager
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hrdesk.auth.dependencies import get_request_context
from hrdesk.auth.schemas import RequestContext
from hrdesk.database import get_db
from hrdesk.employees.schemas import EmployeeCreate, EmployeeOut, ManagerUpdate, OrgNode
from hrdesk.employees.service import EmployeeService

router = APIRouter(prefix="", tags=["employees"])


# ── GET /employees ──────────────────────────────────────────────────

@router.get("", response_model=list[EmployeeOut])
async def list_employees(
    department: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.list_employees(
        db, ctx.company_id, department=department, include_inactive=include_inactive,
    )


# ── POST /employees ─────────────────────────────────────────────────

@router.post("", response_model=EmployeeOut, status_code=201)
async def add_employee(
    body: EmployeeCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Add an employee (company owner only)."""
    return await EmployeeService.add_employee(db, ctx, body)


# ── GET /employees/me ───────────────────────────────────────────────

@router.get("/me", response_model=EmployeeOut)
async def get_me(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.get_employee(db, ctx.company_id, ctx.employee_id)


# ── GET /employees/my-team ──────────────────────────────────────────

@router.get("/my-team", response_model=list[EmployeeOut])
async def my_team(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.get_employees_by_manager(db, ctx.company_id, ctx.actor_email)


# ── GET /employees/org-chart ────────────────────────────────────────

@router.get("/org-chart", response_model=list[OrgNode])
async def org_chart(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Org forest; a reporting cycle is reported as 409, never as an empty tree."""
    return await EmployeeService.get_org_chart(db, ctx.company_id)


# ── GET /employees/{id} ─────────────────────────────────────────────

@router.get("/{employee_id}", response_model=EmployeeOut)
async def get_employee(
    employee_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.get_employee(db, ctx.company_id, employee_id)


# ── PUT /employees/{id}/manager ─────────────────────────────────────

@router.put("/{employee_id}/manager", response_model=EmployeeOut)
async def update_manager(
    employee_id: uuid.UUID,
    body: ManagerUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.update_manager(db, ctx, employee_id, body.manager_email)
