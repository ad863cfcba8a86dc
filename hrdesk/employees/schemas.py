"""Directory Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clean_email(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip().lower()
    if not v:
        return None
    if "@" not in v or v.startswith("@") or v.endswith("@"):
        raise ValueError("Invalid email address.")
    return v


def _require_email(v: str) -> str:
    cleaned = _clean_email(v)
    if cleaned is None:
        raise ValueError("Email is required.")
    return cleaned


class EmployeeCreate(BaseModel):
    """Payload for adding an employee. Omitted balances start at the policy maxima."""

    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., max_length=255)
    position: Optional[str] = Field(None, max_length=200)
    department: Optional[str] = Field(None, max_length=100)
    manager_email: Optional[str] = Field(None, max_length=255)
    vacation_balance: Optional[Decimal] = Field(None, ge=0)
    sick_balance: Optional[Decimal] = Field(None, ge=0)
    personal_balance: Optional[Decimal] = Field(None, ge=0)

    normalise_email = field_validator("email")(_require_email)
    normalise_manager = field_validator("manager_email")(_clean_email)


class ManagerUpdate(BaseModel):
    manager_email: Optional[str] = None

    normalise_manager = field_validator("manager_email")(_clean_email)


class EmployeeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    email: str
    position: Optional[str] = None
    department: Optional[str] = None
    manager_email: Optional[str] = None
    vacation_balance: Decimal
    sick_balance: Decimal
    personal_balance: Decimal
    is_active: bool = True
    created_at: datetime


class OrgNode(BaseModel):
    """One employee in the org chart with their direct reports."""

    id: uuid.UUID
    name: str
    email: str
    position: Optional[str] = None
    department: Optional[str] = None
    children: list[OrgNode] = Field(default_factory=list)


OrgNode.model_rebuild()
