"""Auth dependencies — bearer-token verification and request context.

Tokens are issued by the hosted auth provider; this service only verifies
them and maps the ``email`` / ``company_id`` claims onto an Employee.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hrdesk.auth.schemas import RequestContext, TokenClaims
from hrdesk.config import settings
from hrdesk.database import get_db
from hrdesk.employees.models import Employee


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


def decode_token(token: str) -> TokenClaims:
    """Verify *token* and return its claims. Raises 401 on any failure."""
    options: dict[str, Any] = {}
    kwargs: dict[str, Any] = {}
    if settings.JWT_AUDIENCE:
        kwargs["audience"] = settings.JWT_AUDIENCE
    else:
        options["verify_aud"] = False

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options=options,
            **kwargs,
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    # The provider may nest tenant data under app_metadata
    company_id = payload.get("company_id") or (payload.get("app_metadata") or {}).get("company_id")
    try:
        return TokenClaims(
            sub=str(payload["sub"]),
            email=str(payload["email"]),
            company_id=uuid.UUID(str(company_id)),
        )
    except (KeyError, ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Token is missing identity claims.")


# ── Core dependency ─────────────────────────────────────────────────

async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> RequestContext:
    """Verify the bearer token and resolve the acting employee."""
    claims = decode_token(_extract_bearer(request))

    result = await db.execute(
        select(Employee.id).where(
            Employee.company_id == claims.company_id,
            func.lower(Employee.email) == claims.email.lower(),
            Employee.is_active.is_(True),
        )
    )
    employee_id = result.scalar()
    if employee_id is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    return RequestContext(
        company_id=claims.company_id,
        employee_id=employee_id,
        actor_email=claims.email,
    )
