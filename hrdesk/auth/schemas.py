"""Identity schemas — the explicit per-request context passed to services."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, field_validator


class RequestContext(BaseModel):
    """Who is acting, on behalf of which company.

    Built once per HTTP request by ``get_request_context`` and passed
    explicitly into every service call.
    """

    model_config = ConfigDict(frozen=True)

    company_id: uuid.UUID
    employee_id: uuid.UUID
    actor_email: str

    @field_validator("actor_email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        return v.strip().lower()


class TokenClaims(BaseModel):
    """Subset of the hosted auth provider's access-token claims we rely on."""

    sub: str
    email: str
    company_id: uuid.UUID
