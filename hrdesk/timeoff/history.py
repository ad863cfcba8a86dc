"""Append-only audit trail of request lifecycle transitions."""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrdesk.common.constants import HistoryAction
from hrdesk.common.exceptions import io_errors_as_transient
from hrdesk.timeoff.models import TimeOffRequestHistory


async def append_history(
    db: AsyncSession,
    request_id: uuid.UUID,
    action: HistoryAction,
    *,
    actor_email: Optional[str] = None,
) -> TimeOffRequestHistory:
    """Create and flush a history entry for *request_id*."""
    entry = TimeOffRequestHistory(
        request_id=request_id,
        action=action,
        actor_email=actor_email,
    )
    with io_errors_as_transient("append request history"):
        db.add(entry)
        await db.flush()
    return entry


async def list_history(
    db: AsyncSession,
    request_id: uuid.UUID,
) -> Sequence[TimeOffRequestHistory]:
    """Entries for *request_id*, oldest first."""
    result = await db.execute(
        select(TimeOffRequestHistory)
        .where(TimeOffRequestHistory.request_id == request_id)
        .order_by(TimeOffRequestHistory.timestamp.asc(), TimeOffRequestHistory.id.asc())
    )
    return result.scalars().all()
