"""Change notifications — in-process observer registry for live refresh.

Services queue a :class:`ChangeEvent` on the session they are writing
through; the events are delivered to subscribers only after that session's
transaction commits, and discarded on rollback. Events carry identifiers,
never state: subscribers are expected to re-read.

Delivery is advisory. No invariant may depend on it.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from hrdesk.common.constants import ChangeOperation

logger = logging.getLogger(__name__)

_PENDING_KEY = "hrdesk.pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    company_id: uuid.UUID
    table: str
    operation: ChangeOperation
    record_id: Optional[str] = None
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by :meth:`ChangeFeed.subscribe`."""

    def __init__(self, feed: ChangeFeed, company_id: uuid.UUID, callback: ChangeCallback) -> None:
        self._feed = feed
        self.company_id = company_id
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self)
            self.active = False


class ChangeFeed:
    """Per-company registry of change callbacks."""

    def __init__(self) -> None:
        self._subscribers: dict[uuid.UUID, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, company_id: uuid.UUID, on_change: ChangeCallback) -> Subscription:
        subscription = Subscription(self, company_id, on_change)
        with self._lock:
            self._subscribers.setdefault(company_id, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.company_id, [])
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                self._subscribers.pop(subscription.company_id, None)

    def subscriber_count(self, company_id: uuid.UUID) -> int:
        with self._lock:
            return len(self._subscribers.get(company_id, []))

    def publish(self, change: ChangeEvent) -> None:
        """Deliver *change* to every subscriber of its company.

        A failing callback is logged and skipped; it never reaches the
        writer that produced the change.
        """
        with self._lock:
            targets = list(self._subscribers.get(change.company_id, []))
        for subscription in targets:
            try:
                subscription.callback(change)
            except Exception:
                logger.exception(
                    "Change listener failed for %s on %s", change.table, change.company_id,
                )

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()


change_feed = ChangeFeed()


def subscribe_to_changes(company_id: uuid.UUID, on_change: ChangeCallback) -> Subscription:
    """Register *on_change* for request / policy / holiday changes of a company."""
    return change_feed.subscribe(company_id, on_change)


def queue_change(
    db: AsyncSession,
    company_id: uuid.UUID,
    table: str,
    operation: ChangeOperation,
    record_id: Optional[object] = None,
) -> ChangeEvent:
    """Stage a change event on *db*; it is published after commit."""
    change = ChangeEvent(
        company_id=company_id,
        table=table,
        operation=operation,
        record_id=str(record_id) if record_id is not None else None,
    )
    db.info.setdefault(_PENDING_KEY, []).append(change)
    return change


# ── Session hooks ───────────────────────────────────────────────────

@event.listens_for(Session, "after_commit")
def _publish_after_commit(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for change in pending:
        change_feed.publish(change)


@event.listens_for(Session, "after_soft_rollback")
def _discard_after_rollback(session: Session, previous_transaction) -> None:
    # Only an outermost rollback discards; SAVEPOINT rollbacks keep earlier events
    if previous_transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)
