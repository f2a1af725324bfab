from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlalchemy import event as sa_event
from sqlalchemy.orm import SessionTransaction
from sqlmodel import Session

from erpcore.domain.models import EventEnvelope, EventRecord
from erpcore.infra import db

EventHandler = Callable[[EventEnvelope], None]

EVENT_INVOICE_CREATED = "billing.invoice.created"
EVENT_INVOICE_UNCOLLECTIBLE = "billing.invoice.uncollectible"
EVENT_TRIAL_EXPIRED = "billing.trial.expired"
EVENT_SUBSCRIPTION_EXPIRED = "billing.subscription.expired"

_PENDING_KEY = "erpcore.pending_events"


class EventBus:
    """Persists events and fans them out to in-process subscribers.

    Events published inside a caller's session reach subscribers only once
    that session commits; a rollback drops them together with their rows.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        record = EventRecord(
            event_id=event.event_id,
            event_type=event.event_type,
            subject_id=event.subject_id,
            ts=event.ts,
            correlation_id=event.correlation_id,
            payload=event.payload,
        )
        if session is None:
            with Session(db.get_engine()) as own_session:
                own_session.add(record)
                own_session.commit()
            self._dispatch(event)
            return

        session.add(record)
        self._defer_until_commit(session, event)

    def publish_dict(
        self,
        event_type: str,
        subject_id: str,
        payload: dict[str, Any],
        *,
        correlation_id: str | None = None,
        session: Session | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            subject_id=subject_id,
            correlation_id=correlation_id,
            payload=payload,
        )
        self.publish(event, session=session)
        return event

    def _dispatch(self, event: EventEnvelope) -> None:
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            handler(event)

    def _defer_until_commit(self, session: Session, event: EventEnvelope) -> None:
        pending: list[EventEnvelope] | None = session.info.get(_PENDING_KEY)
        if pending is None:
            pending = []
            session.info[_PENDING_KEY] = pending

            def _after_commit(_session: Session) -> None:
                ready = list(pending)
                pending.clear()
                for item in ready:
                    self._dispatch(item)

            def _after_rollback(_session: Session, previous_transaction: SessionTransaction) -> None:
                if previous_transaction.nested:
                    return
                pending.clear()

            sa_event.listen(session, "after_commit", _after_commit)
            sa_event.listen(session, "after_soft_rollback", _after_rollback)
        pending.append(event)


event_bus = EventBus()
