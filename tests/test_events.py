from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from erpcore.domain.models import EventEnvelope, EventRecord
from erpcore.infra.events import EVENT_INVOICE_CREATED, EventBus


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type=EVENT_INVOICE_CREATED,
        subject_id="user-1",
        correlation_id="inv_1",
        payload={"invoice_id": "inv_1", "amount": "1482.76"},
    )
    bus.subscribe(EVENT_INVOICE_CREATED, handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].subject_id == "user-1"
    assert stored[0].payload == {"invoice_id": "inv_1", "amount": "1482.76"}
    assert seen == [event.event_id]


def test_publish_dict_commits_on_its_own_session(sqlite_engine: Engine) -> None:
    bus = EventBus()
    wildcard: list[str] = []
    bus.subscribe("*", lambda event: wildcard.append(event.event_type))

    event = bus.publish_dict("billing.trial.expired", "user-2", {"subscription_id": "sub_1"})

    with Session(sqlite_engine) as session:
        stored = session.get(EventRecord, event.event_id)

    assert stored is not None
    assert stored.event_type == "billing.trial.expired"
    assert wildcard == ["billing.trial.expired"]


def test_unsubscribe_stops_delivery() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_type)

    bus.subscribe("billing.invoice.uncollectible", handler)
    bus.unsubscribe("billing.invoice.uncollectible", handler)
    with Session(engine) as session:
        bus.publish_dict("billing.invoice.uncollectible", "user-3", {}, session=session)

    assert seen == []


def test_subscribers_wait_for_the_callers_commit() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(EVENT_INVOICE_CREATED, lambda event: seen.append(event.correlation_id or ""))

    with Session(engine) as session:
        bus.publish_dict(EVENT_INVOICE_CREATED, "user-4", {}, correlation_id="inv_4", session=session)
        session.flush()
        assert seen == []
        session.commit()

    assert seen == ["inv_4"]


def test_rolled_back_events_never_reach_subscribers() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe("*", lambda event: seen.append(event.correlation_id or ""))

    with Session(engine) as session:
        bus.publish_dict(EVENT_INVOICE_CREATED, "user-5", {}, correlation_id="inv_5", session=session)
        session.rollback()
        bus.publish_dict(EVENT_INVOICE_CREATED, "user-5", {}, correlation_id="inv_6", session=session)
        session.commit()

    with Session(engine) as session:
        stored = [record.correlation_id for record in session.exec(select(EventRecord)).all()]

    assert seen == ["inv_6"]
    assert stored == ["inv_6"]
