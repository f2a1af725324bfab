from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlmodel import Session, col, select

from erpcore.domain.billing_calendar import as_utc
from erpcore.domain.models import (
    CanceledCleanupRead,
    Invoice,
    InvoiceStatus,
    OverdueInvoiceErrorRead,
    OverdueRunRead,
    Subscription,
    SubscriptionStatus,
    TrialExpiryRead,
    UserAccount,
    now_utc,
)
from erpcore.domain.money import parse_amount
from erpcore.domain.payables import calculate_days_overdue
from erpcore.infra import db
from erpcore.infra.events import (
    EVENT_INVOICE_UNCOLLECTIBLE,
    EVENT_SUBSCRIPTION_EXPIRED,
    EVENT_TRIAL_EXPIRED,
    EventBus,
    event_bus,
)
from erpcore.infra.logging import get_logger
from erpcore.infra.mailer import Notifier, OverdueNotification, ResendMailer

logger = get_logger(__name__)


class DunningError(Exception):
    pass


class DunningService:
    def __init__(
        self,
        *,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = now_utc,
        bus: EventBus = event_bus,
    ) -> None:
        self._notifier: Notifier = notifier if notifier is not None else ResendMailer()
        self._clock = clock
        self._bus = bus

    def _session(self) -> Session:
        return Session(db.get_engine(), expire_on_commit=False)

    def mark_overdue_invoices(self, now: datetime | None = None) -> OverdueRunRead:
        run_at = as_utc(now) if now is not None else self._clock()
        today = run_at.date()

        with self._session() as session:
            invoice_ids = list(
                session.exec(
                    select(Invoice.id)
                    .where(Invoice.status == InvoiceStatus.OPEN)
                    .where(col(Invoice.due_date) < today)
                    .order_by(col(Invoice.due_date))
                ).all()
            )

        if not invoice_ids:
            return OverdueRunRead(message="No overdue invoices found")

        updated = 0
        errors: list[OverdueInvoiceErrorRead] = []
        for invoice_id in invoice_ids:
            try:
                self._mark_invoice_overdue(invoice_id, run_at)
            except DunningError as exc:
                logger.error("overdue_invoice_rejected", invoice_id=invoice_id, error=str(exc))
                errors.append(OverdueInvoiceErrorRead(invoice_id=invoice_id, error=str(exc)))
                continue
            except Exception as exc:
                logger.exception("overdue_invoice_failed", invoice_id=invoice_id)
                errors.append(OverdueInvoiceErrorRead(invoice_id=invoice_id, error=str(exc)))
                continue
            updated += 1

        return OverdueRunRead(
            message=f"Processed {updated} overdue invoices",
            processed=updated,
            total=len(invoice_ids),
            errors=errors or None,
        )

    def _mark_invoice_overdue(self, invoice_id: str, run_at: datetime) -> None:
        with self._session() as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                raise DunningError("invoice not found")
            subscription = session.get(Subscription, invoice.subscription_id)
            if subscription is None:
                raise DunningError("No associated subscription")
            user = session.get(UserAccount, subscription.user_id)
            if user is None:
                raise DunningError("No subscriber for subscription")

            invoice.status = InvoiceStatus.UNCOLLECTIBLE
            invoice.updated_at = run_at
            session.add(invoice)
            if subscription.status != SubscriptionStatus.CANCELED:
                subscription.status = SubscriptionStatus.PAST_DUE
                subscription.updated_at = run_at
                session.add(subscription)
            self._bus.publish_dict(
                EVENT_INVOICE_UNCOLLECTIBLE,
                subscription.user_id,
                {"invoice_id": invoice.id, "subscription_id": subscription.id},
                correlation_id=invoice.id,
                session=session,
            )
            session.commit()

            due_date = invoice.due_date
            self._notifier.send_overdue_notice(
                OverdueNotification(
                    to=user.email,
                    user_name=user.name,
                    invoice_id=invoice.id,
                    amount=parse_amount(invoice.amount),
                    due_date=due_date.isoformat() if due_date is not None else "",
                    days_overdue=calculate_days_overdue(due_date or run_at, run_at),
                )
            )
            logger.info(
                "invoice_marked_uncollectible",
                invoice_id=invoice.id,
                subscription_id=subscription.id,
                subscription_status=subscription.status.value,
            )

    def expire_trials(self, now: datetime | None = None) -> TrialExpiryRead:
        run_at = as_utc(now) if now is not None else self._clock()

        with self._session() as session:
            expired = list(
                session.exec(
                    select(Subscription)
                    .where(Subscription.status == SubscriptionStatus.TRIALING)
                    .where(col(Subscription.trial_end) < run_at)
                ).all()
            )
            if not expired:
                return TrialExpiryRead(message="No expired trials to process.")

            for subscription in expired:
                subscription.status = SubscriptionStatus.INACTIVE
                subscription.updated_at = run_at
                session.add(subscription)
                self._bus.publish_dict(
                    EVENT_TRIAL_EXPIRED,
                    subscription.user_id,
                    {"subscription_id": subscription.id},
                    session=session,
                )
            session.commit()

        trial_ids = [item.id for item in expired]
        logger.info("trials_expired", count=len(trial_ids))
        return TrialExpiryRead(
            message=f"Processed {len(trial_ids)} expired trials.",
            processed=trial_ids,
        )

    def expire_canceled_subscriptions(self, now: datetime | None = None) -> CanceledCleanupRead:
        """Deactivate canceled subscriptions whose paid-through period has ended."""
        run_at = as_utc(now) if now is not None else self._clock()

        with self._session() as session:
            expired = list(
                session.exec(
                    select(Subscription)
                    .where(Subscription.status == SubscriptionStatus.CANCELED)
                    .where(col(Subscription.cancel_at_period_end).is_(True))
                    .where(col(Subscription.current_period_end) < run_at)
                ).all()
            )
            if not expired:
                return CanceledCleanupRead(message="No expired canceled subscriptions to process.")

            for subscription in expired:
                subscription.status = SubscriptionStatus.INACTIVE
                subscription.updated_at = run_at
                session.add(subscription)
                self._bus.publish_dict(
                    EVENT_SUBSCRIPTION_EXPIRED,
                    subscription.user_id,
                    {"subscription_id": subscription.id},
                    session=session,
                )
            session.commit()

        subscription_ids = [item.id for item in expired]
        logger.info("canceled_subscriptions_expired", count=len(subscription_ids))
        return CanceledCleanupRead(
            message=f"Processed {len(subscription_ids)} expired canceled subscriptions.",
            processed=subscription_ids,
        )
