from __future__ import annotations

import os
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import StrEnum

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from erpcore.domain.billing_calendar import (
    as_utc,
    calculate_anniversary_day,
    is_billing_anniversary,
    resolve_billing_period,
    was_invoiced_today,
)
from erpcore.domain.models import (
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    InvoicingRunRead,
    Organization,
    OrganizationMember,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    UserAccount,
    now_utc,
)
from erpcore.domain.money import parse_amount, round_half_up, to_fixed
from erpcore.domain.proration import MembershipRow, build_charges, deduplicate_members
from erpcore.infra import db
from erpcore.infra.events import EVENT_INVOICE_CREATED, EventBus, event_bus
from erpcore.infra.logging import get_logger
from erpcore.infra.mailer import InvoiceLine, InvoiceNotification, Notifier, ResendMailer
from erpcore.infra.payment_gateway import PaymentGateway, PaymentGatewayError

logger = get_logger(__name__)

BILLING_CURRENCY = os.getenv("BILLING_CURRENCY", "NGN")
INVOICE_DUE_DAYS = 3


class InvoicingError(Exception):
    pass


class DuplicateInvoiceError(InvoicingError):
    pass


class InvoiceOutcome(StrEnum):
    PROCESSED = "PROCESSED"
    SKIPPED_NO_USER = "SKIPPED_NO_USER"
    SKIPPED_NOT_ANNIVERSARY = "SKIPPED_NOT_ANNIVERSARY"
    SKIPPED_INVOICED_TODAY = "SKIPPED_INVOICED_TODAY"
    SKIPPED_PERIOD_EXISTS = "SKIPPED_PERIOD_EXISTS"
    SKIPPED_NO_ORGANIZATIONS = "SKIPPED_NO_ORGANIZATIONS"
    SKIPPED_NO_MEMBERS = "SKIPPED_NO_MEMBERS"


def resolve_anniversary_day(subscription: Subscription) -> tuple[int, bool]:
    """Return the anniversary day and whether it was derived just now.

    Derived from the current period start, or from the creation date when
    the subscription has no period yet. A derived value must be written back
    by the caller.
    """
    if subscription.billing_anniversary_day:
        return subscription.billing_anniversary_day, False
    anchor = subscription.current_period_start or subscription.created_at
    return calculate_anniversary_day(anchor), True


def is_billable_membership(row: MembershipRow, period_start: datetime, period_end: datetime) -> bool:
    if as_utc(row.created_at) >= period_end:
        return False
    return not (row.deleted_at is not None and as_utc(row.deleted_at) <= period_start)


class InvoicingService:
    """Monthly per-member invoicing for paid subscriptions.

    Runs one subscription at a time. Two gates keep a rerun from double
    billing: ``last_invoiced_at`` on the subscription, stamped in the same
    commit as the invoice, and the unique
    ``(subscription_id, billing_period_start, billing_period_end)`` key on
    invoices, which is checked up front and enforced again at commit.
    """

    def __init__(
        self,
        *,
        payment_gateway: PaymentGateway | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = now_utc,
        bus: EventBus = event_bus,
        currency: str = BILLING_CURRENCY,
    ) -> None:
        self._payment_gateway = payment_gateway
        self._notifier: Notifier = notifier if notifier is not None else ResendMailer()
        self._clock = clock
        self._bus = bus
        self._currency = currency

    def _session(self) -> Session:
        return Session(db.get_engine(), expire_on_commit=False)

    def list_billable_subscription_ids(self) -> list[str]:
        with self._session() as session:
            rows = session.exec(
                select(Subscription.id)
                .where(Subscription.status == SubscriptionStatus.ACTIVE)
                .where(Subscription.plan != SubscriptionPlan.FREE)
                .order_by(col(Subscription.created_at))
            ).all()
            return list(rows)

    def run_batch(self, now: datetime | None = None) -> InvoicingRunRead:
        run_at = as_utc(now) if now is not None else self._clock()
        subscription_ids = self.list_billable_subscription_ids()
        if not subscription_ids:
            logger.info("invoicing_run_empty")
            return InvoicingRunRead(message="No active subscriptions to process.")

        processed = 0
        skipped = 0
        errors = 0
        for subscription_id in subscription_ids:
            try:
                outcome = self.process_subscription(subscription_id, now=run_at)
            except Exception:
                errors += 1
                logger.exception("subscription_invoicing_failed", subscription_id=subscription_id)
                continue
            if outcome == InvoiceOutcome.PROCESSED:
                processed += 1
            else:
                skipped += 1
                logger.info(
                    "subscription_invoicing_skipped",
                    subscription_id=subscription_id,
                    outcome=outcome.value,
                )

        logger.info(
            "invoicing_run_finished",
            processed=processed,
            skipped=skipped,
            errors=errors,
            total=len(subscription_ids),
        )
        return InvoicingRunRead(
            success=True,
            message=(
                f"Processed {processed} subscriptions successfully. "
                f"{skipped} skipped. {errors} errors."
            ),
            processed=processed,
            skipped=skipped,
            errors=errors,
            total=len(subscription_ids),
        )

    def process_subscription(self, subscription_id: str, *, now: datetime | None = None) -> InvoiceOutcome:
        run_at = as_utc(now) if now is not None else self._clock()

        with self._session() as session:
            subscription = session.get(Subscription, subscription_id)
            if subscription is None:
                raise InvoicingError(f"subscription {subscription_id} not found")
            owner = session.get(UserAccount, subscription.user_id)
            if owner is None:
                return InvoiceOutcome.SKIPPED_NO_USER

            anniversary_day, derived = resolve_anniversary_day(subscription)
            if derived:
                subscription.billing_anniversary_day = anniversary_day
                subscription.updated_at = run_at
                session.add(subscription)
                session.commit()

            if not is_billing_anniversary(anniversary_day, run_at):
                return InvoiceOutcome.SKIPPED_NOT_ANNIVERSARY
            if was_invoiced_today(subscription.last_invoiced_at, run_at):
                return InvoiceOutcome.SKIPPED_INVOICED_TODAY

            last_invoice = session.exec(
                select(Invoice)
                .where(Invoice.subscription_id == subscription.id)
                .order_by(col(Invoice.billing_period_end).desc())
            ).first()
            period_start, period_end = resolve_billing_period(
                last_invoice_period_end=last_invoice.billing_period_end if last_invoice else None,
                current_period_start=subscription.current_period_start,
                current_period_end=subscription.current_period_end,
                created_at=subscription.created_at,
                anniversary_day=anniversary_day,
            )

            if self._period_invoice_exists(session, subscription.id, period_start, period_end):
                return InvoiceOutcome.SKIPPED_PERIOD_EXISTS

            organizations = list(
                session.exec(
                    select(Organization).where(Organization.owner_id == subscription.user_id)
                ).all()
            )
            if not organizations:
                return InvoiceOutcome.SKIPPED_NO_ORGANIZATIONS

            rows = self._load_memberships(session, [org.id for org in organizations])
            members = deduplicate_members(
                row for row in rows if is_billable_membership(row, period_start, period_end)
            )
            if not members:
                return InvoiceOutcome.SKIPPED_NO_MEMBERS

            charges, total = build_charges(
                members,
                organization_names={org.id: org.name for org in organizations},
                period_start=period_start,
                period_end=period_end,
                price_per_member=parse_amount(subscription.price_per_member),
                plan=subscription.plan,
            )

            due_date = (period_end + timedelta(days=INVOICE_DUE_DAYS)).date()
            invoice = Invoice(
                subscription_id=subscription.id,
                status=InvoiceStatus.OPEN,
                amount="0",
                currency=self._currency,
                billing_period_start=period_start,
                billing_period_end=period_end,
                due_date=due_date,
                created_at=run_at,
                updated_at=run_at,
            )
            items = [
                InvoiceItem(
                    invoice_id=invoice.id,
                    member_id=charge.member_id,
                    organization_id=charge.organization_id,
                    description=charge.description,
                    amount=to_fixed(charge.amount),
                    prorated=charge.prorated,
                    billing_period_start=charge.billing_period_start,
                    billing_period_end=charge.billing_period_end,
                )
                for charge in charges
            ]
            try:
                session.add(invoice)
                session.flush()
                session.add_all(items)
                invoice.amount = to_fixed(total)
                session.add(invoice)
                subscription.last_invoiced_at = run_at
                subscription.updated_at = run_at
                session.add(subscription)
                self._bus.publish_dict(
                    EVENT_INVOICE_CREATED,
                    subscription.user_id,
                    {
                        "invoice_id": invoice.id,
                        "subscription_id": subscription.id,
                        "amount": invoice.amount,
                        "item_count": len(items),
                        "billing_period_start": period_start.isoformat(),
                        "billing_period_end": period_end.isoformat(),
                    },
                    correlation_id=invoice.id,
                    session=session,
                )
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                logger.warning(
                    "invoice_period_conflict",
                    subscription_id=subscription.id,
                    billing_period_start=period_start.isoformat(),
                    billing_period_end=period_end.isoformat(),
                )
                if self._period_invoice_exists(session, subscription.id, period_start, period_end):
                    return InvoiceOutcome.SKIPPED_PERIOD_EXISTS
                raise DuplicateInvoiceError("failed to create invoice for billing period") from exc

            logger.info(
                "invoice_created",
                subscription_id=subscription.id,
                invoice_id=invoice.id,
                amount=invoice.amount,
                items=len(items),
            )

            payment_link = self._request_payment_link(
                email=owner.email,
                invoice_id=invoice.id,
                user_id=subscription.user_id,
                total=total,
            )
            self._notifier.send_invoice(
                InvoiceNotification(
                    to=owner.email,
                    invoice_id=invoice.id,
                    amount=total,
                    due_date=due_date.isoformat(),
                    items=[InvoiceLine(description=item.description, amount=item.amount) for item in items],
                    payment_link=payment_link,
                )
            )
            return InvoiceOutcome.PROCESSED

    @staticmethod
    def _period_invoice_exists(
        session: Session,
        subscription_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> bool:
        existing = session.exec(
            select(Invoice.id)
            .where(Invoice.subscription_id == subscription_id)
            .where(Invoice.billing_period_start == period_start)
            .where(Invoice.billing_period_end == period_end)
        ).first()
        return existing is not None

    @staticmethod
    def _load_memberships(session: Session, organization_ids: list[str]) -> list[MembershipRow]:
        rows = session.exec(
            select(OrganizationMember, UserAccount.email)
            .join(UserAccount, col(UserAccount.id) == col(OrganizationMember.user_id), isouter=True)
            .where(col(OrganizationMember.organization_id).in_(organization_ids))
            .order_by(col(OrganizationMember.created_at), col(OrganizationMember.id))
        ).all()
        return [
            MembershipRow(
                member_id=member.id,
                user_id=member.user_id,
                organization_id=member.organization_id,
                created_at=member.created_at,
                deleted_at=member.deleted_at,
                email=email,
            )
            for member, email in rows
        ]

    def _request_payment_link(
        self,
        *,
        email: str,
        invoice_id: str,
        user_id: str,
        total: float,
    ) -> str:
        if self._payment_gateway is None:
            return ""
        try:
            return self._payment_gateway.create_payment_link(
                email=email,
                amount_minor=round_half_up(total * 100),
                metadata={
                    "invoice_id": invoice_id,
                    "user_id": user_id,
                    "type": "invoice-payment",
                },
            )
        except PaymentGatewayError as exc:
            logger.error("payment_link_failed", invoice_id=invoice_id, error=str(exc))
            return ""
        except Exception:
            # A gateway outage never blocks the invoice or its notification.
            logger.exception("payment_link_error", invoice_id=invoice_id)
            return ""
