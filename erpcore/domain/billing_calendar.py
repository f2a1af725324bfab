from __future__ import annotations

import calendar
from datetime import UTC, datetime

from erpcore.domain.models import PlanChangeProration
from erpcore.domain.money import round_to

MAX_ANNIVERSARY_DAY = 28
SECONDS_PER_DAY = 86_400


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else datetime.now(UTC)


def diff_days(later: datetime, earlier: datetime) -> int:
    """Whole days between two instants, truncated toward zero."""
    seconds = (as_utc(later) - as_utc(earlier)).total_seconds()
    return int(seconds / SECONDS_PER_DAY)


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_anniversary_day(period_start: datetime) -> int:
    # Capped so that every month, February included, has the anniversary.
    return min(as_utc(period_start).day, MAX_ANNIVERSARY_DAY)


def is_billing_anniversary(anniversary_day: int, now: datetime | None = None) -> bool:
    return _now(now).day == anniversary_day


def was_invoiced_today(last_invoiced_at: datetime | None, now: datetime | None = None) -> bool:
    if last_invoiced_at is None:
        return False
    return as_utc(last_invoiced_at).date() == _now(now).date()


def calculate_next_period_end(period_start: datetime, anniversary_day: int | None) -> datetime:
    start = as_utc(period_start)
    next_month = add_months(start, 1)
    days_in_next_month = calendar.monthrange(next_month.year, next_month.month)[1]
    effective_day = anniversary_day if anniversary_day is not None else calculate_anniversary_day(start)
    return next_month.replace(day=min(effective_day, days_in_next_month))


def resolve_billing_period(
    *,
    last_invoice_period_end: datetime | None,
    current_period_start: datetime | None,
    current_period_end: datetime | None,
    created_at: datetime,
    anniversary_day: int | None,
) -> tuple[datetime, datetime]:
    """Pick the next billing window for a subscription.

    The previous invoice's end wins, then the subscription's own current
    period, then its creation date. The first and last tiers derive the end
    from the anniversary day.
    """
    if last_invoice_period_end is not None:
        start = as_utc(last_invoice_period_end)
        return start, calculate_next_period_end(start, anniversary_day)
    if current_period_start is not None and current_period_end is not None:
        return as_utc(current_period_start), as_utc(current_period_end)
    start = as_utc(created_at)
    return start, calculate_next_period_end(start, anniversary_day)


def calculate_plan_change_proration(
    old_price_per_member: float,
    new_price_per_member: float,
    member_count: int,
    current_period_start: datetime,
    current_period_end: datetime,
    now: datetime | None = None,
) -> PlanChangeProration:
    total_days = diff_days(current_period_end, current_period_start)
    remaining_days = diff_days(current_period_end, _now(now))

    if remaining_days <= 0:
        return PlanChangeProration(
            credit=0,
            charge=0,
            net_amount=0,
            remaining_days=0,
            total_days=total_days,
        )

    factor = remaining_days / total_days
    credit = old_price_per_member * member_count * factor
    charge = new_price_per_member * member_count * factor
    return PlanChangeProration(
        credit=round_to(credit),
        charge=round_to(charge),
        net_amount=round_to(charge - credit),
        remaining_days=remaining_days,
        total_days=total_days,
    )
