from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from erpcore.domain.billing_calendar import as_utc, diff_days
from erpcore.domain.models import SubscriptionPlan


class ProrationError(Exception):
    pass


PLAN_DISPLAY_NAMES: dict[str, str] = {
    SubscriptionPlan.PRO.value: "Pro Plan",
    SubscriptionPlan.PREMIUM.value: "Premium Plan",
}
DEFAULT_PLAN_DISPLAY_NAME = "Standard Plan"


@dataclass(frozen=True)
class MembershipRow:
    member_id: str
    user_id: str
    organization_id: str
    created_at: datetime
    deleted_at: datetime | None = None
    email: str | None = None


@dataclass
class BillableMember:
    primary: MembershipRow
    memberships: list[MembershipRow] = field(default_factory=list)

    @property
    def organization_ids(self) -> list[str]:
        return [row.organization_id for row in self.memberships]


@dataclass(frozen=True)
class ProratedCharge:
    member_id: str
    organization_id: str
    description: str
    amount: float
    prorated: bool
    was_member_removed: bool
    billing_period_start: datetime
    billing_period_end: datetime
    days_in_period: int
    total_days_in_period: int


def plan_display_name(plan: str) -> str:
    return PLAN_DISPLAY_NAMES.get(str(plan), DEFAULT_PLAN_DISPLAY_NAME)


def deduplicate_members(rows: Iterable[MembershipRow]) -> list[BillableMember]:
    """Collapse membership rows to one billable member per user, first row first."""
    by_user: dict[str, BillableMember] = {}
    for row in rows:
        member = by_user.get(row.user_id)
        if member is None:
            member = BillableMember(primary=row)
            by_user[row.user_id] = member
        member.memberships.append(row)
    return list(by_user.values())


def prorate_member(
    member: BillableMember,
    *,
    organization_names: dict[str, str],
    period_start: datetime,
    period_end: datetime,
    price_per_member: float,
    plan: str,
) -> ProratedCharge:
    period_start = as_utc(period_start)
    period_end = as_utc(period_end)
    primary = member.primary

    joined_at = as_utc(primary.created_at)
    billing_start = joined_at if joined_at > period_start else period_start

    billing_end = period_end
    was_member_removed = False
    if primary.deleted_at is not None:
        left_at = as_utc(primary.deleted_at)
        if period_start < left_at < period_end:
            billing_end = left_at
            was_member_removed = True

    total_days = diff_days(period_end, period_start)
    days = diff_days(billing_end, billing_start)
    is_prorated = billing_start > period_start or was_member_removed

    if is_prorated:
        if total_days == 0:
            raise ProrationError("billing period shorter than one day cannot be prorated")
        amount = days / total_days * price_per_member
    else:
        amount = price_per_member

    org_names = ", ".join(
        organization_names.get(organization_id, "Unknown") for organization_id in member.organization_ids
    )
    note = ""
    if is_prorated:
        note = f" [Prorated: {days}/{total_days} days"
        if was_member_removed:
            note += ", removed mid-period"
        note += "]"

    return ProratedCharge(
        member_id=primary.member_id,
        organization_id=primary.organization_id,
        description=(
            f"{plan_display_name(plan)} - Member ({primary.email or 'Unknown'}) "
            f"in Orgs: {org_names}{note}"
        ),
        amount=amount,
        prorated=is_prorated,
        was_member_removed=was_member_removed,
        billing_period_start=billing_start,
        billing_period_end=billing_end,
        days_in_period=days,
        total_days_in_period=total_days,
    )


def build_charges(
    members: Sequence[BillableMember],
    *,
    organization_names: dict[str, str],
    period_start: datetime,
    period_end: datetime,
    price_per_member: float,
    plan: str,
) -> tuple[list[ProratedCharge], float]:
    charges = [
        prorate_member(
            member,
            organization_names=organization_names,
            period_start=period_start,
            period_end=period_end,
            price_per_member=price_per_member,
            plan=plan,
        )
        for member in members
    ]
    # Summed unrounded; rounding happens once when the total is stored.
    total = sum((charge.amount for charge in charges), 0.0)
    return charges, total
