from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    subject_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class UserAccount(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    email: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    slug: str = Field(index=True)
    owner_id: str = Field(foreign_key="users.id", index=True)
    status: str = Field(default="active")
    created_at: datetime = Field(default_factory=now_utc, index=True)


class OrganizationMember(SQLModel, table=True):
    __tablename__ = "organization_members"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    role: str = Field(default="member")
    created_at: datetime = Field(default_factory=now_utc)
    deleted_at: datetime | None = None


class SubscriptionPlan(StrEnum):
    FREE = "free"
    PRO = "pro"
    PRO_AI = "proAI"
    PREMIUM = "premium"
    PREMIUM_AI = "premiumAI"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    TRIALING = "trialing"


class InvoiceStatus(StrEnum):
    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    UNCOLLECTIBLE = "uncollectible"
    VOID = "void"


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"

    id: str = Field(default_factory=lambda: f"sub_{uuid4()}", primary_key=True)
    user_id: str = Field(foreign_key="users.id", unique=True, index=True)
    plan: SubscriptionPlan = Field(default=SubscriptionPlan.FREE, index=True)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.INACTIVE, index=True)
    price_per_member: str = Field(default="0.00")
    trial_end: datetime | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: datetime | None = None
    billing_anniversary_day: int | None = None
    last_invoiced_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class Invoice(SQLModel, table=True):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id",
            "billing_period_start",
            "billing_period_end",
            name="uq_invoices_subscription_period",
        ),
    )

    id: str = Field(default_factory=lambda: f"inv_{uuid4()}", primary_key=True)
    subscription_id: str = Field(foreign_key="subscriptions.id", index=True)
    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT, index=True)
    amount: str = Field(default="0")
    currency: str = Field(default="NGN")
    billing_period_start: datetime
    billing_period_end: datetime
    due_date: date | None = Field(default=None, index=True)
    paid_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class InvoiceItem(SQLModel, table=True):
    __tablename__ = "invoice_items"

    id: str = Field(default_factory=lambda: f"item_{uuid4()}", primary_key=True)
    invoice_id: str = Field(foreign_key="invoices.id", index=True)
    member_id: str | None = Field(default=None, foreign_key="organization_members.id")
    organization_id: str | None = Field(default=None, foreign_key="organizations.id")
    description: str
    amount: str
    prorated: bool = Field(default=False)
    billing_period_start: datetime
    billing_period_end: datetime


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    subject_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    correlation_id: str | None = None
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class LineItem(BaseModel):
    description: str = ""
    quantity: float
    unit_price: float
    sort_order: int | None = None


class TaxLine(BaseModel):
    tax_name: str
    tax_percentage: float
    tax_type: str | None = None


class AmountSummary(BaseModel):
    subtotal: float
    tax_amount: float
    total: float


class BillComparisonRecord(BaseModel):
    vendor_id: int | str
    vendor_invoice_number: str
    total: float | str
    bill_date: datetime | date | str


class SimilarityResult(BaseModel):
    similarity: float
    reasons: list[str] = PydanticField(default_factory=list)


class AgingBucket(StrEnum):
    CURRENT = "Current"
    DAYS_1_30 = "1-30"
    DAYS_31_60 = "31-60"
    DAYS_61_90 = "61-90"
    DAYS_90_PLUS = "90+"


class StatusDisplay(BaseModel):
    label: str
    color: str


class ForecastBill(BaseModel):
    due_date: datetime | date | str
    amount_due: float | str
    status: str


class CashFlowForecastRead(BaseModel):
    month: str
    year: int
    total_due: float
    bill_count: int


class PlanChangeProration(BaseModel):
    credit: float
    charge: float
    net_amount: float
    remaining_days: int
    total_days: int


class InvoicingRunRead(BaseModel):
    success: bool = True
    message: str
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0


class OverdueInvoiceErrorRead(BaseModel):
    invoice_id: str
    error: str


class OverdueRunRead(BaseModel):
    success: bool = True
    message: str
    processed: int = 0
    total: int = 0
    errors: list[OverdueInvoiceErrorRead] | None = None


class TrialExpiryRead(BaseModel):
    success: bool = True
    message: str
    processed: list[str] = PydanticField(default_factory=list)


class CanceledCleanupRead(BaseModel):
    success: bool = True
    message: str
    processed: list[str] = PydanticField(default_factory=list)
