"""Accounts-payable calculations.

Bill and purchase-order totals, duplicate-bill screening, aging and the
display lookups used by the payables screens. Everything here is pure: no
database access, no validation, and callers own input sanitation. Values that
are numerically malformed flow through as ``nan`` rather than raising.
"""

from __future__ import annotations

import calendar
import hashlib
import math
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime

from erpcore.domain.models import (
    AgingBucket,
    AmountSummary,
    BillComparisonRecord,
    CashFlowForecastRead,
    ForecastBill,
    LineItem,
    SimilarityResult,
    StatusDisplay,
    TaxLine,
)
from erpcore.domain.money import parse_amount, round_half_up, round_to, to_fixed

SECONDS_PER_DAY = 86_400

SAME_VENDOR_WEIGHT = 0.3
EXACT_INVOICE_WEIGHT = 0.4
PARTIAL_INVOICE_WEIGHT = 0.2
AMOUNT_WEIGHT = 0.2
DATE_WEIGHT = 0.1
AMOUNT_TOLERANCE_RATIO = 0.01
DATE_WINDOW_DAYS = 30

FORECAST_STATUSES = {"Pending", "Approved", "Overdue", "Partially Paid"}


def as_utc_datetime(value: datetime | date | str) -> datetime:
    """Normalize a date-ish value to an aware UTC datetime.

    Date-only values (and date-only ISO strings) mean UTC midnight; naive
    datetimes are taken to be UTC already.
    """
    if isinstance(value, str):
        raw = value.strip()
        if len(raw) == 10:
            value = date.fromisoformat(raw)
        else:
            value = datetime.fromisoformat(raw)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return datetime(value.year, value.month, value.day, tzinfo=UTC)


def _normalize_invoice_number(value: str) -> str:
    return value.lower().strip()


def calculate_bill_amounts(
    line_items: Sequence[LineItem],
    taxes: Sequence[TaxLine],
) -> AmountSummary:
    subtotal = sum((item.quantity * item.unit_price for item in line_items), 0.0)
    # Every tax line applies to the same unrounded subtotal; rates add up.
    tax_amount = sum((subtotal * tax.tax_percentage / 100 for tax in taxes), 0.0)

    rounded_subtotal = round_to(subtotal)
    rounded_tax = round_to(tax_amount)
    return AmountSummary(
        subtotal=rounded_subtotal,
        tax_amount=rounded_tax,
        total=round_to(rounded_subtotal + rounded_tax),
    )


def generate_duplicate_check_hash(
    vendor_id: int | str,
    vendor_invoice_number: str,
    amount: float,
) -> str:
    data = f"{vendor_id}-{_normalize_invoice_number(vendor_invoice_number)}-{to_fixed(amount)}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def calculate_duplicate_similarity(
    first: BillComparisonRecord,
    second: BillComparisonRecord,
) -> SimilarityResult:
    if first.vendor_id != second.vendor_id:
        return SimilarityResult(similarity=0, reasons=["Different vendors"])

    reasons: list[str] = []
    score = SAME_VENDOR_WEIGHT

    invoice_a = _normalize_invoice_number(first.vendor_invoice_number)
    invoice_b = _normalize_invoice_number(second.vendor_invoice_number)
    if invoice_a == invoice_b:
        score += EXACT_INVOICE_WEIGHT
        reasons.append("Exact invoice number match")
    elif invoice_a in invoice_b or invoice_b in invoice_a:
        score += PARTIAL_INVOICE_WEIGHT
        reasons.append("Partial invoice number match")

    amount_a = parse_amount(first.total)
    amount_b = parse_amount(second.total)
    if abs(amount_a - amount_b) <= max(amount_a, amount_b) * AMOUNT_TOLERANCE_RATIO:
        score += AMOUNT_WEIGHT
        reasons.append(f"Similar amounts ({to_fixed(amount_a)} vs {to_fixed(amount_b)})")

    delta = as_utc_datetime(first.bill_date) - as_utc_datetime(second.bill_date)
    days_diff = abs(delta.total_seconds()) / SECONDS_PER_DAY
    if days_diff <= DATE_WINDOW_DAYS:
        score += DATE_WEIGHT
        reasons.append(f"Bills within {round_half_up(days_diff)} days of each other")

    return SimilarityResult(similarity=min(score, 1.0), reasons=reasons)


def _days_overdue(due_date: datetime | date | str, now: datetime | None) -> int:
    current = as_utc_datetime(now) if now is not None else datetime.now(UTC)
    elapsed = (current - as_utc_datetime(due_date)).total_seconds()
    return math.floor(elapsed / SECONDS_PER_DAY)


def calculate_aging_bucket(
    due_date: datetime | date | str,
    now: datetime | None = None,
) -> AgingBucket:
    days_overdue = _days_overdue(due_date, now)
    if days_overdue < 0:
        return AgingBucket.CURRENT
    if days_overdue <= 30:
        return AgingBucket.DAYS_1_30
    if days_overdue <= 60:
        return AgingBucket.DAYS_31_60
    if days_overdue <= 90:
        return AgingBucket.DAYS_61_90
    return AgingBucket.DAYS_90_PLUS


def calculate_days_overdue(
    due_date: datetime | date | str,
    now: datetime | None = None,
) -> int:
    return max(0, _days_overdue(due_date, now))


def forecast_cash_flow(
    bills: Iterable[ForecastBill],
    forecast_months: int = 3,
    now: datetime | None = None,
) -> list[CashFlowForecastRead]:
    """Group payable bills by due month over the next ``forecast_months``.

    Only outstanding statuses count. Overdue bills due before ``now`` stay in
    the forecast so they show up in the month they were due.
    """
    current = as_utc_datetime(now) if now is not None else datetime.now(UTC)
    month_index = current.month - 1 + forecast_months
    end_year = current.year + month_index // 12
    end_month = month_index % 12 + 1
    end_day = min(current.day, calendar.monthrange(end_year, end_month)[1])
    window_end = current.replace(year=end_year, month=end_month, day=end_day)

    buckets: dict[tuple[int, int], CashFlowForecastRead] = {}
    for bill in bills:
        if bill.status not in FORECAST_STATUSES:
            continue
        due = as_utc_datetime(bill.due_date)
        if due > window_end:
            continue
        key = (due.year, due.month)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = CashFlowForecastRead(
                month=calendar.month_abbr[due.month],
                year=due.year,
                total_due=0,
                bill_count=0,
            )
            buckets[key] = bucket
        bucket.total_due += parse_amount(bill.amount_due)
        bucket.bill_count += 1

    result: list[CashFlowForecastRead] = []
    for key in sorted(buckets):
        bucket = buckets[key]
        bucket.total_due = round_to(bucket.total_due)
        result.append(bucket)
    return result


def calculate_string_similarity(first: str, second: str) -> float:
    """Levenshtein similarity in [0, 1], case-insensitive, rounded to 3 places."""
    s1 = first.lower().strip()
    s2 = second.lower().strip()

    if s1 == s2:
        return 1
    if not s1 or not s2:
        return 0

    # Rows follow s2, columns follow s1.
    previous = list(range(len(s1) + 1))
    for i in range(1, len(s2) + 1):
        current = [i] + [0] * len(s1)
        for j in range(1, len(s1) + 1):
            if s2[i - 1] == s1[j - 1]:
                current[j] = previous[j - 1]
            else:
                current[j] = min(
                    previous[j - 1] + 1,
                    current[j - 1] + 1,
                    previous[j] + 1,
                )
        previous = current

    distance = previous[len(s1)]
    similarity = 1 - distance / max(len(s1), len(s2))
    return round_to(similarity, 3)


PAYMENT_METHOD_LABELS: dict[str, str] = {
    "Bank Transfer": "Bank Transfer",
    "Wire": "Wire Transfer",
    "Check": "Check",
    "Cash": "Cash",
}

VENDOR_STATUS_DISPLAY: dict[str, tuple[str, str]] = {
    "Active": ("Active", "green"),
    "Inactive": ("Inactive", "gray"),
    "Suspended": ("Suspended", "red"),
    "Archived": ("Archived", "gray"),
}

BILL_STATUS_DISPLAY: dict[str, tuple[str, str]] = {
    "Draft": ("Draft", "gray"),
    "Pending": ("Pending", "yellow"),
    "Approved": ("Approved", "blue"),
    "Paid": ("Paid", "green"),
    "Overdue": ("Overdue", "red"),
    "Cancelled": ("Cancelled", "gray"),
    "Partially Paid": ("Partially Paid", "orange"),
}

PO_STATUS_DISPLAY: dict[str, tuple[str, str]] = {
    "Draft": ("Draft", "gray"),
    "Pending Approval": ("Pending Approval", "yellow"),
    "Approved": ("Approved", "blue"),
    "Sent": ("Sent", "blue"),
    "Partially Received": ("Partially Received", "orange"),
    "Received": ("Received", "green"),
    "Closed": ("Closed", "gray"),
    "Cancelled": ("Cancelled", "red"),
}


def _lookup_status(table: dict[str, tuple[str, str]], status: str) -> StatusDisplay:
    label, color = table.get(status, (status, "gray"))
    return StatusDisplay(label=label, color=color)


def format_payment_method(method: str) -> str:
    return PAYMENT_METHOD_LABELS.get(method) or method


def format_vendor_status(status: str) -> StatusDisplay:
    return _lookup_status(VENDOR_STATUS_DISPLAY, status)


def format_bill_status(status: str) -> StatusDisplay:
    return _lookup_status(BILL_STATUS_DISPLAY, status)


def format_po_status(status: str) -> StatusDisplay:
    return _lookup_status(PO_STATUS_DISPLAY, status)
