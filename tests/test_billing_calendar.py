from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from erpcore.domain.billing_calendar import (
    calculate_anniversary_day,
    calculate_next_period_end,
    calculate_plan_change_proration,
    diff_days,
    is_billing_anniversary,
    resolve_billing_period,
    was_invoiced_today,
)


def _utc(year: int, month: int, day: int, hour: int = 0) -> datetime:
    return datetime(year, month, day, hour, tzinfo=UTC)


@pytest.mark.parametrize(
    ("period_start", "expected"),
    [
        (_utc(2024, 3, 15), 15),
        (_utc(2024, 1, 1), 1),
        (_utc(2024, 6, 27), 27),
        (_utc(2024, 2, 28), 28),
        (_utc(2024, 3, 29), 28),
        (_utc(2024, 5, 31), 28),
    ],
)
def test_anniversary_day_is_capped_at_28(period_start: datetime, expected: int) -> None:
    assert calculate_anniversary_day(period_start) == expected


def test_anniversary_day_uses_utc() -> None:
    evening_in_new_york = datetime(2024, 3, 15, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert calculate_anniversary_day(evening_in_new_york) == 16


def test_is_billing_anniversary() -> None:
    now = _utc(2024, 3, 15, 12)
    assert is_billing_anniversary(15, now=now) is True
    assert is_billing_anniversary(10, now=now) is False
    assert is_billing_anniversary(20, now=now) is False


def test_was_invoiced_today() -> None:
    now = _utc(2024, 3, 15, 18)
    assert was_invoiced_today(None, now=now) is False
    assert was_invoiced_today(_utc(2024, 3, 15, 1), now=now) is True
    assert was_invoiced_today(datetime(2024, 3, 15, 6), now=now) is True
    assert was_invoiced_today(_utc(2024, 3, 14, 23), now=now) is False


def test_next_period_end_lands_on_anniversary() -> None:
    assert calculate_next_period_end(_utc(2024, 1, 15), 15) == _utc(2024, 2, 15)
    assert calculate_next_period_end(_utc(2024, 12, 15), 15) == _utc(2025, 1, 15)
    assert calculate_next_period_end(_utc(2024, 1, 10), None) == _utc(2024, 2, 10)


def test_next_period_end_clamps_to_short_months() -> None:
    assert calculate_next_period_end(_utc(2024, 1, 30), 30) == _utc(2024, 2, 29)
    assert calculate_next_period_end(_utc(2023, 1, 31), 31) == _utc(2023, 2, 28)
    assert calculate_next_period_end(_utc(2024, 2, 28), 28) == _utc(2024, 3, 28)


def test_next_period_end_keeps_time_of_day() -> None:
    start = datetime(2024, 4, 5, 9, 30, tzinfo=UTC)
    assert calculate_next_period_end(start, 5) == datetime(2024, 5, 5, 9, 30, tzinfo=UTC)


def test_billing_period_prefers_last_invoice() -> None:
    start, end = resolve_billing_period(
        last_invoice_period_end=_utc(2024, 3, 15),
        current_period_start=_utc(2024, 1, 1),
        current_period_end=_utc(2024, 2, 1),
        created_at=_utc(2023, 12, 1),
        anniversary_day=15,
    )
    assert (start, end) == (_utc(2024, 3, 15), _utc(2024, 4, 15))


def test_billing_period_falls_back_to_current_period() -> None:
    start, end = resolve_billing_period(
        last_invoice_period_end=None,
        current_period_start=datetime(2024, 1, 1),
        current_period_end=datetime(2024, 2, 1),
        created_at=_utc(2023, 12, 1),
        anniversary_day=1,
    )
    assert (start, end) == (_utc(2024, 1, 1), _utc(2024, 2, 1))


def test_billing_period_falls_back_to_creation_date() -> None:
    start, end = resolve_billing_period(
        last_invoice_period_end=None,
        current_period_start=_utc(2024, 1, 1),
        current_period_end=None,
        created_at=_utc(2023, 12, 10),
        anniversary_day=None,
    )
    assert (start, end) == (_utc(2023, 12, 10), _utc(2024, 1, 10))


def test_diff_days_truncates_toward_zero() -> None:
    assert diff_days(_utc(2024, 3, 2, 23), _utc(2024, 3, 1)) == 1
    assert diff_days(_utc(2024, 3, 1), _utc(2024, 3, 2, 23)) == -1


def test_plan_change_proration_halfway() -> None:
    result = calculate_plan_change_proration(
        1000,
        2000,
        2,
        _utc(2024, 3, 1),
        _utc(2024, 3, 31),
        now=_utc(2024, 3, 16),
    )
    assert result.total_days == 30
    assert result.remaining_days == 15
    assert result.credit == 1000
    assert result.charge == 2000
    assert result.net_amount == 1000


def test_plan_change_proration_after_period_end() -> None:
    result = calculate_plan_change_proration(
        1000,
        2000,
        2,
        _utc(2024, 3, 1),
        _utc(2024, 3, 31),
        now=_utc(2024, 4, 2),
    )
    assert (result.credit, result.charge, result.net_amount) == (0, 0, 0)
    assert result.remaining_days == 0
    assert result.total_days == 30
