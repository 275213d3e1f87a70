"""
Unit tests for billing cadence arithmetic.
"""
import os
import sys
from datetime import date

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from recurring_engine.services.billing_cadence import (  # noqa: E402
    last_day_of_month,
    next_billing_date,
)


def test_monthly_month_end_rollover() -> None:
    assert next_billing_date(date(2024, 1, 31), "monthly", date(2024, 1, 31)) == date(2024, 2, 29)
    assert next_billing_date(date(2023, 1, 31), "monthly", date(2023, 1, 31)) == date(2023, 2, 28)

    # Month-end anchors snap back to the real month end after February
    assert next_billing_date(date(2024, 2, 29), "monthly", date(2024, 1, 31)) == date(2024, 3, 31)
    assert next_billing_date(date(2024, 3, 31), "monthly", date(2024, 1, 31)) == date(2024, 4, 30)
    print("✓ monthly month-end rollover")


def test_monthly_days_29_and_30_clamp_to_28() -> None:
    anchor = date(2024, 1, 30)
    assert next_billing_date(anchor, "monthly", anchor) == date(2024, 2, 28)
    assert next_billing_date(date(2024, 2, 28), "monthly", anchor) == date(2024, 3, 28)

    anchor = date(2024, 1, 15)
    assert next_billing_date(anchor, "monthly", anchor) == date(2024, 2, 15)
    assert next_billing_date(date(2024, 12, 15), "monthly", anchor) == date(2025, 1, 15)
    print("✓ monthly clamp to 28")


def test_yearly_uses_anchor_month() -> None:
    anchor = date(2020, 2, 29)
    assert next_billing_date(anchor, "yearly", anchor) == date(2021, 2, 28)

    anchor = date(2023, 3, 31)
    assert next_billing_date(anchor, "yearly", anchor) == date(2024, 3, 31)

    anchor = date(2023, 6, 10)
    assert next_billing_date(date(2024, 6, 10), "yearly", anchor) == date(2025, 6, 10)
    print("✓ yearly")


def test_fixed_step_cadences() -> None:
    anchor = date(2024, 2, 26)
    assert next_billing_date(anchor, "daily", anchor) == date(2024, 2, 27)
    assert next_billing_date(anchor, "weekly", anchor) == date(2024, 3, 4)
    assert next_billing_date(anchor, "biweekly", anchor) == date(2024, 3, 11)
    print("✓ daily, weekly and biweekly steps")


def test_semimonthly_alternates() -> None:
    anchor = date(2024, 1, 5)
    first = next_billing_date(anchor, "semimonthly", anchor)
    second = next_billing_date(first, "semimonthly", anchor)
    assert first == date(2024, 1, 20)
    assert second == date(2024, 2, 5)

    anchor = date(2024, 1, 30)
    assert next_billing_date(anchor, "semimonthly", anchor) == date(2024, 2, 15)
    # The late half of February is clamped to the month length
    assert next_billing_date(date(2024, 2, 15), "semimonthly", anchor) == date(2024, 2, 29)
    assert next_billing_date(date(2024, 2, 29), "semimonthly", anchor) == date(2024, 3, 15)
    print("✓ semimonthly")


def test_next_date_is_strictly_later() -> None:
    anchor = date(2024, 1, 31)
    for frequency in ("daily", "weekly", "biweekly", "semimonthly", "monthly", "yearly"):
        current = anchor
        for _ in range(30):
            following = next_billing_date(current, frequency, anchor)
            assert following > current, (frequency, current, following)
            current = following
    print("✓ strictly increasing")


def test_unknown_frequency_raises() -> None:
    try:
        next_billing_date(date(2024, 1, 1), "fortnightly", date(2024, 1, 1))
    except ValueError as exc:
        assert "fortnightly" in str(exc)
    else:
        raise AssertionError("expected ValueError")
    print("✓ unknown frequency")


def test_last_day_of_month() -> None:
    assert last_day_of_month(2024, 2) == date(2024, 2, 29)
    assert last_day_of_month(2100, 2) == date(2100, 2, 28)
    assert last_day_of_month(2024, 12) == date(2024, 12, 31)
    print("✓ last day of month")


if __name__ == "__main__":
    test_monthly_month_end_rollover()
    test_monthly_days_29_and_30_clamp_to_28()
    test_yearly_uses_anchor_month()
    test_fixed_step_cadences()
    test_semimonthly_alternates()
    test_next_date_is_strictly_later()
    test_unknown_frequency_raises()
    test_last_day_of_month()
    print("All billing cadence tests passed.")
