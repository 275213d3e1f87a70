"""
Unit tests for the statistical classifier used by subscription detection.
"""
import os
import sys
from datetime import date, timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from recurring_engine.services.subscription_statistics import (  # noqa: E402
    CONFIDENCE_ORDER,
    calculate_amount_variance,
    calculate_billing_day,
    calculate_confidence,
    calculate_date_regularity,
    calculate_frequency,
    day_of_week,
)


def _every(start: date, days: int, count: int) -> list:
    return [start + timedelta(days=days * i) for i in range(count)]


def test_amount_variance() -> None:
    assert calculate_amount_variance([9.99, 9.99, 9.99]) == 0
    assert calculate_amount_variance([10.0]) == 0
    assert calculate_amount_variance([]) == 0
    assert calculate_amount_variance([0.0, 0.0]) == 0

    # population std dev of [10, 20] is 5, mean 15
    assert abs(calculate_amount_variance([10.0, 20.0]) - (5 / 15)) < 1e-9
    assert calculate_amount_variance([1.0, 50.0, 3.0, 400.0]) >= 0
    print("✓ amount variance")


def test_date_regularity_bounds() -> None:
    assert calculate_date_regularity([]) == 1.0
    assert calculate_date_regularity([date(2024, 1, 1)]) == 1.0
    assert calculate_date_regularity(_every(date(2024, 1, 1), 7, 6)) == 1.0

    # Same-day duplicates have a zero mean interval
    assert calculate_date_regularity([date(2024, 1, 1), date(2024, 1, 1)]) == 0.0

    irregular = [date(2024, 1, 1), date(2024, 1, 2), date(2024, 3, 30), date(2024, 3, 31)]
    score = calculate_date_regularity(irregular)
    assert 0.0 <= score <= 1.0

    unsorted = [date(2024, 3, 5), date(2024, 1, 5), date(2024, 2, 5)]
    assert calculate_date_regularity(unsorted) == calculate_date_regularity(sorted(unsorted))
    print("✓ date regularity bounds")


def test_frequency_thresholds() -> None:
    start = date(2024, 1, 1)
    assert calculate_frequency(_every(start, 1, 5)) == "daily"
    assert calculate_frequency(_every(start, 4, 5)) == "weekly"
    assert calculate_frequency(_every(start, 7, 5)) == "biweekly"
    assert calculate_frequency(_every(start, 14, 5)) == "semimonthly"
    assert calculate_frequency(_every(start, 30, 5)) == "monthly"
    assert calculate_frequency(_every(start, 365, 3)) == "monthly"
    assert calculate_frequency([start]) == "monthly"
    print("✓ frequency thresholds")


def test_billing_day() -> None:
    dates = [date(2024, 2, 5), date(2024, 1, 5), date(2024, 3, 5)]
    assert calculate_billing_day("monthly", dates) == 5
    assert calculate_billing_day("semimonthly", dates) == 5

    # 2024-01-07 is a Sunday
    sundays = [date(2024, 1, 14), date(2024, 1, 7)]
    assert day_of_week(date(2024, 1, 7)) == 0
    assert day_of_week(date(2024, 1, 13)) == 6
    assert calculate_billing_day("weekly", sundays) == 0
    assert calculate_billing_day("biweekly", [date(2024, 1, 10)]) == 3

    assert calculate_billing_day("daily", dates) is None
    assert calculate_billing_day("monthly", []) is None
    print("✓ billing day")


def test_confidence_tiers() -> None:
    assert calculate_confidence(3, 0.0, 0.97, True) == "high"
    assert calculate_confidence(3, 0.0, 0.97, False) == "medium"
    assert calculate_confidence(2, 0.25, 0.5, False) == "low"
    assert calculate_confidence(6, 0.0, 0.9, False) == "high"
    assert calculate_confidence(2, 0.15, 0.7, True) == "medium"
    print("✓ confidence tiers")


def test_confidence_monotonic_in_transaction_count() -> None:
    for variance in (0.0, 0.07, 0.15, 0.25):
        for regularity in (0.3, 0.7, 0.9):
            for known in (False, True):
                tiers = [
                    CONFIDENCE_ORDER[calculate_confidence(count, variance, regularity, known)]
                    for count in range(2, 7)
                ]
                assert tiers == sorted(tiers), (variance, regularity, known, tiers)
    print("✓ confidence monotonic in count")


if __name__ == "__main__":
    test_amount_variance()
    test_date_regularity_bounds()
    test_frequency_thresholds()
    test_billing_day()
    test_confidence_tiers()
    test_confidence_monotonic_in_transaction_count()
    print("All subscription statistics tests passed.")
