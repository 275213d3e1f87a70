"""
Statistical classification of a candidate transaction group.

All functions are pure and work on plain amounts and dates so they can be
reused outside the detector.
"""
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"

CONFIDENCE_ORDER = {
    CONFIDENCE_HIGH: 3,
    CONFIDENCE_MEDIUM: 2,
    CONFIDENCE_LOW: 1,
}

# (max average interval in days, label), checked in order
FREQUENCY_THRESHOLDS = (
    (1.5, "daily"),
    (4, "weekly"),
    (10, "biweekly"),
    (18, "semimonthly"),
)
DEFAULT_FREQUENCY = "monthly"


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _population_std_dev(values: Sequence[float], mean: float) -> float:
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return variance ** 0.5


def _interval_days(dates: Iterable) -> List[float]:
    sorted_dates = sorted(_as_date(d) for d in dates)
    return [
        float((sorted_dates[i] - sorted_dates[i - 1]).days)
        for i in range(1, len(sorted_dates))
    ]


def calculate_amount_variance(amounts: Sequence[float]) -> float:
    """Coefficient of variation of the amounts (std dev / mean)."""
    if len(amounts) < 2:
        return 0.0

    mean = _mean(amounts)
    if mean <= 0:
        return 0.0
    return _population_std_dev(amounts, mean) / mean


def calculate_date_regularity(dates: Sequence) -> float:
    """
    How consistent the intervals between dates are, in [0, 1].

    1 means perfectly regular; lower std dev relative to the mean interval
    gives a higher score.
    """
    if len(dates) < 2:
        return 1.0

    intervals = _interval_days(dates)
    mean = _mean(intervals)
    if mean <= 0:
        return 0.0
    return max(0.0, 1 - (_population_std_dev(intervals, mean) / mean))


def calculate_frequency(dates: Sequence) -> str:
    """Infer the billing frequency from the average interval between dates."""
    if len(dates) < 2:
        return DEFAULT_FREQUENCY

    avg_days = _mean(_interval_days(dates))
    for max_days, label in FREQUENCY_THRESHOLDS:
        if avg_days <= max_days:
            return label
    return DEFAULT_FREQUENCY


def day_of_week(value: date) -> int:
    """Day of week with Sunday = 0 ... Saturday = 6."""
    return (value.weekday() + 1) % 7


def calculate_billing_day(frequency: str, dates: Sequence) -> Optional[int]:
    """
    Billing day anchored on the earliest date.

    Day of month for monthly/semimonthly, day of week for weekly/biweekly,
    None for daily.
    """
    if not dates:
        return None

    first_date = min(_as_date(d) for d in dates)

    if frequency in ("monthly", "semimonthly"):
        return first_date.day
    if frequency in ("weekly", "biweekly"):
        return day_of_week(first_date)
    return None


def calculate_confidence(
    transaction_count: int,
    amount_variance: float,
    date_regularity: float,
    is_known_service: bool,
) -> str:
    score = 0

    # More transactions = higher confidence
    if transaction_count >= 6:
        score += 3
    elif transaction_count >= 4:
        score += 2
    elif transaction_count >= 2:
        score += 1

    # Lower variance = higher confidence
    if amount_variance < 0.05:
        score += 3
    elif amount_variance < 0.10:
        score += 2
    elif amount_variance < 0.20:
        score += 1

    # More regular dates = higher confidence
    if date_regularity > 0.8:
        score += 2
    elif date_regularity > 0.6:
        score += 1

    if is_known_service:
        score += 2

    if score >= 7:
        return CONFIDENCE_HIGH
    if score >= 4:
        return CONFIDENCE_MEDIUM
    return CONFIDENCE_LOW
