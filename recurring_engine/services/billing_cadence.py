"""
Billing cadence arithmetic.

next_billing_date(current, frequency, anchor) is pure and deterministic: the
anchor (first billing date) decides the day of month used for monthly and
yearly cadences, so month-end subscriptions never drift.
"""
import calendar
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

SUPPORTED_FREQUENCIES = ("daily", "weekly", "biweekly", "semimonthly", "monthly", "yearly")

# Days 29 and 30 do not exist in every month; day 31 maps to month end instead
MAX_SAFE_DAY_OF_MONTH = 28

_FIXED_STEPS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
    "biweekly": timedelta(weeks=2),
}


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _anchored_day(year: int, month: int, anchor_day: int) -> date:
    if anchor_day == 31:
        return last_day_of_month(year, month)
    return date(year, month, min(anchor_day, MAX_SAFE_DAY_OF_MONTH))


def _next_monthly(current: date, anchor: date) -> date:
    next_month = current + relativedelta(months=1)
    return _anchored_day(next_month.year, next_month.month, anchor.day)


def _next_yearly(current: date, anchor: date) -> date:
    return _anchored_day(current.year + 1, anchor.month, anchor.day)


def _semimonthly_days(anchor_day: int) -> tuple:
    """The two billing days of the month: the anchor day and its half-month twin."""
    if anchor_day <= 15:
        return anchor_day, anchor_day + 15
    return anchor_day - 15, anchor_day


def _next_semimonthly(current: date, anchor: date) -> date:
    month_length = calendar.monthrange(current.year, current.month)[1]
    for day in _semimonthly_days(anchor.day):
        clamped = min(day, month_length)
        if clamped > current.day:
            return date(current.year, current.month, clamped)

    next_month = current + relativedelta(months=1)
    first_day = _semimonthly_days(anchor.day)[0]
    next_length = calendar.monthrange(next_month.year, next_month.month)[1]
    return date(next_month.year, next_month.month, min(first_day, next_length))


def next_billing_date(current: date, frequency: str, anchor: date) -> date:
    """
    Calculate the billing date following `current`.

    Args:
        current: The last billing date
        frequency: daily, weekly, biweekly, semimonthly, monthly or yearly
        anchor: First billing date of the subscription

    Returns:
        The next billing date, always strictly after `current`

    Raises:
        ValueError: If the frequency is not supported
    """
    if frequency == "monthly":
        return _next_monthly(current, anchor)
    if frequency == "yearly":
        return _next_yearly(current, anchor)
    if frequency == "semimonthly":
        return _next_semimonthly(current, anchor)
    if frequency in _FIXED_STEPS:
        return current + _FIXED_STEPS[frequency]

    raise ValueError(f"Unsupported billing frequency: {frequency}")
