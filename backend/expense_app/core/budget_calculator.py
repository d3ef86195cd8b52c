import calendar
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
DEFAULT_ALERT_THRESHOLD = Decimal("80")

def to_money(value, default=Decimal("0.00")):
    """
    Coerces numbers / numeric strings to a Decimal rounded to cents.
    Floats go through str() so 0.1 stays 0.10 instead of 0.1000000000000000055.
    Unparseable or non-finite (NaN, Infinity) values return `default`.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    try:
        if isinstance(value, float):
            value = str(value)
        if isinstance(value, str):
            value = value.strip().replace("$", "").replace(",", "")
        result = Decimal(value)
        if not result.is_finite():
            return default
        return result.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return default

def _calendar_bounds(period, day):
    if period == "weekly":
        start = day - timedelta(days=day.weekday())  # Monday
        return start, start + timedelta(days=6)
    if period == "yearly":
        return date(day.year, 1, 1), date(day.year, 12, 31)
    # monthly
    last_day = calendar.monthrange(day.year, day.month)[1]
    return date(day.year, day.month, 1), date(day.year, day.month, last_day)

def period_window(period, start_date, end_date=None, today=None):
    """
    Returns (window_start, window_end) for a budget goal.

    The window is the calendar week / month / year containing the reference
    day, clipped to [start_date, end_date]. The reference day is today,
    moved forward to start_date if the goal has not started yet and back to
    end_date if the goal already ended.
    """
    period = getattr(period, "value", period) or "monthly"
    today = today or date.today()

    reference = today
    if reference < start_date:
        reference = start_date
    if end_date and reference > end_date:
        reference = end_date

    window_start, window_end = _calendar_bounds(period, reference)
    window_start = max(window_start, start_date)
    if end_date:
        window_end = min(window_end, end_date)
    return window_start, window_end

def usage_percentage(spent, amount):
    """spent / amount * 100 as a Decimal. Zero or missing amount -> 0."""
    amount = to_money(amount)
    if amount <= 0:
        return Decimal("0")
    return (to_money(spent) / amount) * 100

def crosses_threshold(spent, amount, threshold=None):
    threshold = to_money(threshold, default=DEFAULT_ALERT_THRESHOLD)
    if threshold <= 0:
        threshold = DEFAULT_ALERT_THRESHOLD
    if to_money(amount) <= 0:
        return False
    return usage_percentage(spent, amount) >= threshold
