from datetime import date, timedelta
from dateutil.relativedelta import relativedelta


def today() -> date:
    return date.today()


def is_leap(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def days_in_month(year: int, month: int) -> int:
    if not 1 <= month <= 12:
        raise ValueError(f"month out of range: {month}")
    if month == 2:
        return 29 if is_leap(year) else 28
    if month in (4, 6, 9, 11):
        return 30
    return 31


def add_days(d: date, n: int) -> date:
    return d + timedelta(days=n)


def add_months(d: date, n: int) -> date:
    """Add n months (n may be negative), clamping the day to the target month's length.

    2024-01-31 + 1 month -> 2024-02-29, 2023-01-31 + 1 month -> 2023-02-28.
    """
    return d + relativedelta(months=n)


def next_monthly_on(from_date: date, day: int) -> date:
    """Next occurrence of ``day`` (clamped to month length) strictly after from_date."""
    this_month = from_date.replace(day=min(day, days_in_month(from_date.year, from_date.month)))
    if this_month > from_date:
        return this_month

    first_of_next = add_months(from_date.replace(day=1), 1)
    return first_of_next.replace(day=min(day, days_in_month(first_of_next.year, first_of_next.month)))


def months_between_inclusive(start: date, end: date) -> int:
    """Count the monthly apply points add_months(start, k), k = 0, 1, ..., that fall on or before end.

    Iterates with add_months instead of subtracting calendar fields so the
    count matches the dates the interest simulator actually posts on.
    """
    if end < start:
        return 0

    count = 0
    while True:
        try:
            point = add_months(start, count)
        except (ValueError, OverflowError):
            break
        if point > end:
            break
        count += 1
    return count


def parse_date(text: str) -> date:
    """Parse a strict YYYY-MM-DD string.

    Raises ValueError for anything else, including valid ISO variants such
    as ``20240101`` that date.fromisoformat would accept.
    """
    if not isinstance(text, str) or len(text) != 10 or text[4] != "-" or text[7] != "-":
        raise ValueError(f"Date must be in YYYY-MM-DD format: {text!r}")

    year, month, day = text[:4], text[5:7], text[8:]
    if not text.isascii() or not (year.isdigit() and month.isdigit() and day.isdigit()):
        raise ValueError(f"Date must be in YYYY-MM-DD format: {text!r}")

    y, m, d = int(year), int(month), int(day)
    if y < 1 or not 1 <= m <= 12 or not 1 <= d <= days_in_month(y, m):
        raise ValueError(f"Date out of calendar range: {text!r}")
    return date(y, m, d)


def format_date(d: date) -> str:
    return d.isoformat()
