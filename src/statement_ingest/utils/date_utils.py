"""Date parsing and range utilities."""

import calendar
import re
from datetime import date, datetime, timedelta

# Accepted statement date formats, tried in order. First match wins.
#
# Numeric slash and dash dates ("03/04/2025") are read month-first unless
# the caller asks for day-first (EU accounts). Period-separated dates
# ("03.04.2025") are always day-first.
DATE_PATTERNS = [
    (r"^\d{4}-\d{1,2}-\d{1,2}$", "%Y-%m-%d"),
    (r"^\d{4}/\d{1,2}/\d{1,2}$", "%Y/%m/%d"),
    (r"^\d{1,2}/\d{1,2}/\d{4}$", "%m/%d/%Y"),
    (r"^\d{1,2}/\d{1,2}/\d{2}$", "%m/%d/%y"),
    (r"^\d{1,2}-\d{1,2}-\d{4}$", "%m-%d-%Y"),
    (r"^\d{1,2}\.\d{1,2}\.\d{4}$", "%d.%m.%Y"),
    (r"^\d{1,2}\.\d{1,2}\.\d{2}$", "%d.%m.%y"),
    (r"^\d{1,2}-[A-Za-z]{3}-\d{4}$", "%d-%b-%Y"),
    (r"^\d{1,2}-[A-Za-z]{3}-\d{2}$", "%d-%b-%y"),
    (r"^\d{1,2} [A-Za-z]{3} \d{4}$", "%d %b %Y"),
    (r"^[A-Za-z]{3} \d{1,2},? \d{4}$", "%b %d %Y"),
    (r"^[A-Za-z]+ \d{1,2},? \d{4}$", "%B %d %Y"),
    (r"^\d{8}$", "%Y%m%d"),
]

DAY_FIRST_FORMATS = {
    "%m/%d/%Y": "%d/%m/%Y",
    "%m/%d/%y": "%d/%m/%y",
    "%m-%d-%Y": "%d-%m-%Y",
}

COMPILED_PATTERNS = [(re.compile(pattern), fmt) for pattern, fmt in DATE_PATTERNS]

# QIF uses apostrophes for post-2000 years ("1/5'25") on some exporters
_QIF_APOSTROPHE_YEAR = re.compile(r"^(\d{1,2})/\s*(\d{1,2})'\s*(\d{2,4})$")

# Time of day after the date: "2025-01-06 08:00:00", "2025-01-05T10:00:00Z", "1/5/2025 3:04 PM"
_TIME_SUFFIX = re.compile(
    r"(?<=\d)(?:T|\s+)\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:\s*[AaPp][Mm])?"
    r"(?:Z|[+-]\d{2}:?\d{2})?$"
)


def _strip_time(date_str: str) -> str:
    """Drop a trailing time-of-day component from a date string."""
    return _TIME_SUFFIX.sub("", date_str)


def parse_date(
    raw_date: str,
    formats: list[str] | tuple[str, ...] | None = None,
    day_first: bool = False,
) -> date:
    """Parse a raw date string into a date object.

    A trailing time of day is ignored.

    Args:
        raw_date: The raw date string to parse.
        formats: Optional ordered strptime formats that replace the
            built-in list. The first format that parses wins.
        day_first: Read ambiguous numeric dates as day/month.

    Returns:
        Parsed date object.

    Raises:
        ValueError: If the date cannot be parsed.
    """
    if not raw_date:
        raise ValueError("Empty date string")

    date_str = " ".join(raw_date.replace(",", " ").split())
    if not date_str:
        raise ValueError("Empty date string after stripping whitespace")

    apostrophe = _QIF_APOSTROPHE_YEAR.match(date_str)
    if apostrophe:
        month, day, year = apostrophe.groups()
        full_year = int(year) if len(year) == 4 else 2000 + int(year)
        return date(full_year, int(month), int(day))

    date_only = _strip_time(date_str)

    if formats:
        # Configured formats may spell out the time themselves
        for fmt in formats:
            for candidate in dict.fromkeys((date_str, date_only)):
                try:
                    return datetime.strptime(candidate, fmt.replace(",", "")).date()
                except ValueError:
                    continue
        raise ValueError(f"Cannot parse date: '{raw_date}'")

    for pattern, fmt in COMPILED_PATTERNS:
        if pattern.match(date_only):
            if day_first:
                fmt = DAY_FIRST_FORMATS.get(fmt, fmt)
            try:
                return datetime.strptime(date_only, fmt).date()
            except ValueError:
                continue

    raise ValueError(f"Cannot parse date: '{raw_date}'")


def safe_parse_date(raw_date: str | None, default: date | None = None) -> date | None:
    """Parse a date string, returning default on failure."""
    if not raw_date:
        return default
    try:
        return parse_date(raw_date)
    except ValueError:
        return default


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """Return the first and last day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def previous_month_bounds(today: date) -> tuple[date, date]:
    """Return the first and last day of the month before ``today``."""
    last_of_previous = today.replace(day=1) - timedelta(days=1)
    return month_bounds(last_of_previous.year, last_of_previous.month)
