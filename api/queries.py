"""
Filter builders for book lookups.

The year query is the only one with real logic: a civil year in UTC maps to
the half-open interval [Jan 1 of the year, Jan 1 of the next year), so an
instant at midnight on New Year's Day belongs to exactly one year.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

YEAR_PATTERN = re.compile(r"[0-9]{4}")

INVALID_YEAR_MESSAGE = "Invalid year format. Please provide year in YYYY format"


class InvalidYearError(ValueError):
    """Raised when a year path parameter is not four ASCII digits."""

    def __init__(self, value: str):
        super().__init__(INVALID_YEAR_MESSAGE)
        self.value = value


def parse_year(value: str) -> int:
    """
    Parse a YYYY year.

    Args:
        value: Raw path parameter

    Returns:
        The year as an int

    Raises:
        InvalidYearError: Wrong width, non-digits, a sign, extra characters,
            or year 0000 (outside the representable calendar)
    """
    if not YEAR_PATTERN.fullmatch(value):
        raise InvalidYearError(value)
    year = int(value)
    if year < datetime.min.year:
        raise InvalidYearError(value)
    return year


def year_interval(year: int) -> Tuple[datetime, Optional[datetime]]:
    """
    Half-open UTC interval covering a civil year.

    The upper bound is January 1 of the following year, so leap years need no
    special handling. For 9999 there is no following year in the calendar and
    the upper bound is None (unbounded).
    """
    lower = datetime(year, 1, 1, tzinfo=timezone.utc)
    if year >= datetime.max.year:
        return lower, None
    upper = lower.replace(year=year + 1)
    return lower, upper


def released_in_year_filter(year: int) -> Dict[str, Any]:
    """Filter matching books released within the given year."""
    lower, upper = year_interval(year)
    bounds: Dict[str, Any] = {"$gte": lower}
    if upper is not None:
        bounds["$lt"] = upper
    return {"released": bounds}


def author_filter(author: str) -> Dict[str, Any]:
    """Exact, case-sensitive author match."""
    return {"author": author}


def id_filter(book_id: str) -> Dict[str, Any]:
    """
    Filter selecting a single document by id.

    Raises:
        InvalidId: book_id is not a 24 character hex string
    """
    if not isinstance(book_id, str) or not ObjectId.is_valid(book_id):
        raise InvalidId(f"{book_id!r} is not a valid ObjectId")
    return {"_id": ObjectId(book_id)}
