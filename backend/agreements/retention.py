"""
Retention period selection for agreement documents.

The PDF of an agreement is stored under a prefix that decides how long the
object store keeps it. The prefix is chosen from the agreement duration plus
a base number of retention years.
"""

from datetime import date, datetime
from typing import Union

from config import RetentionSettings

DateLike = Union[date, datetime, str]


def to_date(value: DateLike) -> date:
    """Coerce a date, datetime or ISO-8601 string to a date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return date.fromisoformat(text[:10])
    raise TypeError(f"Cannot interpret {type(value)} as a date")


def whole_years_between(start: DateLike, end: DateLike) -> int:
    """Number of full calendar years from start to end (negative if end is earlier)"""
    start_date = to_date(start)
    end_date = to_date(end)

    if end_date < start_date:
        return -whole_years_between(end_date, start_date)

    years = end_date.year - start_date.year
    if (end_date.month, end_date.day) < (start_date.month, start_date.day):
        years -= 1
    return years


def get_retention_total_years(start: DateLike, end: DateLike, settings: RetentionSettings) -> int:
    return whole_years_between(start, end) + settings.retention_base_years


def get_retention_prefix(start: DateLike, end: DateLike, settings: RetentionSettings) -> str:
    """
    Storage prefix for an agreement running from start to end.

    total <= base threshold -> base prefix, <= extended threshold -> extended
    prefix, anything longer -> maximum prefix.
    """
    total_years = get_retention_total_years(start, end, settings)

    if total_years <= settings.base_term_threshold:
        return settings.base_term_prefix
    if total_years <= settings.extended_term_threshold:
        return settings.extended_term_prefix
    return settings.maximum_term_prefix


def get_retention_period(start: DateLike, end: DateLike, settings: RetentionSettings) -> int:
    """Retention period in years (10, 15 or 20 with default thresholds)"""
    total_years = get_retention_total_years(start, end, settings)

    if total_years <= settings.base_term_threshold:
        return settings.base_term_threshold
    if total_years <= settings.extended_term_threshold:
        return settings.extended_term_threshold
    return settings.maximum_term_threshold


def build_agreement_pdf_key(prefix: str, agreement_id: str, version: Union[int, str]) -> str:
    return f"{prefix}/{agreement_id}/{version}/{agreement_id}-{version}.pdf"
