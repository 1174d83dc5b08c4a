"""
Structured filters inferred from a free-text question.

Date phrases ("yesterday", "last week", "last 3 days") become a created_at
range and a contact name known to the contact directory becomes a contact
filter. Both are applied inside the same similarity query.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from callbrain.services.manager import BaseContactDirectory

from callbrain.services.common.models import SearchFilters

LAST_N_DAYS_PATTERN = re.compile(r"\b(?:last|past)\s+(\d{1,3})\s+days?\b")


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _start_of_month(value: datetime) -> datetime:
    return _start_of_day(value).replace(day=1)


def infer_date_range(query: str, now: datetime) -> tuple[datetime | None, datetime | None]:
    """
    Map a relative date phrase in the query to a ``[start, end)`` range.

    Weeks start on Monday. Returns ``(None, None)`` when no phrase matches.
    """
    text = query.lower()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    today = _start_of_day(now)

    match = LAST_N_DAYS_PATTERN.search(text)
    if match:
        days = int(match.group(1))
        if days > 0:
            return today - timedelta(days=days), None

    if re.search(r"\btoday\b", text):
        return today, today + timedelta(days=1)
    if re.search(r"\byesterday\b", text):
        return today - timedelta(days=1), today

    week_start = today - timedelta(days=today.weekday())
    if re.search(r"\bthis week\b", text):
        return week_start, week_start + timedelta(days=7)
    if re.search(r"\blast week\b", text):
        return week_start - timedelta(days=7), week_start

    month_start = _start_of_month(today)
    if re.search(r"\bthis month\b", text):
        next_month = _start_of_month(month_start + timedelta(days=32))
        return month_start, next_month
    if re.search(r"\blast month\b", text):
        previous_month = _start_of_month(month_start - timedelta(days=1))
        return previous_month, month_start

    return None, None


async def infer_filters(
    query: str,
    now: datetime,
    contact_directory: "BaseContactDirectory | None" = None,
) -> SearchFilters:
    """
    Build search filters implied by the query.

    Args:
        query: The user's question
        now: Current time, the anchor for relative dates
        contact_directory: Directory used to recognise contact names

    Returns:
        SearchFilters, empty when the query implies nothing
    """
    start, end = infer_date_range(query, now)

    contact_id = None
    if contact_directory is not None:
        contact_id = await contact_directory.find_contact_in_text(query)

    return SearchFilters(start=start, end=end, contact_id=contact_id)
