import logging
import os
import uuid
from datetime import date, datetime, timedelta, timezone

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #


RECORD_UUID_LENGTH = 16  # fixed length for every row id

OWNER_SPEAKER_SLOT = 1  # slot 1 is always the device owner
OWNER_LABEL = "Me"

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


# -------------------------------------------------------------- #
# Generators
# -------------------------------------------------------------- #


def generate_variable_char_uuid(length: int) -> str:
    """Generate a unique identifier of specified length."""
    if length <= 0 or length > 32:
        raise ValueError("Length must be between 1 and 32")
    return uuid.uuid4().hex[:length]


def generate_16_char_uuid() -> str:
    """Generate a unique 16-character identifier."""
    return generate_variable_char_uuid(RECORD_UUID_LENGTH)


# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def get_current_timestamp_utc() -> datetime:
    """Get the current UTC timestamp."""
    return datetime.now(timezone.utc)


def to_epoch_seconds(value: datetime) -> int:
    """Convert a datetime to epoch seconds, treating naive values as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def speaker_label(slot: int) -> str:
    """Human readable owner label for a speaker slot."""
    return OWNER_LABEL if slot == OWNER_SPEAKER_SLOT else f"Speaker {slot}"


def resolve_relative_date(raw: str | None, reference: date) -> date | None:
    """
    Resolve a due date string produced by a language model.

    Accepts ISO dates (``2025-03-14``), ``today``, ``tomorrow`` and weekday
    names (``Friday``, ``next friday``, ``by Friday``). Weekday names resolve to
    the next occurrence strictly after the reference date.

    Args:
        raw: Raw date string, or None
        reference: Date the conversation took place

    Returns:
        The resolved date, or None when the value is empty or unparseable
    """
    if raw is None:
        return None

    text = str(raw).strip().lower()
    if not text or text in ("null", "none", "n/a"):
        return None

    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass

    if text == "today":
        return reference
    if text == "tomorrow":
        return reference + timedelta(days=1)

    for index, name in enumerate(WEEKDAYS):
        if name in text:
            days_ahead = (index - reference.weekday()) % 7 or 7
            return reference + timedelta(days=days_ahead)

    logger.debug(f"Could not resolve relative date: {raw!r}")
    return None


def env_float_tuple(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    """Read a comma separated list of floats from the environment."""
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(float(part) for part in raw.split(",") if part.strip())


def env_optional_int(name: str) -> int | None:
    """Read an optional integer from the environment."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)
