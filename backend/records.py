import math
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId


def utcnow() -> datetime:
    return datetime.utcnow()


def is_present(value) -> bool:
    """A stored value counts as present unless it is missing, null or an empty string."""
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_string(value, default: str = "") -> str:
    if value is None:
        return default
    return str(value).strip()


def parse_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def format_instant(moment: datetime) -> str:
    # Naive datetimes coming back from pymongo are UTC.
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_instant(text: str) -> Optional[datetime]:
    candidate = text.strip()
    if candidate[-1:] in ("Z", "z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def serialize_instant(value, fallback: Optional[datetime] = None) -> str:
    """Serialize a stored timestamp to an ISO-8601 UTC string.

    Database-native values (``datetime`` or anything exposing ``as_datetime``
    / ``to_datetime``) are converted. ISO-8601 strings are re-emitted in the
    same UTC form; strings that do not parse pass through unchanged. Missing
    values become ``fallback`` or now.
    """
    if isinstance(value, datetime):
        return format_instant(value)

    for converter_name in ("as_datetime", "to_datetime"):
        converter = getattr(value, converter_name, None)
        if callable(converter):
            converted = converter()
            if isinstance(converted, datetime):
                return format_instant(converted)

    if isinstance(value, str) and value.strip():
        parsed = parse_instant(value)
        return format_instant(parsed) if parsed else value

    return format_instant(fallback or utcnow())
