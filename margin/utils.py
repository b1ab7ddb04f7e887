import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional


def _now() -> datetime:
    # Return naive UTC to match DB columns (TIMESTAMP WITHOUT TIME ZONE)
    # Store and compare consistently as UTC-naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or datetime into naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(s))


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render a naive-UTC datetime with an explicit offset for the remote store."""
    if value is None:
        return None
    return to_naive_utc(value).replace(tzinfo=timezone.utc).isoformat()


def normalize_tag(tag: Any) -> Optional[str]:
    """Lowercase + trim; non-strings and blanks yield None."""
    if not isinstance(tag, str):
        return None
    t = tag.strip().lower()
    return t or None


def normalize_tags(tags: Optional[Iterable[Any]]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for tag in tags or []:
        t = normalize_tag(tag)
        if t and t not in seen:
            seen.add(t)
            out.append(t)
    return out
