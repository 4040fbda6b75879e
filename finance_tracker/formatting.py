import re
from datetime import date, datetime, timezone
from decimal import Decimal

# "+07:00" arrives as " 07:00" when a query string leaves the plus unencoded.
SPACED_OFFSET = re.compile(r"^(.+T\S+) (\d{2}:?\d{2})$")


def to_number(value):
    if value is None:
        return 0
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (int, float)):
        return value
    return float(value)


def format_timestamp(value):
    """Render a stored timestamp as ISO-8601 UTC with millisecond precision."""
    if value is None:
        return None
    if isinstance(value, str):
        value = parse_timestamp(value)
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    # strftime does not zero-pad years before 1000 on every platform
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}.{value.microsecond // 1000:03d}Z"
    )


def parse_timestamp(value):
    """Parse a date or datetime string; naive values are taken as UTC.

    Raises ValueError for anything that is not ISO-8601.
    """
    text = (value or "").strip()
    if not text:
        raise ValueError("empty timestamp")
    if text.endswith("Z") or text.endswith("z"):
        text = f"{text[:-1]}+00:00"
    spaced = SPACED_OFFSET.match(text)
    if spaced:
        text = f"{spaced.group(1)}+{spaced.group(2)}"
    if len(text) == 10:
        parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
    else:
        parsed = datetime.fromisoformat(text.replace(" ", "T", 1))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
        raise ValueError(f"timestamp out of range: {value}") from exc


def utc_now_iso():
    return format_timestamp(datetime.now(timezone.utc))
