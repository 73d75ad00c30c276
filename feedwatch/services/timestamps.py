"""Timestamp normalization for feed items.

Feed items carry either a machine-readable ``<time datetime="...">`` value or a
short relative label such as ``5m`` / ``2h``. Both are turned into a sortable
UTC instant plus a local display string. Nothing here raises: unparseable or
missing input resolves to the extraction time.
"""

import enum
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo

DISPLAY_FORMAT = "%Y/%m/%d %H:%M:%S"

_RELATIVE_RE = re.compile(r"^(\d+)\s*([smhd])$", re.IGNORECASE)

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}


class TimestampSource(str, enum.Enum):
    ABSOLUTE = "absolute"
    RELATIVE = "relative"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class NormalizedTimestamp:
    sortable_instant: str
    display_timestamp: str
    source: TimestampSource


def to_sortable_instant(dt: datetime) -> str:
    """Format as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_display_timestamp(dt: datetime, tz: tzinfo | None = None) -> str:
    """Format as ``YYYY/MM/DD HH:MM:SS`` in local time (or ``tz`` if given)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(tz).strftime(DISPLAY_FORMAT)


def parse_instant(text: str | None) -> datetime | None:
    """Parse an absolute ISO-8601 datetime. Naive values are taken as UTC."""
    if not text:
        return None
    try:
        dt = datetime.fromisoformat(text.strip())
    except (ValueError, TypeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    try:
        return dt.astimezone(UTC)
    except (OverflowError, ValueError):
        return None


def parse_relative(text: str | None, now: datetime) -> datetime | None:
    """Resolve a ``<integer><unit>`` label (s/m/h/d ago) against ``now``."""
    if not text:
        return None
    match = _RELATIVE_RE.match(text.strip())
    if not match:
        return None
    value = int(match.group(1))
    unit = match.group(2).lower()
    try:
        return now - timedelta(seconds=value * _UNIT_SECONDS[unit])
    except OverflowError:
        return None


def normalize_timestamp(
    raw_datetime: str | None,
    relative_text: str | None = None,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> NormalizedTimestamp:
    if now is None:
        now = datetime.now(UTC)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    candidates = (
        (parse_instant(raw_datetime), TimestampSource.ABSOLUTE),
        (parse_relative(relative_text, now), TimestampSource.RELATIVE),
    )
    for instant, source in candidates:
        if instant is None:
            continue
        result = _normalized(instant, tz, source)
        if result is not None:
            return result
    return NormalizedTimestamp(
        sortable_instant=to_sortable_instant(now),
        display_timestamp=format_display_timestamp(now, tz),
        source=TimestampSource.FALLBACK,
    )


def _normalized(
    instant: datetime, tz: tzinfo | None, source: TimestampSource
) -> NormalizedTimestamp | None:
    # Instants near the calendar edges may not survive conversion or a round trip
    try:
        sortable = to_sortable_instant(instant)
        display = format_display_timestamp(instant, tz)
    except (OverflowError, ValueError):
        return None
    if parse_instant(sortable) is None:
        return None
    return NormalizedTimestamp(sortable_instant=sortable, display_timestamp=display, source=source)
