"""Timestamp grammars accepted in feed date fields."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# RFC 822 section 5.1; anything else is read as UTC.
ZONE_OFFSETS = {
    "UT": 0,
    "UTC": 0,
    "GMT": 0,
    "Z": 0,
    "EST": -5,
    "EDT": -4,
    "CST": -6,
    "CDT": -5,
    "MST": -7,
    "MDT": -6,
    "PST": -8,
    "PDT": -7,
}

_FRACTION = re.compile(r"\.(\d+)")


def _numeric_zone(fmt: str) -> Callable[[str], datetime]:
    def parse(value: str) -> datetime:
        return datetime.strptime(value, fmt)

    return parse


def _named_zone(fmt: str) -> Callable[[str], datetime]:
    """Parse ``fmt`` followed by a space and an alphabetic zone name."""

    def parse(value: str) -> datetime:
        stamp, _, zone = value.rpartition(" ")
        if not zone.isalpha():
            raise ValueError(f"not a zone abbreviation: {zone!r}")
        offset = ZONE_OFFSETS.get(zone.upper(), 0)
        parsed = datetime.strptime(stamp, fmt)
        return parsed.replace(tzinfo=timezone(timedelta(hours=offset)))

    return parse


def _rfc3339_fraction(value: str) -> datetime:
    match = _FRACTION.search(value)
    if match is None:
        raise ValueError("no fractional seconds")
    # strptime stops at microseconds
    digits = match.group(1)[:6]
    value = value[: match.start()] + "." + digits + value[match.end():]
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%f%z")


GRAMMARS: List[Tuple[str, Callable[[str], datetime]]] = [
    ("RFC3339", _numeric_zone("%Y-%m-%dT%H:%M:%S%z")),
    ("RFC3339Nano", _rfc3339_fraction),
    ("RFC1123Z", _numeric_zone("%a, %d %b %Y %H:%M:%S %z")),
    ("RFC1123", _named_zone("%a, %d %b %Y %H:%M:%S")),
    ("RFC822Z", _numeric_zone("%d %b %y %H:%M %z")),
    ("RFC822", _named_zone("%d %b %y %H:%M")),
    ("RFC850", _named_zone("%A, %d-%b-%y %H:%M:%S")),
]
# %d also accepts an unpadded day, so RFC1123Z covers "Mon, 2 Jan 2006 15:04:05 -0700".


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Return the first successful parse of ``value``, or ``None``.

    The result is timezone-aware and keeps the offset written in the feed.
    Unparsable or empty input is not an error.
    """
    value = (value or "").strip()
    if not value:
        return None

    for name, grammar in GRAMMARS:
        try:
            parsed = grammar(value)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        try:
            parsed.astimezone(timezone.utc)
        except OverflowError:
            logger.debug("Timestamp %r is outside the representable range", value)
            return None
        logger.debug("Parsed timestamp %r using %s", value, name)
        return parsed

    logger.debug("Unrecognised timestamp %r", value)
    return None
