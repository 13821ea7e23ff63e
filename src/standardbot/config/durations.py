"""Duration parsing for rule delays.

Delays are written the way the `ms` package reads them: a bare number is
milliseconds, otherwise a number followed by a unit ("30s", "5m", "2h",
"7d", "3 days", "1.5 hours").
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_DURATION_PATTERN = re.compile(
    r"^(?P<value>\d*\.?\d+)\s*(?P<unit>[a-z]*)$",
    re.IGNORECASE,
)

_UNIT_MS: dict[str, float] = {
    "": 1,
    "ms": 1,
    "msec": 1,
    "msecs": 1,
    "millisecond": 1,
    "milliseconds": 1,
    "s": 1000,
    "sec": 1000,
    "secs": 1000,
    "second": 1000,
    "seconds": 1000,
    "m": 60_000,
    "min": 60_000,
    "mins": 60_000,
    "minute": 60_000,
    "minutes": 60_000,
    "h": 3_600_000,
    "hr": 3_600_000,
    "hrs": 3_600_000,
    "hour": 3_600_000,
    "hours": 3_600_000,
    "d": 86_400_000,
    "day": 86_400_000,
    "days": 86_400_000,
    "w": 604_800_000,
    "week": 604_800_000,
    "weeks": 604_800_000,
    "y": 31_557_600_000,
    "yr": 31_557_600_000,
    "yrs": 31_557_600_000,
    "year": 31_557_600_000,
    "years": 31_557_600_000,
}


@dataclass(frozen=True)
class Duration:
    """A parsed delay.

    Attributes:
        ms: Delay in milliseconds (never negative).
        text: The delay as written in the configuration, used for $DELAY.
    """

    ms: int
    text: str

    @property
    def seconds(self) -> float:
        """Delay in seconds."""
        return self.ms / 1000

    @classmethod
    def zero(cls) -> Duration:
        """The implicit delay of a rule without one."""
        return cls(ms=0, text="0s")


def parse_duration(value: str | int | float) -> Duration:
    """Parse a duration value from configuration.

    Args:
        value: Duration string ("7d", "3 days") or a number of milliseconds.

    Returns:
        Parsed Duration.

    Raises:
        ValueError: If the value is negative or not a recognizable duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")

    if isinstance(value, int | float):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return Duration(ms=int(value), text=format_duration(int(value)))

    text = value.strip()
    match = _DURATION_PATTERN.match(text)
    if not match or match.group("unit").lower() not in _UNIT_MS:
        raise ValueError(
            f"Invalid duration format: '{value}'. "
            "Expected a number of milliseconds or number + unit, e.g. '30s', '5m', '2h', '7d'"
        )

    amount = float(match.group("value"))
    ms = round(amount * _UNIT_MS[match.group("unit").lower()])
    return Duration(ms=ms, text=text)


def format_duration(ms: int) -> str:
    """Format milliseconds as a short human-readable duration.

    Args:
        ms: Duration in milliseconds.

    Returns:
        Formatted string like "500ms", "30s", "5m", "2h" or "7d".
    """
    for unit, size in (("d", 86_400_000), ("h", 3_600_000), ("m", 60_000), ("s", 1000)):
        if ms >= size and ms % size == 0:
            return f"{ms // size}{unit}"
    if ms >= 1000:
        return f"{ms / 1000:g}s"
    return f"{ms}ms"
