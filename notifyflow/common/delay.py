"""Delay unit normalization used at rule-save and backfill time."""

UNIT_SECONDS: dict[str, int] = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}


def to_seconds(value: int | None, unit: str | None) -> int:
    """Convert `value` expressed in `unit` to whole seconds.

    Unknown or missing units are treated as seconds and a missing value as 0,
    so a malformed rule degrades to "send immediately" instead of failing.
    """

    return int(value or 0) * UNIT_SECONDS.get(unit or "seconds", 1)
