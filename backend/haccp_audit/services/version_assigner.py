"""
Version numbering for audit form lineages.

Templates sit at version 0; the first filled form of a lineage is version 1
and every later edit takes the next integer.
"""
from typing import Iterable, Optional


def next_version(previous: Optional[int]) -> int:
    """Version that follows ``previous`` (treated as 0 when missing)"""
    if previous is None:
        previous = 0
    if previous < 0:
        raise ValueError(f"Version numbers are non-negative, got {previous}")
    return previous + 1


def assign_next_version(current: Optional[int], recorded: Iterable[Optional[int]] = ()) -> int:
    """
    Next version for a lineage.

    ``recorded`` holds every version already persisted elsewhere (snapshots,
    ledger entries) so the result never collides with or falls behind them.
    """
    highest = current or 0
    for version in recorded:
        if version is not None and version > highest:
            highest = version
    return next_version(highest)
