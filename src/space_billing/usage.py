"""Time-weighted usage integration.

Usage is the integral of a space's size over a billing period, in
byte-milliseconds. All arithmetic is done on Python integers, so results
are exact regardless of magnitude.

Example:
    A space holding 1 GiB for the first half of a 30 day period and
    nothing for the second half uses ``GIB * 15 * 86_400_000`` byte-ms.
"""

from collections.abc import Iterable
from datetime import datetime

from .models import SpaceDiff, UsageResult, to_epoch_ms


def diff_sort_key(diff: SpaceDiff) -> tuple[int, str, int]:
    """Order by effective time; ties by cause, then change."""
    return (to_epoch_ms(diff.receipt_at), diff.cause, diff.change)


def sort_diffs(diffs: Iterable[SpaceDiff]) -> list[SpaceDiff]:
    """
    Sort diffs into a deterministic total order.

    Diffs sharing a ``receipt_at`` contribute no elapsed time between
    them, so the tie-break only affects intermediate state, never usage.
    """
    return sorted(diffs, key=diff_sort_key)


def calculate_usage(
    start_size: int,
    diffs: Iterable[SpaceDiff],
    from_: datetime,
    to: datetime,
) -> UsageResult:
    """
    Integrate space size over ``[from_, to)``.

    Diffs outside the period are ignored: one at exactly ``from_`` is
    counted for the whole remainder, one at exactly ``to`` belongs to the
    next period.

    A negative size is not clamped. It is reported through
    ``UsageResult.min_size`` and left to the caller to surface.

    Args:
        start_size: Size of the space at ``from_``
        diffs: Diffs for the space, in any order
        from_: Period start (inclusive)
        to: Period end (exclusive)

    Returns:
        UsageResult with usage, end size and minimum size held

    Raises:
        ValueError: If ``from_ >= to``
    """
    start_ms = to_epoch_ms(from_)
    end_ms = to_epoch_ms(to)
    if start_ms >= end_ms:
        raise ValueError("from must be before to")

    in_period = [d for d in diffs if start_ms <= to_epoch_ms(d.receipt_at) < end_ms]

    boundary_ms = start_ms
    size = start_size
    min_size = start_size
    usage = 0

    for diff in sort_diffs(in_period):
        at_ms = to_epoch_ms(diff.receipt_at)
        elapsed = at_ms - boundary_ms
        if elapsed > 0:
            # Only sizes actually held for some time count towards min_size
            min_size = min(min_size, size)
            usage += size * elapsed
        size += diff.change
        boundary_ms = at_ms

    usage += size * (end_ms - boundary_ms)
    min_size = min(min_size, size)

    return UsageResult(usage=usage, end_size=size, min_size=min_size)
