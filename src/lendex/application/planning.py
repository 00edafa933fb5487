# lendex/application/planning.py
from __future__ import annotations
from ..domain.models import BlockRange

Interval = tuple[int, int]


def plan_chunks(start_block: int, end_block: int, step: int) -> list[BlockRange]:
    """Split the inclusive range [start_block, end_block] into batches of at most `step` blocks."""
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")
    return [BlockRange(b, min(end_block, b + step - 1)) for b in range(start_block, end_block + 1, step)]


def merge_intervals(intervals: list[Interval]) -> list[Interval]:
    """Union of inclusive intervals; touching ones (a, b), (b + 1, c) merge too."""
    out: list[Interval] = []
    for s, e in sorted(intervals):
        if out and s <= out[-1][1] + 1:
            out[-1] = (out[-1][0], max(out[-1][1], e))
        else:
            out.append((s, e))
    return out


def subtract_interval(iv: Interval, covered: list[Interval]) -> list[Interval]:
    """Parts of `iv` not inside any of `covered` (sorted, merged)."""
    start, end = iv
    gaps: list[Interval] = []
    nxt = start
    for cs, ce in covered:
        if nxt > end or cs > end:
            break
        if ce < nxt:
            continue
        if cs > nxt:
            gaps.append((nxt, cs - 1))
        nxt = ce + 1
    if nxt <= end:
        gaps.append((nxt, end))
    return gaps
