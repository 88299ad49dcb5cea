"""Placement of memory ranges that are copied to their final target later."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from bootkit.strutil import align_up

_PAGE = 0x1000
_MAX_PASSES = 0x10000
_U64_MASK = (1 << 64) - 1


@dataclass
class ElsewhereRange:
    """A block held at *elsewhere* that belongs at *target*."""

    elsewhere: int
    target: int
    length: int


class ElsewherePlacementError(RuntimeError):
    """No place could be found for a range."""


def ranges_overlap(base1: int, top1: int, base2: int, top2: int) -> bool:
    """Return True if the start or end of the first range lies in the second."""
    return (base2 <= base1 < top2) or (base2 < top1 <= top2)


def elsewhere_append(
    ranges: list[ElsewhereRange],
    elsewhere: int,
    target: int | None,
    length: int,
    memory_available: Callable[[int, int], bool] | None = None,
) -> int:
    """Find a target for a block held at *elsewhere* and append it to *ranges*.

    A *target* of None (or all bits set) means "after the top of all ranges".
    The target is moved upward until it clashes neither with another range's
    target nor with its source, and *memory_available(target, length)* holds
    (when given). Returns the chosen target; raises ElsewherePlacementError
    on failure.
    """
    if target is None or target == _U64_MASK:
        top = max((r.target + r.length for r in ranges), default=0)
        target = align_up(top, _PAGE)

    for _ in range(_MAX_PASSES):
        moved = False
        for existing in ranges:
            t_top = target + length

            r_top = existing.target + existing.length
            if ranges_overlap(existing.target, r_top, target, t_top):
                target = align_up(r_top, _PAGE)
                moved = True
                break

            s_top = existing.elsewhere + existing.length
            if ranges_overlap(existing.elsewhere, s_top, target, t_top):
                target += _PAGE
                moved = True
                break

            if memory_available is not None and not memory_available(target, length):
                target += _PAGE
                moved = True
                break

        if not moved:
            ranges.append(ElsewhereRange(elsewhere, target, length))
            return target

    raise ElsewherePlacementError(f"no room for a range of {length:#x} bytes")