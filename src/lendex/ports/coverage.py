# lendex/ports/coverage.py
from __future__ import annotations
from typing import Protocol

class Coverage(Protocol):
    def covered_ranges(self) -> list[tuple[int, int]]:
        """Return merged, inclusive [from,to] ranges recorded as done."""

    def failed_ranges(self) -> list[tuple[int, int]]:
        """Return merged, inclusive ranges recorded as failed and not covered by a later success."""
