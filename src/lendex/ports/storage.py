# lendex/ports/storage.py
from __future__ import annotations

from typing import Optional, Protocol
from ..domain.models import ChunkRec, Event


class EventSink(Protocol):
    """Port for durably writing one event as an independent record."""

    async def persist(self, event: Event) -> bool:
        """Write `event`; return False (after logging) when the write failed."""


class EventSource(Protocol):
    """Port for reading every persisted event back."""

    def load_all(self) -> list[Event]:
        """Return all readable events; unreadable records are skipped."""


class ManifestSink(Protocol):
    """Port for appending run/chunk status records (e.g., JSONL manifest)."""

    async def append(self, rec: ChunkRec) -> None:
        """Append a manifest record atomically (callers handle ordering/locking)."""


class CursorStore(Protocol):
    """Port for persisting the scanner cursor between runs."""

    def load(self) -> Optional[int]:
        """Return the last saved block, or None."""

    def save(self, block: int) -> None:
        """Persist `block` as the last fully scanned block."""
