from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, Mapping

import structlog

from ..adapters.json_source import JsonEventSource
from ..domain.aggregation import aggregate
from ..domain.models import Event, LoanRecord
from ..ports.storage import EventSource
from .locking import RWLock

log = structlog.get_logger(__name__)

Snapshot = tuple[tuple[Event, ...], Mapping[str, LoanRecord]]


class EventStore:
    """
    In-memory events plus the loan view derived from them.

    Loans are folded in the order the source returns events, or in
    (block_number, log_index) order when `chronological` is set. The event
    view itself is always kept in (block_number, log_index) order.

    Both are replaced together under the write lock on refresh(); readers
    holding a snapshot see either the old pair or the new pair. Nothing
    outside this class gets a reference to a live LoanRecord.
    """

    def __init__(self, source: EventSource, *, chronological: bool = False) -> None:
        self.source = source
        self.chronological = chronological
        self._lock = RWLock()
        self._events: tuple[Event, ...] = ()
        self._loans: dict[str, LoanRecord] = {}

    @classmethod
    def from_dir(cls, source_dir: str, *, chronological: bool = False) -> "EventStore":
        store = cls(JsonEventSource(source_dir), chronological=chronological)
        store.refresh()
        return store

    def refresh(self) -> int:
        """Reload every record from the source and rebuild the loan view."""
        with self._lock.write():
            loaded = self.source.load_all()
            self._loans = aggregate(loaded, chronological=self.chronological)
            self._events = tuple(sorted(loaded, key=lambda e: (e.block_number, e.log_index)))
            n_events, n_loans = len(self._events), len(self._loans)
        log.info("store_refreshed", events=n_events, loans=n_loans, chronological=self.chronological)
        return n_events

    @contextmanager
    def snapshot(self) -> Iterator[Snapshot]:
        """Read access for the duration of the block. Do not mutate or leak the loan records."""
        with self._lock.read():
            yield self._events, self._loans

    def events(self) -> list[Event]:
        with self._lock.read():
            return list(self._events)

    def loans(self) -> dict[str, LoanRecord]:
        with self._lock.read():
            return {k: replace(v) for k, v in self._loans.items()}
