from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Mapping, Optional

from ..domain.models import Event, LoanRecord, Statistics
from ..domain.value_types import LoanStatus
from .event_store import EventStore

DEFAULT_RECENT = 10


def _eq_ci(a: Optional[str], b: str) -> bool:
    return a is not None and a.lower() == b.lower()

def _loan_key(rec: LoanRecord) -> tuple:
    lid = rec.loan_id
    return (0, int(lid), lid) if lid.isdigit() else (1, 0, lid)

def _amount(s: Optional[str]) -> Optional[int]:
    """Plain base-10 digits only: no sign, underscores or whitespace."""
    if s is None or not (s.isascii() and s.isdigit()):
        return None
    return int(s)

# ---------- pure helpers ------------------------------------------------------

def filter_events(
    events: Iterable[Event],
    event_type: Optional[str] = None,
    loan_id: Optional[str] = None,
    address: Optional[str] = None,
) -> list[Event]:
    """
    event_type: case-insensitive match on the name.
    loan_id: exact match on decoded loanId.
    address: any decoded value equal to it, ignoring case.
    """
    out: list[Event] = []
    for ev in events:
        if event_type is not None and ev.name.lower() != event_type.lower():
            continue
        if loan_id is not None and ev.loan_id != loan_id:
            continue
        if address is not None:
            fields = ev.decoded_fields
            if not fields or not any(_eq_ci(v, address) for v in fields.values()):
                continue
        out.append(ev)
    return out

def user_loans(loans: Iterable[LoanRecord], address: str) -> list[LoanRecord]:
    return [r for r in loans if _eq_ci(r.borrower, address) or _eq_ci(r.lender, address)]

def compute_statistics(events: list[Event], loans: list[LoanRecord], recent: int = DEFAULT_RECENT) -> Statistics:
    histogram: dict[str, int] = {}
    for ev in events:
        histogram[ev.name] = histogram.get(ev.name, 0) + 1
    volume = sum(a for a in (_amount(r.principal_amount) for r in loans) if a is not None)
    return Statistics(
        total_events=len(events),
        total_loans=len(loans),
        active_loans=sum(1 for r in loans if r.status == LoanStatus.ACTIVE),
        total_volume=str(volume),
        event_types=dict(sorted(histogram.items())),
        recent_activity=sorted(events, key=lambda e: e.block_timestamp, reverse=True)[:recent],
    )

# ---------- service -----------------------------------------------------------

class QueryService:
    """Read-only queries over an EventStore. Every result is a copy."""

    def __init__(self, store: EventStore, *, recent_limit: int = DEFAULT_RECENT) -> None:
        self.store = store
        self.recent_limit = recent_limit

    def list_events(
        self,
        event_type: Optional[str] = None,
        loan_id: Optional[str] = None,
        address: Optional[str] = None,
    ) -> list[Event]:
        with self.store.snapshot() as (events, _):
            return filter_events(events, event_type, loan_id, address)

    def get_loan(self, loan_id: str) -> Optional[LoanRecord]:
        with self.store.snapshot() as (_, loans):
            rec = loans.get(loan_id)
            return replace(rec) if rec is not None else None

    def list_loans(self) -> list[LoanRecord]:
        with self.store.snapshot() as (_, loans):
            return sorted((replace(r) for r in loans.values()), key=_loan_key)

    def list_user_loans(self, address: str) -> list[LoanRecord]:
        with self.store.snapshot() as (_, loans):
            return sorted((replace(r) for r in user_loans(loans.values(), address)), key=_loan_key)

    def get_statistics(self, user_address: Optional[str] = None) -> Statistics:
        with self.store.snapshot() as (events, loans):
            return self._statistics(events, loans, user_address)

    def _statistics(self, events: tuple[Event, ...], loans: Mapping[str, LoanRecord], user: Optional[str]) -> Statistics:
        if user is None:
            scoped_events, scoped_loans = list(events), list(loans.values())
        else:
            scoped_events = filter_events(events, address=user)
            scoped_loans = user_loans(loans.values(), user)
        return compute_statistics(scoped_events, [replace(r) for r in scoped_loans], self.recent_limit)
