from __future__ import annotations

from typing import Iterable

from .models import Event, LoanRecord
from .payloads import (
    CollateralAddedPayload,
    LoanAcceptedPayload,
    LoanCreatedPayload,
    LoanLiquidatedPayload,
    LoanRepaidPayload,
    Payload,
    payload_for,
)
from .value_types import LoanStatus


def _apply(rec: LoanRecord, p: Payload) -> None:
    if isinstance(p, LoanCreatedPayload):
        rec.status = LoanStatus.CREATED
        if p.borrower is not None: rec.borrower = p.borrower
        if p.lender is not None: rec.lender = p.lender
        if p.amount is not None: rec.principal_amount = p.amount
        if p.collateral_amount is not None: rec.collateral_amount = p.collateral_amount
    elif isinstance(p, LoanAcceptedPayload):
        rec.status = LoanStatus.ACTIVE
        if p.lender is not None: rec.lender = p.lender
        if p.borrower is not None: rec.borrower = p.borrower
    elif isinstance(p, LoanRepaidPayload):
        rec.status = LoanStatus.REPAID
    elif isinstance(p, LoanLiquidatedPayload):
        rec.status = LoanStatus.LIQUIDATED
    elif isinstance(p, CollateralAddedPayload):
        if p.amount is not None: rec.collateral_amount = p.amount


def aggregate(events: Iterable[Event], *, chronological: bool = False) -> dict[str, LoanRecord]:
    """
    Fold an event sequence into loan_id -> LoanRecord.

    Pure and deterministic: the same sequence always yields equal records.
    Transitions follow iteration order, so when events for one loan arrive out
    of chain order (replays, reorgs) the last *processed* status wins. Pass
    chronological=True to fold in (block_number, log_index) order instead.
    """
    seq = sorted(events, key=lambda e: (e.block_number, e.log_index)) if chronological else events
    loans: dict[str, LoanRecord] = {}
    for ev in seq:
        p = payload_for(ev)
        if p.loan_id is None:
            continue
        rec = loans.get(p.loan_id)
        if rec is None:
            rec = loans[p.loan_id] = LoanRecord(loan_id=p.loan_id, created_at=ev.block_timestamp)
        rec.event_count += 1
        _apply(rec, p)
    return loans
