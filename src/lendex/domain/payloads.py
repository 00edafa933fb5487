"""
Typed views over an Event's flat `decoded_fields`.

The wire shape stays a flat name -> string mapping; these variants give the
aggregation engine named attributes for the events that drive loan state.
Anything else maps to GenericPayload.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Union

from .models import Event


@dataclass(slots=True, frozen=True)
class LoanCreatedPayload:
    loan_id: Optional[str]
    lender: Optional[str] = None
    borrower: Optional[str] = None
    token_address: Optional[str] = None
    amount: Optional[str] = None
    interest_rate: Optional[str] = None
    duration: Optional[str] = None
    collateral_address: Optional[str] = None
    collateral_amount: Optional[str] = None


@dataclass(slots=True, frozen=True)
class LoanAcceptedPayload:
    loan_id: Optional[str]
    lender: Optional[str] = None
    borrower: Optional[str] = None


@dataclass(slots=True, frozen=True)
class LoanRepaidPayload:
    loan_id: Optional[str]
    borrower: Optional[str] = None
    repayment_amount: Optional[str] = None


@dataclass(slots=True, frozen=True)
class LoanLiquidatedPayload:
    loan_id: Optional[str]
    liquidator: Optional[str] = None


@dataclass(slots=True, frozen=True)
class CollateralAddedPayload:
    loan_id: Optional[str]
    borrower: Optional[str] = None
    amount: Optional[str] = None


@dataclass(slots=True, frozen=True)
class GenericPayload:
    name: str
    loan_id: Optional[str]
    fields: Mapping[str, str]


Payload = Union[
    LoanCreatedPayload,
    LoanAcceptedPayload,
    LoanRepaidPayload,
    LoanLiquidatedPayload,
    CollateralAddedPayload,
    GenericPayload,
]


def payload_for(event: Event) -> Payload:
    f: Mapping[str, str] = event.decoded_fields or MappingProxyType({})
    loan_id = f.get("loanId")
    name = event.name
    if name == "LoanCreated":
        return LoanCreatedPayload(
            loan_id=loan_id,
            lender=f.get("lender"),
            borrower=f.get("borrower"),
            token_address=f.get("tokenAddress"),
            amount=f.get("amount"),
            interest_rate=f.get("interestRate"),
            duration=f.get("duration"),
            collateral_address=f.get("collateralAddress"),
            collateral_amount=f.get("collateralAmount"),
        )
    if name == "LoanAccepted":
        return LoanAcceptedPayload(loan_id=loan_id, lender=f.get("lender"), borrower=f.get("borrower"))
    if name == "LoanRepaid":
        return LoanRepaidPayload(loan_id=loan_id, borrower=f.get("borrower"), repayment_amount=f.get("repaymentAmount"))
    if name == "LoanLiquidated":
        return LoanLiquidatedPayload(loan_id=loan_id, liquidator=f.get("liquidator"))
    if name == "CollateralAdded":
        return CollateralAddedPayload(loan_id=loan_id, borrower=f.get("borrower"), amount=f.get("amount"))
    return GenericPayload(name=name, loan_id=loan_id, fields=f)
