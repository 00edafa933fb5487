from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Optional

from eth_utils import keccak

from .value_types import Topic0


@dataclass(slots=True, frozen=True)
class Param:
    name: str
    abi_type: str
    indexed: bool = False


@dataclass(slots=True, frozen=True)
class EventSpec:
    name: str
    params: tuple[Param, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.abi_type for p in self.params)})"

    @property
    def topic0(self) -> Topic0:
        return Topic0("0x" + keccak(text=self.signature).hex())

    @property
    def indexed(self) -> tuple[Param, ...]:
        return tuple(p for p in self.params if p.indexed)

    @property
    def non_indexed(self) -> tuple[Param, ...]:
        return tuple(p for p in self.params if not p.indexed)


def _ev(name: str, *params: tuple) -> EventSpec:
    return EventSpec(name, tuple(Param(*p) for p in params))

# ──────────────────────────────
# Lending pool ABI (event layouts)
# ──────────────────────────────

_LOAN_TERMS = (
    ("tokenAddress", "address"),
    ("amount", "uint256"),
)
_RISK_TERMS = (
    ("duration", "uint256"),
    ("collateralAddress", "address"),
    ("collateralAmount", "uint256"),
    ("minCollateralRatioBPS", "uint256"),
    ("liquidationThresholdBPS", "uint256"),
    ("maxPriceStaleness", "uint256"),
)

EVENTS: tuple[EventSpec, ...] = (
    _ev("CollateralAdded",
        ("loanId", "uint256", True), ("borrower", "address"), ("amount", "uint256"),
        ("newCollateralRatio", "uint256"), ("timestamp", "uint256")),
    _ev("CollateralRemoved",
        ("loanId", "uint256", True), ("borrower", "address"), ("amount", "uint256"),
        ("newCollateralRatio", "uint256"), ("timestamp", "uint256")),
    _ev("LoanAccepted",
        ("loanId", "uint256", True), ("borrower", "address"),
        ("initialCollateralRatio", "uint256"), ("timestamp", "uint256")),
    _ev("LoanCreated",
        ("loanId", "uint256", True), ("lender", "address"), *_LOAN_TERMS,
        ("interestRate", "uint256"), *_RISK_TERMS),
    _ev("LoanLiquidated",
        ("loanId", "uint256", True), ("liquidator", "address"),
        ("collateralClaimedByLender", "uint256"), ("liquidatorReward", "uint256"), ("timestamp", "uint256")),
    _ev("LoanMatched",
        ("loanId", "uint256", True), ("offerId", "uint256"), ("requestId", "uint256"),
        ("lender", "address"), ("borrower", "address"), ("amount", "uint256"),
        ("interestRate", "uint256"), ("timestamp", "uint256")),
    _ev("LoanOfferCancelled",
        ("loanId", "uint256", True), ("lender", "address"), ("timestamp", "uint256")),
    _ev("LoanOfferRemoved",
        ("loanId", "uint256", True), ("reason", "string")),
    _ev("LoanRepaid",
        ("loanId", "uint256", True), ("borrower", "address"),
        ("repaymentAmount", "uint256"), ("timestamp", "uint256")),
    _ev("LoanRequestCancelled",
        ("requestId", "uint256", True), ("borrower", "address"), ("timestamp", "uint256")),
    _ev("LoanRequestCreated",
        ("requestId", "uint256", True), ("borrower", "address"), *_LOAN_TERMS,
        ("maxInterestRate", "uint256"), *_RISK_TERMS),
    _ev("LoanRequestRemoved",
        ("requestId", "uint256", True), ("reason", "string")),
    _ev("OwnershipTransferred",
        ("previousOwner", "address", True), ("newOwner", "address", True)),
    _ev("PartialRepayment",
        ("loanId", "uint256", True), ("borrower", "address"), ("repaymentAmount", "uint256"),
        ("totalRepaidAmount", "uint256"), ("remainingAmount", "uint256"), ("timestamp", "uint256")),
    _ev("PriceFeedSet",
        ("tokenAddress", "address"), ("feedId", "bytes32")),
    _ev("PriceUpdatePaid",
        ("loanId", "uint256", True), ("updateFee", "uint256"), ("timestamp", "uint256")),
)


class SignatureTable:
    """Static topic0 -> event lookup."""

    def __init__(self, events: tuple[EventSpec, ...] = EVENTS) -> None:
        self._by_topic: dict[str, EventSpec] = {e.topic0: e for e in events}
        self._by_name: dict[str, EventSpec] = {e.name: e for e in events}

    def __len__(self) -> int:
        return len(self._by_topic)

    def __contains__(self, topic0: str) -> bool:
        return topic0.lower() in self._by_topic

    def lookup(self, topic0: str) -> Optional[EventSpec]:
        return self._by_topic.get(topic0.lower())

    def name_of(self, topic0: str) -> Optional[str]:
        spec = self.lookup(topic0)
        return spec.name if spec else None

    def by_name(self, name: str) -> Optional[EventSpec]:
        return self._by_name.get(name)

    def topics(self) -> Mapping[str, str]:
        return {t: e.name for t, e in self._by_topic.items()}


DEFAULT_TABLE = SignatureTable()
