from __future__ import annotations
from dataclasses import dataclass, asdict
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .errors import LoadError
from .value_types import LoanStatus, Status, UnknownPolicy

@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int

@dataclass(slots=True, frozen=True)
class EventLog:
    """A raw log as returned by the node, normalised to lowercase 0x-hex."""
    address: str
    topics: tuple[str, ...]
    data_hex: str
    block_number: int
    tx_hash: str
    log_index: int
    block_timestamp: Optional[int] = None


def _as_int(v: Any) -> int:
    """Accepts native ints, decimal strings and 0x-hex strings."""
    if isinstance(v, bool):
        raise ValueError(f"not an integer: {v!r}")
    if isinstance(v, int):
        return v
    if isinstance(v, str):
        s = v.strip().lower()
        return int(s, 16) if s.startswith("0x") else int(s)
    raise ValueError(f"not an integer: {v!r}")

def _as_fields(v: Any) -> Optional[dict[str, str]]:
    if v is None:
        return None
    if not isinstance(v, dict):
        raise ValueError("decoded data must be an object")
    out: dict[str, str] = {}
    for k, val in v.items():
        if isinstance(val, str):
            out[str(k)] = val
        elif isinstance(val, int) and not isinstance(val, bool):
            out[str(k)] = str(val)
        # nulls, floats and nested values carry no usable field
    return out


@dataclass(slots=True, frozen=True)
class Event:
    """
    One decoded contract log. Identity is (transaction_hash, log_index).
    `decoded_fields` is None when the payload could not be decoded.
    """
    name: str
    transaction_hash: str
    block_number: int
    block_timestamp: int
    log_index: int
    contract_address: str
    topics: tuple[str, ...] = ()
    raw_data: str = "0x"
    decoded_fields: Optional[Mapping[str, str]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "topics", tuple(self.topics))
        if self.decoded_fields is not None and not isinstance(self.decoded_fields, MappingProxyType):
            object.__setattr__(self, "decoded_fields", MappingProxyType(dict(self.decoded_fields)))

    @property
    def identity(self) -> tuple[str, int]:
        return (self.transaction_hash, self.log_index)

    @property
    def loan_id(self) -> Optional[str]:
        if self.decoded_fields is None:
            return None
        return self.decoded_fields.get("loanId")

    @property
    def raw_bytes(self) -> bytes:
        h = self.raw_data[2:] if self.raw_data[:2].lower() == "0x" else self.raw_data
        return bytes.fromhex(h)

    def to_record(self) -> dict[str, Any]:
        """Wire shape shared with historical exports."""
        return {
            "event_name": self.name,
            "transaction_hash": self.transaction_hash,
            "block_number": self.block_number,
            "block_timestamp": self.block_timestamp,
            "log_index": self.log_index,
            "contract_address": self.contract_address,
            "topics": list(self.topics),
            "data": self.raw_data,
            "decoded_data": dict(self.decoded_fields) if self.decoded_fields is not None else None,
        }

    @classmethod
    def from_record(cls, rec: Any) -> "Event":
        if not isinstance(rec, dict):
            raise LoadError(f"record is not an object: {type(rec).__name__}")
        try:
            name = rec.get("event_name", rec.get("name"))
            if not isinstance(name, str) or not name:
                raise ValueError("missing event name")
            tx = rec["transaction_hash"]
            if not isinstance(tx, str):
                raise ValueError("transaction_hash must be a string")
            topics = rec.get("topics") or []
            if not isinstance(topics, list):
                raise ValueError("topics must be a list")
            return cls(
                name=name,
                transaction_hash=tx.lower(),
                block_number=_as_int(rec["block_number"]),
                block_timestamp=_as_int(rec["block_timestamp"]),
                log_index=_as_int(rec["log_index"]),
                contract_address=str(rec.get("contract_address") or "").lower(),
                topics=tuple(str(t).lower() for t in topics),
                raw_data=str(rec.get("data", rec.get("raw_data")) or "0x").lower(),
                decoded_fields=_as_fields(rec.get("decoded_data", rec.get("decoded_fields"))),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise LoadError(f"malformed event record: {e}", {"record": rec}) from e


@dataclass(slots=True)
class LoanRecord:
    loan_id: str
    created_at: int
    status: LoanStatus = LoanStatus.UNKNOWN
    borrower: Optional[str] = None
    lender: Optional[str] = None
    principal_amount: Optional[str] = None      # big ints as strings
    collateral_amount: Optional[str] = None
    event_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass(slots=True)
class Statistics:
    total_events: int
    total_loans: int
    active_loans: int
    total_volume: str
    event_types: dict[str, int]
    recent_activity: list[Event]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_events": self.total_events,
            "total_loans": self.total_loans,
            "active_loans": self.active_loans,
            "total_volume": self.total_volume,
            "event_types": dict(self.event_types),
            "recent_activity": [e.to_record() for e in self.recent_activity],
        }


@dataclass(slots=True)
class IndexCursor:
    """Last block fully scanned. Only ever moves forward within a process."""
    last_block: int

    def advance(self, block: int) -> bool:
        if block <= self.last_block:
            return False
        self.last_block = block
        return True


@dataclass(slots=True, frozen=True)
class ChunkRec:
    from_block: int
    to_block: int
    status: Status = "started"
    attempts: int = 0
    error: str | None = None
    logs: int = 0
    events: int = 0
    phase: str = "historical"
    updated_at: float = 0.0


@dataclass(slots=True, frozen=True)
class IndexerConfig:
    rpc_url: str
    contract_address: str
    start_block: int
    output_dir: str = "indexer_output"
    batch_size: int = 1_000
    poll_interval_s: float = 5.0
    batch_delay_s: float = 0.1
    rpc_timeout_s: float = 20.0
    unknown_signatures: UnknownPolicy = "drop"
    resume: bool = False
