"""Shared factories and fakes for the lendex test suite."""

from typing import Any, Optional

from eth_abi import encode
from hexbytes import HexBytes

from lendex.domain.errors import FetchError
from lendex.domain.models import Event, EventLog
from lendex.domain.signatures import DEFAULT_TABLE

# Test addresses
CONTRACT = "0x" + "ab" * 20
BORROWER = "0x" + "11" * 20
LENDER = "0x" + "22" * 20
LIQUIDATOR = "0x" + "33" * 20
TOKEN = "0x" + "44" * 20

UNKNOWN_TOPIC = "0x" + "ee" * 32

_ZERO = {"address": "0x" + "00" * 20, "string": "", "bytes32": b"\x00" * 32}


def hex0x(b: bytes) -> str:
    return "0x" + bytes(b).hex()


def tx_hash(block: int, log_index: int = 0) -> str:
    return "0x" + format(block * 1_000 + log_index, "064x")


def make_log(
    name: str,
    *,
    block: int = 100,
    log_index: int = 0,
    tx: Optional[str] = None,
    ts: Optional[int] = None,
    **fields: Any,
) -> EventLog:
    """Encode a raw log for a known event; omitted params get zero values."""
    spec = DEFAULT_TABLE.by_name(name)
    assert spec is not None, name

    def value(p):
        return fields.get(p.name, _ZERO.get(p.abi_type, 0))

    topics = [spec.topic0] + [hex0x(HexBytes(encode([p.abi_type], [value(p)]))) for p in spec.indexed]
    data = encode([p.abi_type for p in spec.non_indexed], [value(p) for p in spec.non_indexed])
    return EventLog(
        address=CONTRACT,
        topics=tuple(topics),
        data_hex=hex0x(HexBytes(data)),
        block_number=block,
        tx_hash=tx or tx_hash(block, log_index),
        log_index=log_index,
        block_timestamp=ts,
    )


def unknown_log(*, block: int = 100, log_index: int = 0) -> EventLog:
    return EventLog(
        address=CONTRACT,
        topics=(UNKNOWN_TOPIC,),
        data_hex="0x" + "00" * 32,
        block_number=block,
        tx_hash=tx_hash(block, log_index),
        log_index=log_index,
    )


def make_event(
    name: str,
    *,
    block: int = 100,
    ts: Optional[int] = None,
    log_index: int = 0,
    tx: Optional[str] = None,
    **fields: str,
) -> Event:
    """An already decoded event; `fields` become decoded_fields verbatim."""
    return Event(
        name=name,
        transaction_hash=tx or tx_hash(block, log_index),
        block_number=block,
        block_timestamp=ts if ts is not None else 1_700_000_000 + block,
        log_index=log_index,
        contract_address=CONTRACT,
        decoded_fields=fields,
    )


class FakeRPC:
    """
    In-memory node. `failures` maps (from_block, to_block) to the number of
    times eth_getLogs for exactly that range should fail before succeeding.
    """

    def __init__(self, logs=(), *, head: int = 0, chain_id: int = 1, failures=None, down: bool = False) -> None:
        self.logs = list(logs)
        self.head = head
        self.chain_id = chain_id
        self.failures = dict(failures or {})
        self.down = down
        self.get_logs_calls: list[tuple[int, int]] = []
        self.timestamp_calls: list[int] = []
        self.closed = False

    async def get_chain_id(self) -> int:
        if self.down:
            raise FetchError("connection refused")
        return self.chain_id

    async def latest_block(self) -> int:
        if self.down:
            raise FetchError("connection refused")
        return self.head

    async def get_logs(self, address, from_block, to_block):
        self.get_logs_calls.append((from_block, to_block))
        left = self.failures.get((from_block, to_block), 0)
        if left:
            self.failures[(from_block, to_block)] = left - 1
            raise FetchError(f"eth_getLogs failed for {from_block}-{to_block}")
        return [lg for lg in self.logs if from_block <= lg.block_number <= to_block]

    async def get_block_timestamp(self, number: int) -> int:
        self.timestamp_calls.append(number)
        return 1_700_000_000 + number

    async def aclose(self) -> None:
        self.closed = True


class MemoryCursor:
    def __init__(self, block: Optional[int] = None) -> None:
        self.block = block
        self.saved: list[int] = []

    def load(self) -> Optional[int]:
        return self.block

    def save(self, block: int) -> None:
        self.block = block
        self.saved.append(block)
