from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

import structlog
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from .errors import DecodeError, UnknownSignatureError
from .models import Event, EventLog
from .signatures import DEFAULT_TABLE, EventSpec, SignatureTable
from .value_types import UNKNOWN_EVENT, UnknownPolicy

log = structlog.get_logger(__name__)

_DYNAMIC = ("string", "bytes")

# ---------- hex helpers --------------------------------------------------------

def _hexstr_to_bytes(s: str) -> bytes:
    h = s[2:] if s[:2].lower() == "0x" else s
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""

def _hex_0x_lower(s: str) -> str:
    s = s.lower()
    return s if s.startswith("0x") else "0x" + s

def _render(abi_type: str, value: Any) -> str:
    """Integers as decimal strings (amounts may exceed 64 bits), hex lowercase."""
    if abi_type == "address":
        return str(value).lower()
    if abi_type.startswith(("uint", "int")):
        return str(int(value))
    if abi_type == "bool":
        return "true" if value else "false"
    if abi_type.startswith("bytes"):
        return "0x" + bytes(value).hex()
    return str(value)

# ---------- field decoding -----------------------------------------------------

def decode_fields(spec: EventSpec, topics: Sequence[str], data: bytes) -> dict[str, str]:
    """Decode indexed params from topics[1:] and the rest from data, in ABI order."""
    indexed = spec.indexed
    if len(topics) < 1 + len(indexed):
        raise DecodeError(
            f"{spec.name}: expected {1 + len(indexed)} topics, got {len(topics)}",
            {"event": spec.name},
        )
    out: dict[str, str] = {}
    for p, t in zip(indexed, topics[1:]):
        if p.abi_type in _DYNAMIC:
            # indexed dynamic values are only present as their keccak hash
            out[p.name] = _hex_0x_lower(t)
            continue
        (v,) = abi_decode([p.abi_type], _hexstr_to_bytes(t))
        out[p.name] = _render(p.abi_type, v)

    body = spec.non_indexed
    if body:
        values = abi_decode([p.abi_type for p in body], data)
        for p, v in zip(body, values):
            out[p.name] = _render(p.abi_type, v)
    return {p.name: out[p.name] for p in spec.params}

# ---------------------------- public API --------------------------------------

def _event(log_: EventLog, name: str, ts: int, fields: Optional[dict[str, str]]) -> Event:
    return Event(
        name=name,
        transaction_hash=_hex_0x_lower(log_.tx_hash),
        block_number=log_.block_number,
        block_timestamp=ts,
        log_index=log_.log_index,
        contract_address=_hex_0x_lower(log_.address),
        topics=tuple(_hex_0x_lower(t) for t in log_.topics),
        raw_data=_hex_0x_lower(log_.data_hex or "0x"),
        decoded_fields=fields,
    )

def decode_log(
    log_: EventLog,
    *,
    block_timestamp: Optional[int] = None,
    table: SignatureTable = DEFAULT_TABLE,
    unknown: UnknownPolicy = "drop",
) -> Event:
    """
    Turn one raw log into an Event.

    Raises DecodeError for logs without topics, and (under the "drop" policy)
    for unknown signatures or payloads that do not match the known layout.
    Under "retain" those become records named "Unknown" / with no decoded fields.
    """
    if not log_.topics:
        raise DecodeError("log has no topics", {"tx_hash": log_.tx_hash, "log_index": log_.log_index})

    ts = block_timestamp if block_timestamp is not None else (log_.block_timestamp or 0)
    spec = table.lookup(log_.topics[0])
    if spec is None:
        if unknown == "drop":
            raise UnknownSignatureError(log_.topics[0])
        return _event(log_, UNKNOWN_EVENT, ts, None)

    try:
        fields: Optional[dict[str, str]] = decode_fields(spec, log_.topics, _hexstr_to_bytes(log_.data_hex))
    except (DecodeError, DecodingError, ValueError, OverflowError) as e:
        if unknown == "drop":
            if isinstance(e, DecodeError):
                raise
            raise DecodeError(
                f"{spec.name}: malformed payload: {e}",
                {"tx_hash": log_.tx_hash, "log_index": log_.log_index},
            ) from e
        fields = None
    return _event(log_, spec.name, ts, fields)


def decode_logs(
    logs: Iterable[EventLog],
    *,
    table: SignatureTable = DEFAULT_TABLE,
    unknown: UnknownPolicy = "drop",
) -> list[Event]:
    """Decode in node order; undecodable logs are logged and dropped."""
    out: list[Event] = []
    for lg in logs:
        try:
            out.append(decode_log(lg, table=table, unknown=unknown))
        except DecodeError as e:
            log.warning(
                "log_dropped",
                reason=e.code,
                error=e.message,
                tx_hash=lg.tx_hash,
                log_index=lg.log_index,
                block_number=lg.block_number,
            )
    return out
