from __future__ import annotations
import asyncio, httpx
from typing import Any, Optional

import structlog

from ..domain.errors import FetchError
from ..domain.models import EventLog
from ..domain.value_types import Address
from ..ports.rpc import RPCClient

log = structlog.get_logger(__name__)

def _to_hex_block(n: int) -> str: return hex(int(n))
def _hex_int(v: Any) -> int: return int(v, 16) if isinstance(v, str) else int(v)


def _parse_log(rl: dict[str, Any]) -> EventLog:
    topics = tuple((t if isinstance(t, str) else t.decode()).lower() for t in rl.get("topics", []))
    ts = rl.get("blockTimestamp")
    return EventLog(
        address=rl["address"].lower(),
        topics=topics,
        data_hex=str(rl.get("data") or "0x").lower(),
        block_number=_hex_int(rl["blockNumber"]),
        tx_hash=(rl.get("transactionHash") or "").lower(),
        log_index=_hex_int(rl["logIndex"]),
        block_timestamp=_hex_int(ts) if ts is not None else None,
    )


class HttpxRPC(RPCClient):
    """JSON-RPC over httpx. Every failure surfaces as FetchError; 429s are retried with backoff."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 20,
        max_conn: int = 16,
        max_retries: int = 3,
        backoff_s: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self._req_id = 0
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._req_id += 1
        payload = {"jsonrpc":"2.0","id":self._req_id,"method":method,"params":params}
        for attempt in range(self.max_retries):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
            except httpx.HTTPError as e:
                raise FetchError(f"{method} transport error: {e}", {"method": method}) from e
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(self.backoff_s, float(ra)) if ra and ra.isdigit() else (self.backoff_s * (2**attempt))
                log.warning("rpc_rate_limited", method=method, attempt=attempt + 1, retry_in_s=delay)
                await asyncio.sleep(delay); continue
            try:
                r.raise_for_status()
                data = r.json()
            except (httpx.HTTPStatusError, ValueError) as e:
                raise FetchError(f"{method} failed: {e}", {"method": method, "status": r.status_code}) from e
            if not isinstance(data, dict):
                raise FetchError(f"{method} returned a non-object body: {type(data).__name__}", {"method": method})
            if "error" in data:
                err = data["error"]
                code = err.get("code") if isinstance(err, dict) else None
                msg = err.get("message") if isinstance(err, dict) else str(err)
                raise FetchError(f"{method} RPC error code={code} message={msg}", {"method": method, "code": code})
            return data.get("result")
        raise FetchError(f"Retries exhausted for {method}", {"method": method})

    async def get_chain_id(self) -> int:
        res = await self._call("eth_chainId", [])
        try:
            return _hex_int(res)
        except (TypeError, ValueError) as e:
            raise FetchError(f"eth_chainId returned {res!r}") from e

    async def latest_block(self) -> int:
        res = await self._call("eth_blockNumber", [])
        try:
            return _hex_int(res)
        except (TypeError, ValueError) as e:
            raise FetchError(f"eth_blockNumber returned {res!r}") from e

    async def get_logs(
        self,
        address: Address,
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        flt: dict[str, Any] = {
            "address": str(address).lower(),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
        }
        res = await self._call("eth_getLogs", [flt])
        try:
            return [_parse_log(rl) for rl in (res or [])]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise FetchError(f"eth_getLogs returned a malformed log: {e}") from e

    async def get_block_timestamp(self, number: int) -> int:
        res = await self._call("eth_getBlockByNumber", [_to_hex_block(number), False])
        if not res:
            raise FetchError(f"block {number} not found", {"block": number})
        try:
            return _hex_int(res["timestamp"])
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"block {number} has no usable timestamp") from e

    async def aclose(self) -> None:
        await self.client.aclose()
