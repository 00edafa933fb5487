# lendex/ports/rpc.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import EventLog
from ..domain.value_types import Address


class RPCClient(Protocol):
    """Port defining the contract for an EVM JSON-RPC node. Failures raise FetchError."""

    async def get_chain_id(self) -> int:
        """Return the chain id reported by the node."""

    async def latest_block(self) -> int:
        """Return the latest block number as an integer."""

    async def get_logs(
        self,
        address: Address,
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Return normalized, typed logs for [from_block, to_block] inclusive, in node order."""

    async def get_block_timestamp(self, number: int) -> int:
        """Return the timestamp (seconds) of block `number`."""

    async def aclose(self) -> None:
        """Release the underlying connection pool."""
