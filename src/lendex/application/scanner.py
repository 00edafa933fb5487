from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import AsyncIterator, Awaitable, Callable, Optional

import structlog

from ..domain.errors import FetchError
from ..domain.models import BlockRange, EventLog, IndexCursor
from ..domain.value_types import Address
from ..ports.rpc import RPCClient
from ..ports.storage import CursorStore
from .planning import plan_chunks

log = structlog.get_logger(__name__)

Batch = tuple[BlockRange, list[EventLog]]
FailureHook = Callable[[BlockRange, str, FetchError], Awaitable[None]]


class ChainScanner:
    """
    Pulls logs for one contract: batched catch-up over [start, head], then a
    fixed-interval poll for new blocks.

    Both phases are async generators yielding (range, logs) with block
    timestamps filled in. The cursor advances when the consumer asks for the
    next batch, i.e. only after it has finished with the previous one.

    Historical: a failed batch is logged and skipped (a gap to be rescanned
    out of band). Live: a failed tick leaves the cursor alone so the next
    tick retries the same range.
    """

    def __init__(
        self,
        rpc: RPCClient,
        address: Address,
        *,
        batch_size: int = 1_000,
        poll_interval_s: float = 5.0,
        batch_delay_s: float = 0.0,
        cursor_store: Optional[CursorStore] = None,
        on_failure: Optional[FailureHook] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.rpc = rpc
        self.address = address
        self.batch_size = batch_size
        self.poll_interval_s = poll_interval_s
        self.batch_delay_s = batch_delay_s
        self.cursor_store = cursor_store
        self.on_failure = on_failure
        self._stop = stop_event or asyncio.Event()
        self.cursor: Optional[IndexCursor] = None
        self.failed: list[BlockRange] = []

    # ---- lifecycle --------------------------------------------------------

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def _wait(self, timeout: float) -> bool:
        """Sleep up to `timeout`; True if stop was requested meanwhile."""
        if timeout <= 0:
            return self.stopped
        try:
            await asyncio.wait_for(self._stop.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ---- fetch ------------------------------------------------------------

    async def _with_timestamps(self, logs: list[EventLog]) -> list[EventLog]:
        cache: dict[int, int] = {}
        out: list[EventLog] = []
        for lg in logs:
            if lg.block_timestamp is not None:
                cache.setdefault(lg.block_number, lg.block_timestamp)
                out.append(lg); continue
            ts = cache.get(lg.block_number)
            if ts is None:
                ts = await self.rpc.get_block_timestamp(lg.block_number)
                cache[lg.block_number] = ts
            out.append(replace(lg, block_timestamp=ts))
        return out

    async def fetch(self, rng: BlockRange) -> list[EventLog]:
        logs = await self.rpc.get_logs(self.address, rng.start, rng.end)
        return await self._with_timestamps(logs)

    async def _failed(self, rng: BlockRange, phase: str, err: FetchError) -> None:
        log.error("batch_failed", phase=phase, from_block=rng.start, to_block=rng.end, error=err.message)
        if phase == "historical":
            self.failed.append(rng)
        if self.on_failure is not None:
            await self.on_failure(rng, phase, err)

    def _advance(self, block: int) -> None:
        assert self.cursor is not None
        if not self.cursor.advance(block) or self.cursor_store is None:
            return
        try:
            self.cursor_store.save(block)
        except OSError as e:
            log.error("cursor_save_failed", block=block, error=str(e))

    # ---- phases -----------------------------------------------------------

    async def scan(self, start_block: int, end_block: Optional[int] = None) -> AsyncIterator[Batch]:
        """Historical catch-up over [start_block, end_block or current head]."""
        if end_block is None:
            end_block = await self.rpc.latest_block()
        if self.cursor is None:
            self.cursor = IndexCursor(start_block - 1)
        chunks = plan_chunks(start_block, end_block, self.batch_size)
        log.info("historical_scan", from_block=start_block, to_block=end_block, batches=len(chunks))

        for i, rng in enumerate(chunks):
            if self.stopped:
                log.info("scan_stopped", at_block=rng.start)
                return
            try:
                logs = await self.fetch(rng)
            except FetchError as e:
                await self._failed(rng, "historical", e)
            else:
                log.info("batch_fetched", from_block=rng.start, to_block=rng.end, logs=len(logs))
                yield rng, logs
                self._advance(rng.end)
            if self.batch_delay_s and i + 1 < len(chunks):
                if await self._wait(self.batch_delay_s):
                    return

    async def poll(self) -> AsyncIterator[Batch]:
        """Live phase: every poll interval, fetch [cursor + 1, head] until stopped."""
        if self.cursor is None:
            raise RuntimeError("poll() needs a cursor; run scan() first")
        log.info("live_polling", from_block=self.cursor.last_block + 1, interval_s=self.poll_interval_s)

        while not await self._wait(self.poll_interval_s):
            try:
                head = await self.rpc.latest_block()
            except FetchError as e:
                log.error("head_fetch_failed", error=e.message)
                continue
            if head <= self.cursor.last_block:
                continue
            log.info("new_blocks", from_block=self.cursor.last_block + 1, to_block=head)
            for rng in plan_chunks(self.cursor.last_block + 1, head, self.batch_size):
                try:
                    logs = await self.fetch(rng)
                except FetchError as e:
                    await self._failed(rng, "live", e)
                    break
                if logs:
                    log.info("batch_fetched", from_block=rng.start, to_block=rng.end, logs=len(logs))
                yield rng, logs
                self._advance(rng.end)
                if self.stopped:
                    break
        log.info("live_polling_stopped", last_block=self.cursor.last_block)
