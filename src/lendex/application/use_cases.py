from __future__ import annotations
import os
import asyncio, time
from dataclasses import dataclass, asdict
from typing import Optional

import structlog

from ..adapters.coverage_local import LocalManifestCoverage
from ..adapters.cursor_file import JsonCursorFile
from ..adapters.json_sink import JsonEventSink
from ..adapters.manifest_jsonl import JSONLManifest
from ..adapters.rpc_httpx import HttpxRPC
from ..domain.decoding import decode_logs
from ..domain.errors import ConfigurationError, FetchError
from ..domain.models import BlockRange, ChunkRec, EventLog, IndexerConfig
from ..domain.signatures import DEFAULT_TABLE, SignatureTable
from ..domain.value_types import Address, UnknownPolicy
from ..ports.rpc import RPCClient
from ..ports.storage import CursorStore, EventSink, ManifestSink
from .scanner import ChainScanner
from .utils import now_ts_str

log = structlog.get_logger(__name__)


def manifests_dir(output_dir: str) -> str:
    return os.path.join(output_dir, "manifests")

def cursor_path(output_dir: str) -> str:
    return os.path.join(output_dir, "state", "cursor.json")


@dataclass(slots=True)
class IndexStats:
    batches_ok: int = 0
    batches_failed: int = 0
    total_logs: int = 0
    decoded: int = 0
    persisted: int = 0
    persist_failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class EventPipeline:
    """Decode a fetched batch and persist each event on its own."""

    def __init__(
        self,
        sink: EventSink,
        *,
        manifest: Optional[ManifestSink] = None,
        table: SignatureTable = DEFAULT_TABLE,
        unknown: UnknownPolicy = "drop",
    ) -> None:
        self.sink = sink
        self.manifest = manifest
        self.table = table
        self.unknown = unknown
        self.stats = IndexStats()

    async def process(self, rng: BlockRange, logs: list[EventLog], phase: str) -> int:
        events = decode_logs(logs, table=self.table, unknown=self.unknown)
        persisted = 0
        for ev in events:
            if await self.sink.persist(ev):
                persisted += 1
            else:
                self.stats.persist_failed += 1
        self.stats.batches_ok += 1
        self.stats.total_logs += len(logs)
        self.stats.decoded += len(events)
        self.stats.persisted += persisted
        await self._record(ChunkRec(
            from_block=rng.start, to_block=rng.end, status="done", attempts=1,
            logs=len(logs), events=persisted, phase=phase, updated_at=time.time(),
        ))
        return persisted

    async def failed(self, rng: BlockRange, phase: str, err: FetchError) -> None:
        self.stats.batches_failed += 1
        await self._record(ChunkRec(
            from_block=rng.start, to_block=rng.end, status="failed", attempts=1,
            error=err.message, phase=phase, updated_at=time.time(),
        ))

    async def _record(self, rec: ChunkRec) -> None:
        if self.manifest is None:
            return
        try:
            await self.manifest.append(rec)
        except OSError as e:
            log.error("manifest_write_failed", from_block=rec.from_block, to_block=rec.to_block,
                      status=rec.status, error=str(e))


async def startup_check(rpc: RPCClient) -> tuple[int, int]:
    """Chain id and head; an unreachable node at startup is fatal."""
    try:
        chain_id = await rpc.get_chain_id()
        head = await rpc.latest_block()
    except FetchError as e:
        raise ConfigurationError(f"RPC unreachable at startup: {e.message}", e.details) from e
    log.info("connected", chain_id=chain_id, head=head)
    return chain_id, head


def resolve_start(start_block: int, cursor_store: Optional[CursorStore]) -> int:
    if cursor_store is None:
        return start_block
    saved = cursor_store.load()
    if saved is None:
        return start_block
    log.info("resuming", saved_block=saved)
    return max(start_block, saved + 1)


async def index_contract(
    *,
    rpc: RPCClient,
    pipeline: EventPipeline,
    address: Address,
    start_block: int,
    batch_size: int,
    poll_interval_s: float,
    batch_delay_s: float = 0.0,
    cursor_store: Optional[CursorStore] = None,
    follow: bool = True,
    stop_event: Optional[asyncio.Event] = None,
) -> ChainScanner:
    """Historical catch-up to the current head, then (if `follow`) live polling until stopped."""
    _, head = await startup_check(rpc)
    scanner = ChainScanner(
        rpc, address,
        batch_size=batch_size,
        poll_interval_s=poll_interval_s,
        batch_delay_s=batch_delay_s,
        cursor_store=cursor_store,
        on_failure=pipeline.failed,
        stop_event=stop_event,
    )
    start = resolve_start(start_block, cursor_store)

    async for rng, logs in scanner.scan(start, head):
        await pipeline.process(rng, logs, "historical")
    if scanner.failed:
        log.warning("historical_gaps", count=len(scanner.failed),
                    ranges=[(r.start, r.end) for r in scanner.failed])

    if follow:
        async for rng, logs in scanner.poll():
            await pipeline.process(rng, logs, "live")
    return scanner


async def run_indexer(
    config: IndexerConfig,
    *,
    rpc: Optional[RPCClient] = None,
    follow: bool = True,
    stop_event: Optional[asyncio.Event] = None,
) -> IndexStats:
    """Wire the file-backed adapters for `config` and run the indexer."""
    out_dir = config.output_dir
    run_basename = f"run_{now_ts_str()}_{config.contract_address}_{config.start_block}.jsonl"
    pipeline = EventPipeline(
        JsonEventSink(out_dir),
        manifest=JSONLManifest(os.path.join(manifests_dir(out_dir), run_basename)),
        unknown=config.unknown_signatures,
    )
    cursor_store = JsonCursorFile(cursor_path(out_dir)) if config.resume else None
    rpc = rpc or HttpxRPC(config.rpc_url, timeout_s=config.rpc_timeout_s)
    log.info("indexer_starting", contract=config.contract_address, start_block=config.start_block,
             output_dir=out_dir, signatures=len(pipeline.table))
    try:
        await index_contract(
            rpc=rpc,
            pipeline=pipeline,
            address=Address(config.contract_address),
            start_block=config.start_block,
            batch_size=config.batch_size,
            poll_interval_s=config.poll_interval_s,
            batch_delay_s=config.batch_delay_s,
            cursor_store=cursor_store,
            follow=follow,
            stop_event=stop_event,
        )
    finally:
        await rpc.aclose()
    log.info("indexer_finished", **pipeline.stats.as_dict())
    return pipeline.stats


async def rescan_failed(
    config: IndexerConfig,
    *,
    rpc: Optional[RPCClient] = None,
) -> IndexStats:
    """
    Out-of-band rescan: re-fetch every range a manifest recorded as failed and
    no manifest recorded as done. Persistence is idempotent, so overlaps are harmless.
    """
    out_dir = config.output_dir
    man_dir = manifests_dir(out_dir)
    gaps = LocalManifestCoverage(man_dir).failed_ranges()
    pipeline = EventPipeline(
        JsonEventSink(out_dir),
        manifest=JSONLManifest(os.path.join(man_dir, f"rescan_{now_ts_str()}.jsonl")),
        unknown=config.unknown_signatures,
    )
    if not gaps:
        log.info("rescan_nothing_to_do")
        return pipeline.stats

    rpc = rpc or HttpxRPC(config.rpc_url, timeout_s=config.rpc_timeout_s)
    try:
        await startup_check(rpc)
        for fb, tb in gaps:
            scanner = ChainScanner(
                rpc, Address(config.contract_address),
                batch_size=config.batch_size,
                batch_delay_s=config.batch_delay_s,
                on_failure=pipeline.failed,
            )
            async for rng, logs in scanner.scan(fb, tb):
                await pipeline.process(rng, logs, "rescan")
    finally:
        await rpc.aclose()
    log.info("rescan_finished", gaps=len(gaps), **pipeline.stats.as_dict())
    return pipeline.stats
