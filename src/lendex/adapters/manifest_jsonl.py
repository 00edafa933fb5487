# lendex/adapters/manifest_jsonl.py
from __future__ import annotations
import os, json, asyncio
from dataclasses import asdict

from ..domain.models import ChunkRec
from ..ports.storage import ManifestSink


class JSONLManifest(ManifestSink):
    """Append-only batch log: one ChunkRec per line, fsynced before append() returns."""

    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._lock = asyncio.Lock()

    async def append(self, rec: ChunkRec) -> None:
        line = json.dumps(asdict(rec), separators=(",", ":"))
        async with self._lock:
            await asyncio.to_thread(self._append_line, line)

    def _append_line(self, line: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n"); f.flush(); os.fsync(f.fileno())
