from __future__ import annotations
import os, json, asyncio

import structlog

from ..domain.errors import PersistenceError
from ..domain.models import Event
from ..ports.storage import EventSink

log = structlog.get_logger(__name__)


def record_filename(ev: Event) -> str:
    """
    Zero-padded block and log index first, so file-name order is chain order.
    The identity is in the name: re-persisting an event rewrites the same file.
    """
    return f"{ev.block_number:012d}_{ev.log_index:05d}_{ev.name}_{ev.transaction_hash}.json"


class JsonEventSink(EventSink):
    """One pretty-printed JSON object per event under `root_dir`."""

    def __init__(self, root_dir: str) -> None:
        self.root = root_dir
        os.makedirs(self.root, exist_ok=True)

    def path_for(self, ev: Event) -> str:
        return os.path.join(self.root, record_filename(ev))

    async def persist(self, event: Event) -> bool:
        path = self.path_for(event)
        text = json.dumps(event.to_record(), indent=2)
        try:
            await asyncio.to_thread(self._write, path, text)
        except PersistenceError as e:
            log.error(
                "event_lost",
                error=e.message,
                event_name=event.name,
                tx_hash=event.transaction_hash,
                log_index=event.log_index,
                block_number=event.block_number,
            )
            return False
        log.info("event_persisted", event_name=event.name, block_number=event.block_number, path=path)
        return True

    @staticmethod
    def _write(path: str, text: str) -> None:
        tmp = path + ".tmp"
        try:
            with open(tmp, "w") as f:
                f.write(text); f.flush(); os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise PersistenceError(f"write failed for {path}: {e}", {"path": path}) from e
