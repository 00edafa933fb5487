from __future__ import annotations
import os, json
from typing import Any

import structlog

from ..domain.errors import LoadError
from ..domain.models import Event
from ..ports.storage import EventSource

log = structlog.get_logger(__name__)

EXTENSIONS = (".json", ".jsonl", ".ndjson")


def _read_records(path: str) -> list[Any]:
    """
    A file may hold one object, an array of objects, or newline-delimited
    objects. Malformed NDJSON lines are logged and skipped.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read().strip()
    except (OSError, UnicodeDecodeError) as e:
        raise LoadError(f"unreadable file: {e}", {"path": path}) from e
    if not text:
        return []
    try:
        doc = json.loads(text)
    except json.JSONDecodeError:
        doc = None
    if isinstance(doc, list):
        return doc
    if isinstance(doc, dict):
        return [doc]
    if doc is not None:
        raise LoadError(f"unexpected JSON document: {type(doc).__name__}", {"path": path})

    out: list[Any] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            out.append(json.loads(line))
        except json.JSONDecodeError as e:
            log.error("record_skipped", path=path, line=lineno, error=str(e))
    return out


class JsonEventSource(EventSource):
    """
    Reads every record file directly under `source_dir` (not recursive).
    Events come back in file-name order, then record order within a file.
    """

    def __init__(self, source_dir: str) -> None:
        self.source_dir = source_dir

    def _files(self) -> list[str]:
        out: list[str] = []
        for name in sorted(os.listdir(self.source_dir)):
            if name.startswith(".") or not name.endswith(EXTENSIONS):
                continue
            path = os.path.join(self.source_dir, name)
            if os.path.isfile(path):
                out.append(path)
        return out

    def load_all(self) -> list[Event]:
        if not os.path.isdir(self.source_dir):
            log.warning("source_missing", source_dir=self.source_dir)
            return []

        events: list[Event] = []
        seen: set[tuple[str, int]] = set()
        files = skipped = duplicates = 0
        for path in self._files():
            try:
                records = _read_records(path)
            except LoadError as e:
                log.error("file_skipped", path=path, error=e.message)
                continue
            files += 1
            for rec in records:
                try:
                    ev = Event.from_record(rec)
                except LoadError as e:
                    skipped += 1
                    log.error("record_skipped", path=path, error=e.message)
                    continue
                if ev.identity in seen:
                    duplicates += 1
                    continue
                seen.add(ev.identity)
                events.append(ev)

        log.info("events_loaded", source_dir=self.source_dir, files=files,
                 events=len(events), skipped=skipped, duplicates=duplicates)
        return events
