# lendex/adapters/coverage_local.py
from __future__ import annotations

import os, json

import structlog

from ..application.planning import merge_intervals, subtract_interval
from ..ports.coverage import Coverage

log = structlog.get_logger(__name__)


class LocalManifestCoverage(Coverage):
    """
    Computes coverage by reading JSONL manifest files under `manifests_dir`.
    A failed range stays outstanding until some manifest records it (or a
    superset of it) as done.
    """
    def __init__(self, manifests_dir: str) -> None:
        self.manifests_dir = manifests_dir
        self._done: set[tuple[int, int]] = set()
        self._failed: set[tuple[int, int]] = set()
        self._load()

    def _load(self) -> None:
        if not os.path.isdir(self.manifests_dir):
            return
        for name in sorted(os.listdir(self.manifests_dir)):
            if not name.endswith(".jsonl"):
                continue
            path = os.path.join(self.manifests_dir, name)
            try:
                with open(path, "r") as f:
                    for line in f:
                        line = line.strip()
                        if not line:
                            continue
                        rec = json.loads(line)
                        iv = (int(rec["from_block"]), int(rec["to_block"]))
                        if rec.get("status") == "done":
                            self._done.add(iv)
                        elif rec.get("status") == "failed":
                            self._failed.add(iv)
            except (OSError, ValueError, KeyError, TypeError) as e:
                log.error("manifest_skipped", path=path, error=str(e))
                continue

    def covered_ranges(self) -> list[tuple[int, int]]:
        return merge_intervals(list(self._done))

    def failed_ranges(self) -> list[tuple[int, int]]:
        covered = self.covered_ranges()
        out: list[tuple[int, int]] = []
        for iv in merge_intervals(list(self._failed)):
            out.extend(subtract_interval(iv, covered))
        return out
