from __future__ import annotations
import os, json
from typing import Optional

import structlog

from ..application.utils import now_iso
from ..ports.storage import CursorStore

log = structlog.get_logger(__name__)


class JsonCursorFile(CursorStore):
    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> Optional[int]:
        if not os.path.isfile(self.path):
            return None
        try:
            with open(self.path, "r") as f:
                return int(json.load(f)["last_block"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("cursor_unreadable", path=self.path, error=str(e))
            return None

    def save(self, block: int) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w") as f:
            json.dump({"last_block": block, "updated_at": now_iso()}, f)
        os.replace(tmp, self.path)
