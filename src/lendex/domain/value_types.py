from __future__ import annotations
from enum import Enum
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, lowercase
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash, lowercase
Status  = Literal["started", "done", "failed"]
UnknownPolicy = Literal["drop", "retain"]

UNKNOWN_EVENT = "Unknown"


class LoanStatus(str, Enum):
    UNKNOWN = "Unknown"
    CREATED = "Created"
    ACTIVE = "Active"
    REPAID = "Repaid"
    LIQUIDATED = "Liquidated"

    def __str__(self) -> str:
        return self.value
