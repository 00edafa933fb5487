from __future__ import annotations
import os, json
from typing import Iterable

import pyarrow as pa
import pyarrow.parquet as pq

from ..domain.models import Event

EVENTS_SCHEMA = pa.schema([
    pa.field("block_number",     pa.int64()),
    pa.field("block_timestamp",  pa.int64()),
    pa.field("tx_hash",          pa.large_string()),
    pa.field("log_index",        pa.int32()),
    pa.field("contract_address", pa.large_string()),
    pa.field("event",            pa.large_string()),
    pa.field("loan_id",          pa.large_string()),
    pa.field("topics",           pa.list_(pa.large_string())),
    pa.field("data",             pa.large_string()),
    pa.field("decoded_fields",   pa.large_string()),    # JSON object, big ints as strings
])

COLS = [f.name for f in EVENTS_SCHEMA]

def events_to_table(events: Iterable[Event]) -> pa.Table:
    evs = list(events)
    cols: dict[str, list] = {name: [] for name in COLS}
    for e in evs:
        cols["block_number"].append(e.block_number)
        cols["block_timestamp"].append(e.block_timestamp)
        cols["tx_hash"].append(e.transaction_hash)
        cols["log_index"].append(e.log_index)
        cols["contract_address"].append(e.contract_address)
        cols["event"].append(e.name)
        cols["loan_id"].append(e.loan_id)
        cols["topics"].append(list(e.topics))
        cols["data"].append(e.raw_data)
        cols["decoded_fields"].append(
            json.dumps(dict(e.decoded_fields), separators=(",", ":")) if e.decoded_fields is not None else None
        )
    table = pa.Table.from_pydict(cols, schema=EVENTS_SCHEMA)
    return table.sort_by([("block_number", "ascending"),
                          ("tx_hash", "ascending"),
                          ("log_index", "ascending")])

def export_parquet(events: Iterable[Event], out_path: str, codec: str = "zstd") -> int:
    """Write events to a single Parquet file; returns the row count."""
    table = events_to_table(events)
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    tmp = out_path + ".tmp"
    pq.write_table(table, tmp, compression=codec)
    os.replace(tmp, out_path)
    return len(table)
