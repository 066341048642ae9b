from __future__ import annotations
import os, pyarrow as pa, pyarrow.parquet as pq
from typing import Iterable

from ..domain.models import PixelRow, ShardRow

PIXELS_SCHEMA = pa.schema([
    pa.field("id",            pa.int64()),
    pa.field("px",            pa.int32()),
    pa.field("py",            pa.int32()),
    pa.field("color",         pa.int64()),
    pa.field("main_wallet",   pa.string()),
    pa.field("timestamp",     pa.int64()),
    pa.field("location_name", pa.string()),
])

SHARDS_SCHEMA = pa.schema([
    pa.field("shard_x",       pa.int32()),
    pa.field("shard_y",       pa.int32()),
    pa.field("main_wallet",   pa.string()),
    pa.field("timestamp",     pa.int64()),
    pa.field("location_name", pa.string()),
])

def pixels_to_table(rows: Iterable[PixelRow]) -> pa.Table:
    rs = list(rows)
    return pa.Table.from_pydict({
        name: [getattr(r, name) for r in rs] for name in PIXELS_SCHEMA.names
    }, schema=PIXELS_SCHEMA)

def shards_to_table(rows: Iterable[ShardRow]) -> pa.Table:
    rs = list(rows)
    return pa.Table.from_pydict({
        name: [getattr(r, name) for r in rs] for name in SHARDS_SCHEMA.names
    }, schema=SHARDS_SCHEMA)

def _write_atomic(table: pa.Table, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    pq.write_table(table, tmp, compression="snappy", use_dictionary=True)
    os.replace(tmp, path)
    return path

def export_view(pixels: Iterable[PixelRow], shards: Iterable[ShardRow], out_dir: str) -> dict[str, int]:
    """Snapshot pixel_events and shards as Parquet files under `out_dir`."""
    pt = pixels_to_table(pixels)
    st = shards_to_table(shards)
    _write_atomic(pt, os.path.join(out_dir, "pixel_events.parquet"))
    _write_atomic(st, os.path.join(out_dir, "shards.parquet"))
    return {"pixel_events": len(pt), "shards": len(st)}
