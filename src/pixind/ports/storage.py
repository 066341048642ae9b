from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Protocol
from ..domain.models import (
    GlobalStatsRow, PixelChanged, PixelRow, ShardInitialized, ShardRow, UserRow,
)
from ..domain.value_types import Signature


class DedupStore(Protocol):
    """Idempotency gate: which transactions have already been applied."""

    def has(self, signature: Signature) -> bool: ...

    def mark(self, signature: Signature) -> None:
        """Record `signature`; only valid inside the apply transaction it accompanies."""


class ProjectionUnit(DedupStore, Protocol):
    """One open atomic apply transaction over the materialized view."""

    def insert_pixel(self, ev: PixelChanged) -> int:
        """Insert a pixel_events row, bump counters, upsert the user; return the new row id."""

    def insert_shard(self, ev: ShardInitialized) -> bool:
        """Insert a shards row and bump counters; False (and no writes) if already indexed."""


class ProjectionStore(Protocol):
    """Port for opening atomic apply transactions."""

    def unit_of_work(self) -> AbstractContextManager[ProjectionUnit]:
        """Commit on clean exit, roll back everything on exception."""

    def is_processed(self, signature: Signature) -> bool:
        """Dedup check outside any apply transaction (cheap pre-filter)."""


class SyncStateStore(Protocol):
    """Port for per-source backfill watermarks."""

    def get_watermark(self, label: str) -> Signature | None: ...

    def set_watermark(self, label: str, signature: Signature) -> None: ...

    def clear_watermark(self, label: str) -> None: ...


class EnrichmentStore(Protocol):
    """Port used by the enrichment pipeline; touches only the location_name field."""

    def set_pixel_location(self, pixel_id: int, name: str) -> None: ...

    def set_shard_location(self, shard_x: int, shard_y: int, name: str) -> None: ...

    def unresolved_pixels(self, sentinel: str, limit: int) -> list[PixelRow]:
        """Newest-first pixels whose location_name is NULL or `sentinel`."""

    def unresolved_shards(self, sentinel: str, limit: int) -> list[ShardRow]: ...


class ViewReader(Protocol):
    """Read path exposed to the rest of the application."""

    def recent_pixels(self, limit: int, px: int | None = None, py: int | None = None) -> list[PixelRow]: ...

    def shard_at(self, shard_x: int, shard_y: int) -> ShardRow | None: ...

    def shards_by_owner(self, wallet: str) -> list[ShardRow]: ...

    def user(self, wallet: str) -> UserRow | None: ...

    def global_stats(self) -> GlobalStatsRow: ...
