from __future__ import annotations

import asyncio
from typing import Callable, Sequence

from ..domain.errors import StoreError
from ..domain.models import (
    ApplyResult, DomainEvent, EnrichmentItem, PixelChanged, PixelTarget, ShardInitialized, ShardTarget,
)
from ..domain.projection import global_px_to_lat_lon, shard_to_lat_lon
from ..domain.value_types import Signature
from ..logging_config import get_logger
from ..ports.storage import ProjectionStore

log = get_logger(__name__)

EnrichmentSink = Callable[[Sequence[EnrichmentItem]], None]


class ProjectionApplier:
    """
    Applies one transaction's events and its dedup marker as a single atomic unit.

    Every write (rows, counters, processed_sigs) happens inside one storage
    transaction guarded by the dedup check, so a redelivered signature is a
    no-op and a crash before commit loses the whole apply, never part of it.
    Newly created rows are handed to `on_created` only after commit.
    """

    def __init__(self, store: ProjectionStore, on_created: EnrichmentSink | None = None) -> None:
        self.store = store
        self.on_created = on_created
        self._inflight: set[asyncio.Future] = set()

    def apply_sync(self, signature: Signature, events: Sequence[DomainEvent]) -> tuple[ApplyResult, list[EnrichmentItem]]:
        created: list[EnrichmentItem] = []
        pixel_ids: list[int] = []
        shard_keys: list[tuple[int, int]] = []
        with self.store.unit_of_work() as uow:
            if uow.has(signature):
                return ApplyResult(signature=signature, applied=False), []
            for ev in events:
                if isinstance(ev, PixelChanged):
                    pid = uow.insert_pixel(ev)
                    pixel_ids.append(pid)
                    created.append(EnrichmentItem(PixelTarget(pid), *global_px_to_lat_lon(ev.px, ev.py)))
                elif isinstance(ev, ShardInitialized):
                    if not uow.insert_shard(ev):
                        log.debug("shard_already_indexed", shard_x=ev.shard_x, shard_y=ev.shard_y)
                        continue
                    shard_keys.append((ev.shard_x, ev.shard_y))
                    created.append(EnrichmentItem(ShardTarget(ev.shard_x, ev.shard_y),
                                                  *shard_to_lat_lon(ev.shard_x, ev.shard_y)))
                else:
                    raise StoreError(f"Unknown event variant: {type(ev).__name__}")
            uow.mark(signature)
        result = ApplyResult(signature=signature, applied=True,
                             pixels_created=tuple(pixel_ids), shards_created=tuple(shard_keys))
        return result, created

    async def apply(self, signature: Signature, events: Sequence[DomainEvent]) -> ApplyResult:
        """Run the atomic apply off the event loop, then emit enrichment work."""
        fut = asyncio.ensure_future(asyncio.to_thread(self.apply_sync, signature, list(events)))
        self._inflight.add(fut)
        fut.add_done_callback(self._inflight.discard)
        # a cancelled caller must not abandon a running transaction
        result, created = await asyncio.shield(fut)
        if result.applied:
            log.info("tx_applied", signature=signature, events=len(events),
                     pixels=len(result.pixels_created), shards=len(result.shards_created))
            self._emit(created)
        return result

    def _emit(self, items: list[EnrichmentItem]) -> None:
        if not items or self.on_created is None:
            return
        try:
            self.on_created(items)
        except Exception as e:
            # enrichment is best-effort; the repair scan picks these rows up later
            log.warning("enrichment_enqueue_failed", error=f"{type(e).__name__}: {e}", items=len(items))

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def drain(self, timeout: float) -> int:
        """Wait up to `timeout` seconds for in-flight applies; return how many are still running."""
        pending = set(self._inflight)
        if not pending:
            return 0
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        return len(not_done)
