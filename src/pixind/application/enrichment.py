from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Iterable, Literal

from ..constants import (
    FALLBACK_LOCATION,
    GEOCODE_MAX_ATTEMPTS,
    GEOCODE_MIN_INTERVAL_S,
    GEOCODE_RETRY_BASE_S,
    GEOCODE_RETRY_TICK_S,
    REPAIR_SCAN_BATCH,
    REPAIR_SCAN_INITIAL_DELAY_S,
    REPAIR_SCAN_INTERVAL_S,
)
from ..domain.models import EnrichmentItem, EnrichmentTarget, PendingGeocode, PixelTarget, ShardTarget
from ..domain.projection import global_px_to_lat_lon, shard_to_lat_lon
from ..logging_config import get_logger
from ..ports.geocode import PlaceLookup
from ..ports.storage import EnrichmentStore

log = get_logger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]
FailureOutcome = Literal["scheduled", "dropped", "missing"]


def _describe(target: EnrichmentTarget) -> str:
    if isinstance(target, PixelTarget):
        return f"pixel#{target.id}"
    return f"shard({target.x},{target.y})"


class RateLimiter:
    """Minimum spacing between calls, shared by every caller.

    A slot is reserved under the lock; the wait happens outside it.
    """

    def __init__(self, min_interval_s: float = GEOCODE_MIN_INTERVAL_S, *,
                 clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep) -> None:
        self.min_interval_s = min_interval_s
        self._clock = clock
        self._sleep = sleep
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval_s
        if slot > now:
            await self._sleep(slot - now)


class RetryQueue:
    """
    In-memory PendingGeocode entries keyed by target identity.

    The immediate attempt counts as the first failure; an entry is dropped
    once `max_attempts` lookups in total have failed.
    """

    def __init__(self, *, base_delay_s: float = GEOCODE_RETRY_BASE_S,
                 max_attempts: int = GEOCODE_MAX_ATTEMPTS) -> None:
        self.base_delay_s = base_delay_s
        self.max_attempts = max_attempts
        self._entries: dict[EnrichmentTarget, PendingGeocode] = {}
        self._lock = asyncio.Lock()

    async def add(self, item: EnrichmentItem, now: float) -> bool:
        """Queue after a failed immediate attempt; False if the target is already queued."""
        async with self._lock:
            if item.target in self._entries:
                return False
            self._entries[item.target] = PendingGeocode(
                item=item, retry_count=0, next_retry_at=now + self.base_delay_s)
            return True

    async def due(self, now: float) -> list[PendingGeocode]:
        async with self._lock:
            return [p for p in self._entries.values() if p.next_retry_at <= now]

    async def record_failure(self, target: EnrichmentTarget, now: float) -> FailureOutcome:
        """
        Back off after a failed retry. "dropped" once the entry hits the
        ceiling, "missing" if another path already removed it.
        """
        async with self._lock:
            entry = self._entries.get(target)
            if entry is None:
                return "missing"
            entry.retry_count += 1
            if entry.retry_count + 1 >= self.max_attempts:
                del self._entries[target]
                return "dropped"
            entry.next_retry_at = now + self.base_delay_s * (2 ** entry.retry_count)
            return "scheduled"

    async def remove(self, target: EnrichmentTarget) -> None:
        async with self._lock:
            self._entries.pop(target, None)

    async def contains(self, target: EnrichmentTarget) -> bool:
        async with self._lock:
            return target in self._entries

    async def get(self, target: EnrichmentTarget) -> PendingGeocode | None:
        async with self._lock:
            return self._entries.get(target)

    def __len__(self) -> int:
        return len(self._entries)


class EnrichmentPipeline:
    """
    Best-effort place-name tagging of newly applied pixels and shards.

    Three paths feed `lookup`: the immediate attempt (background worker fed
    by `submit`), the retry tick over the RetryQueue and the periodic repair
    scan over rows still NULL or holding the sentinel. None of them ever
    raise into ingestion.

    With `rate_limiter` set, every lookup waits for a slot. Leave it unset
    when `lookup` throttles its own external calls (CachedPlaceLookup), so
    cache hits are not spaced out.
    """

    def __init__(
        self,
        store: EnrichmentStore,
        lookup: PlaceLookup,
        *,
        retry_queue: RetryQueue | None = None,
        rate_limiter: RateLimiter | None = None,
        sentinel: str = FALLBACK_LOCATION,
        retry_tick_s: float = GEOCODE_RETRY_TICK_S,
        repair_interval_s: float = REPAIR_SCAN_INTERVAL_S,
        repair_initial_delay_s: float = REPAIR_SCAN_INITIAL_DELAY_S,
        repair_batch: int = REPAIR_SCAN_BATCH,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.lookup = lookup
        self.retry_queue = retry_queue or RetryQueue()
        self.rate_limiter = rate_limiter
        self.sentinel = sentinel
        self.retry_tick_s = retry_tick_s
        self.repair_interval_s = repair_interval_s
        self.repair_initial_delay_s = repair_initial_delay_s
        self.repair_batch = repair_batch
        self._clock = clock
        self._sleep = sleep
        self._inbox: asyncio.Queue[EnrichmentItem] = asyncio.Queue()

    # ---- entry points -----------------------------------------------------------

    def submit(self, items: Iterable[EnrichmentItem]) -> None:
        """Fire-and-forget; never blocks the caller."""
        for item in items:
            self._inbox.put_nowait(item)

    async def attempt_now(self, item: EnrichmentItem) -> bool:
        try:
            name = await self._lookup(item)
        except Exception as e:
            log.warning("geocode_failed_scheduling_retry", target=_describe(item.target),
                        error=f"{type(e).__name__}: {e}")
            await self.retry_queue.add(item, self._clock())
            return False
        return await self._write(item.target, name)

    async def retry_due(self) -> int:
        """One retry tick; returns the number of targets resolved."""
        resolved = 0
        for entry in await self.retry_queue.due(self._clock()):
            try:
                name = await self._lookup(entry.item)
            except Exception as e:
                await self._retry_failed(entry, f"{type(e).__name__}: {e}")
                continue
            if await self._write(entry.target, name):
                await self.retry_queue.remove(entry.target)
                resolved += 1
            else:
                # an unwritable result is a failed attempt too
                await self._retry_failed(entry, "location write failed")
        return resolved

    async def _retry_failed(self, entry: PendingGeocode, error: str) -> None:
        outcome = await self.retry_queue.record_failure(entry.target, self._clock())
        if outcome == "dropped":
            log.warning("geocode_gave_up", target=_describe(entry.target),
                        attempts=self.retry_queue.max_attempts, error=error)
            await self._write(entry.target, self.sentinel)
        elif outcome == "scheduled":
            log.info("geocode_retry_scheduled", target=_describe(entry.target),
                     retry=entry.retry_count, max_attempts=self.retry_queue.max_attempts)

    async def repair_scan(self) -> int:
        """Re-attempt a bounded batch of unresolved rows; returns the number updated."""
        pixels = await asyncio.to_thread(self.store.unresolved_pixels, self.sentinel, self.repair_batch)
        shards = await asyncio.to_thread(self.store.unresolved_shards, self.sentinel, self.repair_batch)
        items = [EnrichmentItem(PixelTarget(p.id), *global_px_to_lat_lon(p.px, p.py)) for p in pixels]
        items += [EnrichmentItem(ShardTarget(s.shard_x, s.shard_y), *shard_to_lat_lon(s.shard_x, s.shard_y))
                  for s in shards]
        if items:
            log.info("repair_scan", pixels=len(pixels), shards=len(shards))
        updated = 0
        for item in items:
            if await self.retry_queue.contains(item.target):
                continue
            try:
                name = await self._lookup(item)
            except Exception as e:
                log.debug("repair_lookup_failed", target=_describe(item.target), error=str(e))
                continue
            if name and name != self.sentinel and await self._write(item.target, name):
                updated += 1
        return updated

    # ---- loops ------------------------------------------------------------------

    async def run(self) -> None:
        await asyncio.gather(self._worker(), self._retry_loop(), self._repair_loop())

    async def _worker(self) -> None:
        while True:
            item = await self._inbox.get()
            try:
                await self.attempt_now(item)
            finally:
                self._inbox.task_done()

    async def _retry_loop(self) -> None:
        while True:
            await self._sleep(self.retry_tick_s)
            try:
                await self.retry_due()
            except Exception as e:
                log.error("retry_tick_failed", error=f"{type(e).__name__}: {e}")

    async def _repair_loop(self) -> None:
        await self._sleep(self.repair_initial_delay_s)
        while True:
            try:
                await self.repair_scan()
            except Exception as e:
                log.error("repair_scan_failed", error=f"{type(e).__name__}: {e}")
            await self._sleep(self.repair_interval_s)

    # ---- helpers ----------------------------------------------------------------

    async def _lookup(self, item: EnrichmentItem) -> str:
        if self.rate_limiter is not None:
            await self.rate_limiter.wait()
        return await self.lookup.lookup(item.lat, item.lon)

    async def _write(self, target: EnrichmentTarget, name: str) -> bool:
        try:
            if isinstance(target, PixelTarget):
                await asyncio.to_thread(self.store.set_pixel_location, target.id, name)
            else:
                await asyncio.to_thread(self.store.set_shard_location, target.x, target.y, name)
        except Exception as e:
            log.error("location_write_failed", target=_describe(target), error=f"{type(e).__name__}: {e}")
            return False
        log.info("location_set", target=_describe(target), location=name)
        return True

    @property
    def backlog(self) -> int:
        return self._inbox.qsize()
