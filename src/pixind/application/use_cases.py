from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Sequence

from ..adapters.geocache_sql import CachedPlaceLookup
from ..adapters.nominatim import NominatimLookup
from ..adapters.rpc_httpx import SolanaHttpRPC
from ..adapters.sql_store import SqlStore
from ..adapters.ws_logs import WebsocketLogStream
from ..config import IndexerConfig, SourceConfig
from ..domain.models import BackfillStats
from ..domain.value_types import ProgramId
from ..logging_config import get_logger
from ..ports.rpc import LedgerClient, LogStream
from .backfill import BackfillEngine
from .enrichment import EnrichmentPipeline, RateLimiter, RetryQueue
from .live import LiveSubscriber
from .projection import ProjectionApplier

log = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class SourceRuntime:
    label: str
    client: LedgerClient
    stream: LogStream | None = None


async def run_sources(
    *,
    program_id: ProgramId,
    sources: Sequence[SourceRuntime],
    store: SqlStore,
    applier: ProjectionApplier,
    pipeline: EnrichmentPipeline | None = None,
    backfill: bool = True,
    live: bool = True,
    page_size: int,
    page_delay_s: float,
    shutdown_grace_s: float,
) -> list[BackfillStats]:
    """
    Run live subscribers, backfills and enrichment loops for every source.

    Returns once every backfill is done when `live` is False; otherwise runs
    until cancelled. On exit, in-flight applies get `shutdown_grace_s` to finish.
    """
    background: list[asyncio.Task] = []
    if pipeline is not None:
        background.append(asyncio.create_task(pipeline.run(), name="enrichment"))
    if live:
        for src in sources:
            if src.stream is None:
                continue
            sub = LiveSubscriber(src.label, program_id, src.stream, applier)
            background.append(asyncio.create_task(sub.run(), name=f"live:{src.label}"))

    backfills = [
        asyncio.create_task(BackfillEngine(
            src.label, program_id, src.client, store, store, applier,
            page_size=page_size, page_delay_s=page_delay_s,
        ).run(), name=f"backfill:{src.label}")
        for src in sources
    ] if backfill else []

    try:
        stats = list(await asyncio.gather(*backfills))
        if live and background:
            await asyncio.gather(*background)
        return stats
    finally:
        for t in backfills + background:
            t.cancel()
        await asyncio.gather(*backfills, *background, return_exceptions=True)
        left = await applier.drain(shutdown_grace_s)
        if left:
            log.warning("shutdown_inflight_abandoned", inflight=left)
        if pipeline is not None and len(pipeline.retry_queue):
            log.info("shutdown_dropping_pending_geocodes", pending=len(pipeline.retry_queue))


def _source_runtimes(sources: Sequence[SourceConfig], *, with_streams: bool) -> list[SourceRuntime]:
    return [
        SourceRuntime(
            label=src.label,
            client=SolanaHttpRPC(src.rpc_url),
            stream=WebsocketLogStream(src.ws_url) if with_streams else None,
        )
        for src in sources
    ]


async def _close_clients(runtimes: Sequence[SourceRuntime]) -> None:
    for rt in runtimes:
        if isinstance(rt.client, SolanaHttpRPC):
            await rt.client.aclose()


async def run_indexer(config: IndexerConfig, *, backfill: bool = True) -> None:
    """Start the full pipeline against the configured sources; runs until cancelled."""
    program_id = ProgramId(config.require_program_id())
    store = SqlStore(config.db_url)
    await asyncio.to_thread(store.create_schema)

    resolver = NominatimLookup(config.geocode_url)
    # one limiter for every path, spent only on cache misses
    limiter = RateLimiter(config.geocode_min_interval_s)
    pipeline = EnrichmentPipeline(
        store, CachedPlaceLookup(resolver, store, throttle=limiter.wait),
        retry_queue=RetryQueue(base_delay_s=config.geocode_retry_base_s),
    )
    applier = ProjectionApplier(store, on_created=pipeline.submit)
    runtimes = _source_runtimes(config.sources, with_streams=True)
    log.info("indexer_start", program_id=program_id, sources=[s.label for s in config.sources])
    try:
        await run_sources(
            program_id=program_id, sources=runtimes, store=store, applier=applier,
            pipeline=pipeline, backfill=backfill, live=True,
            page_size=config.backfill_page_size, page_delay_s=config.backfill_delay_s,
            shutdown_grace_s=config.shutdown_grace_s,
        )
    finally:
        await _close_clients(runtimes)
        await resolver.aclose()
        store.dispose()
        log.info("indexer_stopped")


async def backfill_once(config: IndexerConfig, labels: Sequence[str] = ()) -> list[BackfillStats]:
    """One historical pass per selected source, without live delivery or enrichment."""
    program_id = ProgramId(config.require_program_id())
    selected = [s for s in config.sources if not labels or s.label in labels]
    store = SqlStore(config.db_url)
    await asyncio.to_thread(store.create_schema)
    applier = ProjectionApplier(store)
    runtimes = _source_runtimes(selected, with_streams=False)
    try:
        return await run_sources(
            program_id=program_id, sources=runtimes, store=store, applier=applier,
            backfill=True, live=False,
            page_size=config.backfill_page_size, page_delay_s=config.backfill_delay_s,
            shutdown_grace_s=config.shutdown_grace_s,
        )
    finally:
        await _close_clients(runtimes)
        store.dispose()
