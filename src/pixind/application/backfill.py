from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from ..constants import BACKFILL_PAGE_DELAY_S, BACKFILL_PAGE_SIZE
from ..domain.decoding import parse_logs
from ..domain.models import BackfillStats, SignatureInfo
from ..domain.value_types import ProgramId, Signature
from ..logging_config import get_logger
from ..ports.rpc import LedgerClient
from ..ports.storage import ProjectionStore, SyncStateStore
from .projection import ProjectionApplier

log = get_logger(__name__)


class BackfillEngine:
    """
    Historical catch-up for one source.

    Pages signatures newest-first from the ledger, bounded below by the
    persisted watermark (`until`) and walking older with `before`; each page
    is replayed oldest-first through the applier. The first non-empty page
    of every run moves the watermark to its newest signature before anything
    in it is processed. Any fetch/apply failure ends the run and puts the
    previous watermark back, so the next run re-covers the range; the dedup
    check makes the replay cheap.
    """

    def __init__(
        self,
        label: str,
        program_id: ProgramId,
        client: LedgerClient,
        store: ProjectionStore,
        sync_state: SyncStateStore,
        applier: ProjectionApplier,
        *,
        page_size: int = BACKFILL_PAGE_SIZE,
        page_delay_s: float = BACKFILL_PAGE_DELAY_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.label = label
        self.program_id = program_id
        self.client = client
        self.store = store
        self.sync_state = sync_state
        self.applier = applier
        self.page_size = page_size
        self.page_delay_s = page_delay_s
        self._sleep = sleep

    async def run(self) -> BackfillStats:
        stats = BackfillStats(label=self.label)
        until = await asyncio.to_thread(self.sync_state.get_watermark, self.label)
        before: Signature | None = None
        log.info("backfill_start", label=self.label, until=until)
        try:
            while True:
                page = await self.client.list_signatures(
                    self.program_id, limit=self.page_size, before=before, until=until)
                if not page:
                    break
                stats.pages += 1
                stats.signatures_seen += len(page)

                if stats.watermark is None:
                    # optimistic: bound the next run even if this one is interrupted
                    newest = page[0].signature
                    await asyncio.to_thread(self.sync_state.set_watermark, self.label, newest)
                    stats.watermark = newest

                for info in reversed(page):
                    await self._process(info, stats)

                before = page[-1].signature
                log.info("backfill_page", label=self.label, page=stats.pages, sigs=len(page),
                         applied=stats.applied, before=before)
                await self._sleep(self.page_delay_s)
        except Exception as e:
            stats.failed = True
            log.error("backfill_failed", label=self.label, page=stats.pages,
                      error=f"{type(e).__name__}: {e}")
            if stats.watermark is not None:
                await self._restore_watermark(until)
        log.info("backfill_done", label=self.label, pages=stats.pages, seen=stats.signatures_seen,
                 applied=stats.applied, skipped_seen=stats.skipped_seen,
                 skipped_missing=stats.skipped_missing, failed=stats.failed)
        return stats

    async def _restore_watermark(self, previous: Signature | None) -> None:
        # The watermark is otherwise forward-only; this is the one exception. The
        # older tail of this run is still unprocessed and the next run must reach
        # it, so the watermark goes back to where this run started, never below.
        try:
            if previous is None:
                await asyncio.to_thread(self.sync_state.clear_watermark, self.label)
            else:
                await asyncio.to_thread(self.sync_state.set_watermark, self.label, previous)
        except Exception as e:
            log.error("backfill_watermark_restore_failed", label=self.label,
                      error=f"{type(e).__name__}: {e}")
            return
        log.info("backfill_watermark_restored", label=self.label, watermark=previous)

    async def _process(self, info: SignatureInfo, stats: BackfillStats) -> None:
        # cheap pre-filter; the applier re-checks inside its transaction
        if await asyncio.to_thread(self.store.is_processed, info.signature):
            stats.skipped_seen += 1
            return
        if info.failed:
            # failed on-chain: mark with zero events so it is never fetched again
            events = []
        else:
            tx = await self.client.fetch_transaction(info.signature)
            if tx is None:
                stats.skipped_missing += 1
                log.warning("backfill_tx_missing", label=self.label, signature=info.signature)
                return
            events = [] if tx.failed else parse_logs(tx.log_lines, self.program_id)
        result = await self.applier.apply(info.signature, events)
        if result.applied:
            stats.applied += 1
        else:
            stats.skipped_seen += 1
