"""Unit tests for paged historical catch-up."""

from __future__ import annotations

import pytest

from pixind.application.backfill import BackfillEngine
from pixind.application.projection import ProjectionApplier
from pixind.domain.value_types import Signature
from tests.fakes import PROGRAM_ID, FakeLedger, no_sleep, pixel_payload, program_logs

LABEL = "Base Layer"


def _ledger(n: int) -> FakeLedger:
    """SIG1 (oldest) .. SIGn (newest), each placing one pixel at (i, i)."""
    ledger = FakeLedger()
    for i in range(1, n + 1):
        ledger.add(f"SIG{i}", program_logs(pixel_payload(i, i, i, 1, 1, 1000 + i)))
    return ledger


class _RecordingApplier(ProjectionApplier):
    def __init__(self, store) -> None:
        super().__init__(store)
        self.order: list[str] = []

    def apply_sync(self, signature, events):
        self.order.append(signature)
        return super().apply_sync(signature, events)


def _engine(store, ledger, applier=None, page_size: int = 2) -> BackfillEngine:
    return BackfillEngine(LABEL, PROGRAM_ID, ledger, store, store, applier or ProjectionApplier(store),
                          page_size=page_size, sleep=no_sleep)


@pytest.mark.asyncio
async def test_full_catch_up_applies_oldest_first_within_pages(store) -> None:
    """Pages walk older; each page is replayed oldest first."""
    ledger = _ledger(5)
    applier = _RecordingApplier(store)

    stats = await _engine(store, ledger, applier).run()

    assert applier.order == ["SIG4", "SIG5", "SIG2", "SIG3", "SIG1"]
    assert stats.applied == 5 and stats.pages == 3 and not stats.failed
    assert store.count_pixels() == 5
    assert [c["before"] for c in ledger.list_calls] == [None, "SIG4", "SIG2", "SIG1"]


@pytest.mark.asyncio
async def test_watermark_is_newest_signature_of_first_page(store) -> None:
    """The first non-empty page sets the watermark to its newest entry."""
    stats = await _engine(store, _ledger(3)).run()

    assert stats.watermark == "SIG3"
    assert store.get_watermark(LABEL) == "SIG3"


@pytest.mark.asyncio
async def test_rerun_only_sees_signatures_newer_than_watermark(store) -> None:
    """A second run is bounded by the stored watermark."""
    ledger = _ledger(3)
    await _engine(store, ledger).run()
    ledger.add("SIG4", program_logs(pixel_payload(4, 4, 4, 1, 1, 1004)))
    ledger.list_calls.clear()

    stats = await _engine(store, ledger).run()

    assert ledger.list_calls[0]["until"] == "SIG3"
    assert stats.signatures_seen == 1 and stats.applied == 1
    assert store.get_watermark(LABEL) == "SIG4"


@pytest.mark.asyncio
async def test_empty_history_leaves_watermark_unset(store) -> None:
    """Nothing new means nothing is written."""
    stats = await _engine(store, FakeLedger()).run()

    assert stats.pages == 0
    assert store.get_watermark(LABEL) is None


@pytest.mark.asyncio
async def test_failed_transactions_are_marked_without_events(store) -> None:
    """Errored signatures are recorded as processed and contribute no rows."""
    ledger = FakeLedger()
    ledger.add("BAD_LIST", program_logs(pixel_payload(1, 1, 1, 1, 1, 1)), list_error={"InstructionError": [0, "x"]})
    ledger.add("BAD_META", program_logs(pixel_payload(2, 2, 2, 1, 1, 2)), error={"InstructionError": [0, "y"]})

    stats = await _engine(store, ledger).run()

    assert stats.applied == 2
    assert store.count_pixels() == 0
    assert store.is_processed(Signature("BAD_LIST")) and store.is_processed(Signature("BAD_META"))
    assert ledger.fetch_calls == ["BAD_META"]


@pytest.mark.asyncio
async def test_missing_transaction_is_skipped_not_marked(store) -> None:
    """A signature whose transaction cannot be fetched stays unprocessed."""
    ledger = _ledger(2)
    ledger.add("GONE", missing=True)

    stats = await _engine(store, ledger, page_size=10).run()

    assert stats.skipped_missing == 1 and stats.applied == 2
    assert not store.is_processed(Signature("GONE"))


@pytest.mark.asyncio
async def test_already_processed_signatures_are_not_fetched(store) -> None:
    """Signatures applied by the live path are skipped before any fetch."""
    ledger = _ledger(2)
    ProjectionApplier(store).apply_sync(Signature("SIG1"), [])

    stats = await _engine(store, ledger).run()

    assert stats.skipped_seen == 1
    assert ledger.fetch_calls == ["SIG2"]


@pytest.mark.asyncio
async def test_fetch_error_ends_run_and_next_run_recovers(store) -> None:
    """A failing fetch aborts the run; the following run fills the gap."""
    ledger = _ledger(4)
    ledger.fail_fetch_on.add("SIG2")

    first = await _engine(store, ledger).run()

    assert first.failed
    assert store.get_watermark(LABEL) is None
    assert not store.is_processed(Signature("SIG2"))

    ledger.fail_fetch_on.clear()
    second = await _engine(store, ledger).run()

    assert not second.failed
    assert store.count_pixels() == 4
    assert second.skipped_seen == 3
    assert store.get_watermark(LABEL) == "SIG4"


@pytest.mark.asyncio
async def test_failed_run_restores_previous_watermark(store) -> None:
    """An aborted run leaves the watermark where it started."""
    ledger = _ledger(2)
    await _engine(store, ledger).run()
    ledger.add("SIG3", program_logs(pixel_payload(3, 3, 3, 1, 1, 1003)))
    ledger.add("SIG4", program_logs(pixel_payload(4, 4, 4, 1, 1, 1004)))
    ledger.fail_fetch_on.add("SIG3")

    stats = await _engine(store, ledger).run()

    assert stats.failed
    assert store.get_watermark(LABEL) == "SIG2"
