"""Unit tests for the atomic projection applier."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import pytest

from pixind.application.projection import ProjectionApplier
from pixind.domain.errors import StoreError
from pixind.domain.models import PixelChanged, PixelTarget, ShardInitialized, ShardTarget
from pixind.domain.value_types import Signature
from tests.fakes import wallet


def _pixel(px: int = 3, py: int = 4, main: int = 1, painter: int = 1, ts: int = 10) -> PixelChanged:
    return PixelChanged(px=px, py=py, color=0xABCDEF, painter=wallet(painter),
                        main_wallet=wallet(main), timestamp=ts)


def _shard(x: int = 0, y: int = 0, owner: int = 1) -> ShardInitialized:
    return ShardInitialized(shard_x=x, shard_y=y, creator=wallet(owner),
                            main_wallet=wallet(owner), timestamp=10)


@dataclass
class _Mystery:
    value: int = 0


def test_apply_is_idempotent_per_signature(store) -> None:
    """Applying the same signature twice changes nothing the second time."""
    applier = ProjectionApplier(store)

    first, created = applier.apply_sync(Signature("SIG"), [_pixel()])
    again, created_again = applier.apply_sync(Signature("SIG"), [_pixel()])

    assert first.applied and len(first.pixels_created) == 1
    assert not again.applied and created_again == []
    assert len(created) == 1
    assert store.count_pixels() == 1
    assert store.global_stats().total_pixels_placed == 1
    assert store.user(wallet(1)).pixels_placed_count == 1


def test_signature_without_events_is_still_marked(store) -> None:
    """Zero-event transactions are recorded so they are never refetched."""
    result, created = ProjectionApplier(store).apply_sync(Signature("EMPTY"), [])

    assert result.applied
    assert created == []
    assert store.is_processed(Signature("EMPTY"))


def test_duplicate_shard_across_signatures_keeps_first_owner(store) -> None:
    """A later ShardInitialized for the same cell is skipped without counting."""
    applier = ProjectionApplier(store)

    applier.apply_sync(Signature("A"), [_shard(owner=1)])
    result, created = applier.apply_sync(Signature("B"), [_shard(owner=2)])

    assert result.applied and result.shards_created == ()
    assert created == []
    assert store.shard_at(0, 0).main_wallet == wallet(1)
    assert store.global_stats().total_shards_deployed == 1
    assert store.is_processed(Signature("B"))


def test_counters_match_rows(store) -> None:
    """Global and per-user counters agree with the stored rows."""
    applier = ProjectionApplier(store)
    applier.apply_sync(Signature("A"), [_pixel(main=1), _pixel(main=2), _shard(0, 0, owner=1)])
    applier.apply_sync(Signature("B"), [_pixel(main=1), _shard(1, 1, owner=2), _shard(0, 0, owner=2)])

    g = store.global_stats()
    assert g.total_pixels_placed == store.count_pixels() == 3
    assert g.total_shards_deployed == store.count_shards() == 2
    users = [store.user(wallet(1)), store.user(wallet(2))]
    assert sum(u.pixels_placed_count for u in users) == 3
    assert sum(u.shards_owned_count for u in users) == 2


def test_enrichment_items_cover_only_created_rows(store) -> None:
    """Created pixels and shards become enrichment targets with coordinates."""
    result, created = ProjectionApplier(store).apply_sync(Signature("A"), [_pixel(), _shard(2, 2)])

    targets = [item.target for item in created]
    assert targets == [PixelTarget(result.pixels_created[0]), ShardTarget(2, 2)]
    assert all(-90 <= item.lat <= 90 and -180 <= item.lon <= 180 for item in created)


def test_unknown_event_variant_aborts_whole_apply(store) -> None:
    """An unhandled variant rolls back the rows written before it."""
    with pytest.raises(StoreError):
        ProjectionApplier(store).apply_sync(Signature("A"), [_pixel(), _Mystery()])

    assert store.count_pixels() == 0
    assert not store.is_processed(Signature("A"))


@pytest.mark.asyncio
async def test_async_apply_emits_to_enrichment_after_commit(store) -> None:
    """on_created receives items only for applies that changed the view."""
    batches: list = []
    applier = ProjectionApplier(store, on_created=batches.append)

    await applier.apply(Signature("A"), [_pixel()])
    await applier.apply(Signature("A"), [_pixel()])

    assert len(batches) == 1
    assert store.is_processed(Signature("A"))


@pytest.mark.asyncio
async def test_failing_enrichment_sink_does_not_fail_apply(store) -> None:
    """Enrichment errors never surface to ingestion."""
    def explode(items) -> None:
        raise RuntimeError("queue closed")

    result = await ProjectionApplier(store, on_created=explode).apply(Signature("A"), [_pixel()])

    assert result.applied
    assert store.count_pixels() == 1


@pytest.mark.asyncio
async def test_concurrent_applies_of_one_signature_write_once(store) -> None:
    """Racing deliveries of one signature produce exactly one apply."""
    applier = ProjectionApplier(store)

    results = await asyncio.gather(*(applier.apply(Signature("RACE"), [_pixel()]) for _ in range(8)))

    assert sum(r.applied for r in results) == 1
    assert store.count_pixels() == 1
    assert store.count_processed() == 1
    assert await applier.drain(1.0) == 0
