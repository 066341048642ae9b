from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Union
from .value_types import Signature, Wallet


# ---------- decoded program events (closed variant) ---------------------------

@dataclass(slots=True, frozen=True)
class PixelChanged:
    px: int
    py: int
    color: int              # packed 0xRRGGBB
    painter: Wallet         # signer; differs from main_wallet for session keys
    main_wallet: Wallet
    timestamp: int          # unix seconds

@dataclass(slots=True, frozen=True)
class ShardInitialized:
    shard_x: int
    shard_y: int
    creator: Wallet
    main_wallet: Wallet
    timestamp: int

DomainEvent = Union[PixelChanged, ShardInitialized]


# ---------- ledger records -----------------------------------------------------

@dataclass(slots=True, frozen=True)
class SignatureInfo:
    signature: Signature
    error: object | None = None
    slot: int | None = None
    block_time: int | None = None

    @property
    def failed(self) -> bool: return self.error is not None

@dataclass(slots=True, frozen=True)
class TransactionRecord:
    signature: Signature
    error: object | None
    log_lines: tuple[str, ...]

    @property
    def failed(self) -> bool: return self.error is not None

@dataclass(slots=True, frozen=True)
class LogNotification:
    """One push delivery from the log subscription."""
    signature: Signature
    error: object | None
    log_lines: tuple[str, ...]
    slot: int | None = None


# ---------- enrichment ---------------------------------------------------------

@dataclass(slots=True, frozen=True)
class PixelTarget:
    id: int

@dataclass(slots=True, frozen=True)
class ShardTarget:
    x: int
    y: int

EnrichmentTarget = Union[PixelTarget, ShardTarget]

@dataclass(slots=True, frozen=True)
class EnrichmentItem:
    target: EnrichmentTarget
    lat: float
    lon: float

@dataclass(slots=True)
class PendingGeocode:
    item: EnrichmentItem
    retry_count: int = 0
    next_retry_at: float = 0.0

    @property
    def target(self) -> EnrichmentTarget: return self.item.target


# ---------- apply / backfill outcomes -----------------------------------------

@dataclass(slots=True, frozen=True)
class ApplyResult:
    signature: Signature
    applied: bool                               # False when already processed
    pixels_created: tuple[int, ...] = ()        # new pixel_events ids
    shards_created: tuple[tuple[int, int], ...] = ()

@dataclass(slots=True)
class BackfillStats:
    label: str
    pages: int = 0
    signatures_seen: int = 0
    applied: int = 0
    skipped_seen: int = 0
    skipped_missing: int = 0
    failed: bool = False
    watermark: Signature | None = None


# ---------- read models --------------------------------------------------------

@dataclass(slots=True, frozen=True)
class PixelRow:
    id: int
    px: int
    py: int
    color: int
    main_wallet: str
    timestamp: int
    location_name: str | None

@dataclass(slots=True, frozen=True)
class ShardRow:
    shard_x: int
    shard_y: int
    main_wallet: str
    timestamp: int
    location_name: str | None

@dataclass(slots=True, frozen=True)
class UserRow:
    main_wallet: str
    pixels_placed_count: int
    shards_owned_count: int
    session_address: str | None

@dataclass(slots=True, frozen=True)
class GlobalStatsRow:
    total_pixels_placed: int
    total_shards_deployed: int

@dataclass(slots=True, frozen=True)
class SyncStateRow:
    label: str
    last_signature: Signature
    updated_at: datetime

@dataclass(slots=True, frozen=True)
class Place:
    name: str
    is_water_body: bool = False
