"""Constants shared across pixind modules.

Canvas geometry must match the on-chain program.
"""

from __future__ import annotations

CANVAS_RES = 524_288          # 2**19 global pixels per axis
SHARD_DIMENSION = 128         # 128x128 pixels per shard

DEFAULT_DB_URL = "sqlite:///pixind.db"
DEFAULT_SOURCES = (
    ("Base Layer", "https://api.devnet.solana.com"),
    ("Ephemeral Rollups", "https://devnet.magicblock.app"),
)
COMMITMENT = "confirmed"

BACKFILL_PAGE_SIZE = 100
BACKFILL_PAGE_DELAY_S = 2.0

GEOCODE_URL = "https://nominatim.openstreetmap.org/reverse"
GEOCODE_USER_AGENT = "pixind/0.1 (pixel canvas indexer)"
GEOCODE_MIN_INTERVAL_S = 1.1
GEOCODE_RETRY_BASE_S = 30.0
GEOCODE_MAX_ATTEMPTS = 5
GEOCODE_RETRY_TICK_S = 10.0
REPAIR_SCAN_INTERVAL_S = 60.0
REPAIR_SCAN_INITIAL_DELAY_S = 5.0
REPAIR_SCAN_BATCH = 10
FALLBACK_LOCATION = "Secret Location"

LAND_GRID_PRECISION = 0.1     # ~11km at the equator
OCEAN_GRID_PRECISION = 1.0    # ~111km at the equator

SHUTDOWN_GRACE_S = 10.0
