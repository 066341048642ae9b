"""Runtime configuration model for pixind.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os

from .constants import (
    BACKFILL_PAGE_DELAY_S,
    BACKFILL_PAGE_SIZE,
    DEFAULT_DB_URL,
    DEFAULT_SOURCES,
    GEOCODE_MIN_INTERVAL_S,
    GEOCODE_RETRY_BASE_S,
    GEOCODE_URL,
    SHUTDOWN_GRACE_S,
)
from .domain.errors import ConfigError


def ws_url_for(rpc_url: str) -> str:
    """Derive the pubsub endpoint from an http(s) RPC URL."""
    if rpc_url.startswith("https://"):
        return "wss://" + rpc_url[len("https://"):]
    if rpc_url.startswith("http://"):
        return "ws://" + rpc_url[len("http://"):]
    return rpc_url


@dataclass(frozen=True)
class SourceConfig:
    """One event source mirroring the program.

    Attributes:
        label: Stable identifier; keys the sync_state watermark.
        rpc_url: JSON-RPC endpoint used for backfill.
        ws_url: Pubsub endpoint used for live log subscription.
    """

    label: str
    rpc_url: str
    ws_url: str


@dataclass(frozen=True)
class IndexerConfig:
    """Validated runtime configuration."""

    program_id: str | None
    db_url: str
    sources: tuple[SourceConfig, ...]
    backfill_page_size: int = BACKFILL_PAGE_SIZE
    backfill_delay_s: float = BACKFILL_PAGE_DELAY_S
    geocode_url: str = GEOCODE_URL
    geocode_min_interval_s: float = GEOCODE_MIN_INTERVAL_S
    geocode_retry_base_s: float = GEOCODE_RETRY_BASE_S
    shutdown_grace_s: float = SHUTDOWN_GRACE_S
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """Build config from process environment variables.

        Raises:
            ConfigError: If a numeric value cannot be parsed.
        """
        (base_label, base_default), (er_label, er_default) = DEFAULT_SOURCES
        base_rpc = os.getenv("PIXIND_BASE_RPC", base_default)
        er_rpc = os.getenv("PIXIND_ER_RPC", er_default)
        sources = (
            SourceConfig(base_label, base_rpc, os.getenv("PIXIND_BASE_WS", ws_url_for(base_rpc))),
            SourceConfig(er_label, er_rpc, os.getenv("PIXIND_ER_WS", ws_url_for(er_rpc))),
        )
        return cls(
            program_id=os.getenv("PIXIND_PROGRAM_ID") or None,
            db_url=os.getenv("PIXIND_DB_URL", DEFAULT_DB_URL),
            sources=sources,
            backfill_page_size=_parse_int("PIXIND_BACKFILL_PAGE_SIZE", BACKFILL_PAGE_SIZE),
            backfill_delay_s=_parse_float("PIXIND_BACKFILL_DELAY_S", BACKFILL_PAGE_DELAY_S),
            geocode_url=os.getenv("PIXIND_GEOCODE_URL", GEOCODE_URL),
            geocode_min_interval_s=_parse_float("PIXIND_GEOCODE_MIN_INTERVAL_S", GEOCODE_MIN_INTERVAL_S),
            geocode_retry_base_s=_parse_float("PIXIND_GEOCODE_RETRY_BASE_S", GEOCODE_RETRY_BASE_S),
            shutdown_grace_s=_parse_float("PIXIND_SHUTDOWN_GRACE_S", SHUTDOWN_GRACE_S),
            log_level=os.getenv("PIXIND_LOG_LEVEL", "INFO"),
            log_json=os.getenv("PIXIND_LOG_JSON", "").lower() in ("1", "true", "yes"),
        )

    def require_program_id(self) -> str:
        if not self.program_id:
            raise ConfigError(
                "Program id is not configured. "
                "Set PIXIND_PROGRAM_ID or pass --program-id."
            )
        return self.program_id


def _parse_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        value = int(raw_value)
    except ValueError as error:
        raise ConfigError(f"Invalid {name} value: expected integer, got '{raw_value}'.") from error
    if value <= 0:
        raise ConfigError(f"Invalid {name} value: must be positive, got {value}.")
    return value


def _parse_float(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        value = float(raw_value)
    except ValueError as error:
        raise ConfigError(f"Invalid {name} value: expected number, got '{raw_value}'.") from error
    if value < 0:
        raise ConfigError(f"Invalid {name} value: must be >= 0, got {value}.")
    return value
