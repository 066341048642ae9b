"""Unit tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from pixind.config import IndexerConfig, ws_url_for
from pixind.constants import BACKFILL_PAGE_SIZE, DEFAULT_SOURCES
from pixind.domain.errors import ConfigError

_ENV = (
    "PIXIND_PROGRAM_ID", "PIXIND_DB_URL", "PIXIND_BASE_RPC", "PIXIND_ER_RPC",
    "PIXIND_BASE_WS", "PIXIND_ER_WS", "PIXIND_BACKFILL_PAGE_SIZE", "PIXIND_BACKFILL_DELAY_S",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_defaults_cover_both_sources() -> None:
    """With no environment the two default sources are configured."""
    config = IndexerConfig.from_env()

    assert [s.label for s in config.sources] == [label for label, _ in DEFAULT_SOURCES]
    assert config.backfill_page_size == BACKFILL_PAGE_SIZE
    assert config.program_id is None


def test_ws_url_is_derived_from_rpc_url(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pubsub endpoints follow the RPC scheme unless overridden."""
    monkeypatch.setenv("PIXIND_BASE_RPC", "http://localhost:8899")
    monkeypatch.setenv("PIXIND_ER_WS", "ws://localhost:9900")

    base, er = IndexerConfig.from_env().sources

    assert base.ws_url == "ws://localhost:8899"
    assert er.ws_url == "ws://localhost:9900"
    assert ws_url_for("https://api.devnet.solana.com") == "wss://api.devnet.solana.com"


@pytest.mark.parametrize("raw", ["abc", "0", "-3"])
def test_invalid_page_size_is_rejected(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    """Non-numeric or non-positive values raise ConfigError."""
    monkeypatch.setenv("PIXIND_BACKFILL_PAGE_SIZE", raw)

    with pytest.raises(ConfigError):
        IndexerConfig.from_env()


def test_program_id_is_required_to_run(monkeypatch: pytest.MonkeyPatch) -> None:
    """require_program_id fails loudly when nothing is configured."""
    with pytest.raises(ConfigError):
        IndexerConfig.from_env().require_program_id()

    monkeypatch.setenv("PIXIND_PROGRAM_ID", "Prog111")
    assert IndexerConfig.from_env().require_program_id() == "Prog111"
