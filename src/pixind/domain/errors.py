"""pixind exception hierarchy.

Each layer raises a specific error type; transport errors from the
underlying libraries propagate unchanged to the loop that owns them.
"""

from __future__ import annotations


class IndexerError(Exception):
    """Base exception for all pixind failures."""


class ConfigError(IndexerError):
    """Raised for invalid runtime configuration."""


class RPCError(IndexerError):
    """Raised when the ledger RPC answers with an error object or keeps throttling."""


class DecodeError(IndexerError):
    """Raised for a malformed event payload (never escapes parse_logs)."""


class GeocodeError(IndexerError):
    """Raised when a place-name lookup fails."""


class StoreError(IndexerError):
    """Raised for projection store failures that are not plain database errors."""
