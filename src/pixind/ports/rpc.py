from __future__ import annotations

from typing import Awaitable, Callable, Protocol
from ..domain.models import LogNotification, SignatureInfo, TransactionRecord
from ..domain.value_types import ProgramId, Signature


class LedgerClient(Protocol):
    """Port for the historical half of the ledger RPC (signature listing + tx detail)."""

    async def list_signatures(
        self,
        program_id: ProgramId,
        *,
        limit: int,
        before: Signature | None = None,
        until: Signature | None = None,
    ) -> list[SignatureInfo]:
        """Return up to `limit` signatures older than `before` and newer than `until`, newest-first."""

    async def fetch_transaction(self, signature: Signature) -> TransactionRecord | None:
        """Return the transaction's status and log lines, or None if not (yet) available."""


NotificationHandler = Callable[[LogNotification], Awaitable[object]]


class LogStream(Protocol):
    """Port for push delivery of program log notifications."""

    async def subscribe_logs(self, program_id: ProgramId, callback: NotificationHandler) -> None:
        """Deliver every notification to `callback` until cancelled; reconnects on its own."""
