from __future__ import annotations

from ..domain.decoding import parse_logs
from ..domain.models import ApplyResult, LogNotification
from ..domain.value_types import ProgramId
from ..logging_config import get_logger
from ..ports.rpc import LogStream
from .projection import ProjectionApplier

log = get_logger(__name__)


class LiveSubscriber:
    """
    Push path for one source. Each notification is handled independently;
    duplicates and reordering are absorbed by the applier's dedup check.
    """

    def __init__(self, label: str, program_id: ProgramId, stream: LogStream, applier: ProjectionApplier) -> None:
        self.label = label
        self.program_id = program_id
        self.stream = stream
        self.applier = applier

    async def handle(self, n: LogNotification) -> ApplyResult | None:
        if n.error is not None:
            log.debug("live_tx_failed_onchain", label=self.label, signature=n.signature)
            return None
        events = parse_logs(n.log_lines, self.program_id)
        try:
            result = await self.applier.apply(n.signature, events)
        except Exception as e:
            # nothing was committed; redelivery or the next backfill retries it
            log.error("live_apply_failed", label=self.label, signature=n.signature,
                      error=f"{type(e).__name__}: {e}")
            return None
        if not result.applied:
            log.debug("live_duplicate", label=self.label, signature=n.signature)
        return result

    async def run(self) -> None:
        log.info("live_subscribe", label=self.label, program_id=self.program_id)
        await self.stream.subscribe_logs(self.program_id, self.handle)
