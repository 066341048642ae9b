from __future__ import annotations

import asyncio
import json
from typing import Any

import websockets

from ..constants import COMMITMENT
from ..domain.errors import RPCError
from ..domain.models import LogNotification
from ..domain.value_types import ProgramId, Signature
from ..logging_config import get_logger
from ..ports.rpc import LogStream, NotificationHandler

log = get_logger(__name__)


def parse_notification(raw: str | bytes) -> LogNotification | None:
    """Map one pubsub frame to a LogNotification; None for acks and other methods."""
    msg: dict[str, Any] = json.loads(raw)
    if "error" in msg:
        err = msg["error"]
        raise RPCError(f"logsSubscribe error: {err.get('message') if isinstance(err, dict) else err}")
    if msg.get("method") != "logsNotification":
        return None
    result = msg.get("params", {}).get("result", {})
    value = result.get("value") or {}
    sig = value.get("signature")
    if not sig:
        return None
    return LogNotification(
        signature=Signature(sig),
        error=value.get("err"),
        log_lines=tuple(value.get("logs") or ()),
        slot=(result.get("context") or {}).get("slot"),
    )


class WebsocketLogStream(LogStream):
    """
    logsSubscribe over a websocket with automatic reconnect.
    Every notification is handled in its own task; the handler never blocks
    frame reading and a failing handler never kills the stream.
    """

    def __init__(self, ws_url: str, *, commitment: str = COMMITMENT, max_backoff_s: float = 60.0) -> None:
        self.ws_url = ws_url
        self.commitment = commitment
        self.max_backoff_s = max_backoff_s
        self._tasks: set[asyncio.Task] = set()

    async def subscribe_logs(self, program_id: ProgramId, callback: NotificationHandler) -> None:
        retry_count = 0
        while True:
            try:
                async with websockets.connect(
                    self.ws_url,
                    ping_interval=30,
                    ping_timeout=60,
                    close_timeout=10,
                ) as ws:
                    await ws.send(json.dumps({
                        "jsonrpc": "2.0", "id": 1, "method": "logsSubscribe",
                        "params": [{"mentions": [str(program_id)]}, {"commitment": self.commitment}],
                    }))
                    retry_count = 0  # reset on successful connect
                    log.info("ws_connected", url=self.ws_url, program_id=program_id)
                    async for raw in ws:
                        n = parse_notification(raw)
                        if n is not None:
                            self._dispatch(callback, n)
                    log.warning("ws_closed", url=self.ws_url)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                retry_count += 1
                delay = min(2 ** retry_count, self.max_backoff_s)
                log.warning("ws_error", url=self.ws_url, error=f"{type(e).__name__}: {e}", retry_in=delay)
                await asyncio.sleep(delay)

    def _dispatch(self, callback: NotificationHandler, n: LogNotification) -> None:
        task = asyncio.create_task(self._run_handler(callback, n))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_handler(self, callback: NotificationHandler, n: LogNotification) -> None:
        try:
            await callback(n)
        except Exception as e:
            log.error("notification_handler_failed", signature=n.signature, error=f"{type(e).__name__}: {e}")
