from __future__ import annotations
import asyncio, httpx
from typing import Any
from ..constants import COMMITMENT
from ..domain.errors import RPCError
from ..domain.models import SignatureInfo, TransactionRecord
from ..domain.value_types import ProgramId, Signature
from ..ports.rpc import LedgerClient


class SolanaHttpRPC(LedgerClient):
    """Historical ledger access over Solana JSON-RPC."""

    def __init__(self, rpc_url: str, timeout_s: int = 20, max_conn: int = 16,
                 *, commitment: str = COMMITMENT, max_attempts: int = 3,
                 transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.max_attempts = max_attempts
        self.client = httpx.AsyncClient(
            http2=transport is None,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc":"2.0","id":1,"method":method,"params":params}
        # retry on 429 with simple backoff
        for attempt in range(self.max_attempts):
            r = await self.client.post(self.rpc_url, json=payload)
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                await asyncio.sleep(delay); continue
            r.raise_for_status()
            data = r.json()
            if "error" in data:
                err = data["error"]
                code = err.get("code") if isinstance(err, dict) else None
                msg = err.get("message") if isinstance(err, dict) else str(err)
                raise RPCError(f"{method} RPC error code={code} message={msg}")
            return data.get("result")
        raise RPCError(f"Retries exhausted for {method}")

    async def list_signatures(self, program_id: ProgramId, *, limit: int,
                              before: Signature | None = None,
                              until: Signature | None = None) -> list[SignatureInfo]:
        opts: dict[str, Any] = {"limit": limit, "commitment": self.commitment}
        if before: opts["before"] = before
        if until: opts["until"] = until
        res = await self._call("getSignaturesForAddress", [str(program_id), opts]) or []
        return [SignatureInfo(
                    signature=Signature(r["signature"]),
                    error=r.get("err"),
                    slot=r.get("slot"),
                    block_time=r.get("blockTime"),
                ) for r in res if r.get("signature")]

    async def fetch_transaction(self, signature: Signature) -> TransactionRecord | None:
        res = await self._call("getTransaction", [str(signature), {
            "encoding": "json",
            "commitment": self.commitment,
            "maxSupportedTransactionVersion": 0,
        }])
        if not res or not res.get("meta"):
            return None
        meta = res["meta"]
        return TransactionRecord(
            signature=signature,
            error=meta.get("err"),
            log_lines=tuple(meta.get("logMessages") or ()),
        )

    async def aclose(self) -> None:
        await self.client.aclose()
