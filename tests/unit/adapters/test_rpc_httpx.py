"""Unit tests for the JSON-RPC ledger client using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from pixind.adapters.rpc_httpx import SolanaHttpRPC
from pixind.domain.errors import RPCError
from pixind.domain.value_types import ProgramId, Signature

RPC_URL = "https://rpc.test"


def _client(handler) -> SolanaHttpRPC:
    return SolanaHttpRPC(RPC_URL, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_list_signatures_sends_cursor_bounds() -> None:
    """before/until are forwarded and entries map to SignatureInfo."""
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": [
            {"signature": "S2", "err": None, "slot": 11, "blockTime": 1700},
            {"signature": "S1", "err": {"InstructionError": [0, "Custom"]}, "slot": 10},
        ]})

    client = _client(handler)
    try:
        page = await client.list_signatures(ProgramId("Prog"), limit=100,
                                            before=Signature("S3"), until=Signature("S0"))
    finally:
        await client.aclose()

    assert seen[0]["method"] == "getSignaturesForAddress"
    assert seen[0]["params"][0] == "Prog"
    assert seen[0]["params"][1] == {"limit": 100, "commitment": "confirmed", "before": "S3", "until": "S0"}
    assert [p.signature for p in page] == ["S2", "S1"]
    assert [p.failed for p in page] == [False, True]
    assert page[0].block_time == 1700


@pytest.mark.asyncio
async def test_fetch_transaction_maps_meta() -> None:
    """Log messages and the error flag come from transaction meta."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {
            "slot": 5, "meta": {"err": None, "logMessages": ["Program log: hi"]},
        }})

    client = _client(handler)
    try:
        tx = await client.fetch_transaction(Signature("S1"))
    finally:
        await client.aclose()

    assert tx.signature == "S1"
    assert not tx.failed
    assert tx.log_lines == ("Program log: hi",)


@pytest.mark.asyncio
async def test_fetch_transaction_not_available_returns_none() -> None:
    """A null result means the transaction is not retrievable yet."""
    client = _client(lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None}))
    try:
        assert await client.fetch_transaction(Signature("S1")) is None
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_rpc_error_object_raises() -> None:
    """JSON-RPC errors surface as RPCError."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1,
                                         "error": {"code": -32602, "message": "Invalid param"}})

    client = _client(handler)
    try:
        with pytest.raises(RPCError, match="Invalid param"):
            await client.list_signatures(ProgramId("Prog"), limit=10)
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_http_failure_propagates() -> None:
    """Non-2xx responses other than 429 are not swallowed."""
    client = _client(lambda request: httpx.Response(503))
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await client.fetch_transaction(Signature("S1"))
    finally:
        await client.aclose()
