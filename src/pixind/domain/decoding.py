from __future__ import annotations

import base64
import binascii
import hashlib
import struct
from typing import Iterable, Sequence

import base58

from .errors import DecodeError
from .models import DomainEvent, PixelChanged, ShardInitialized
from .value_types import EventKind, Wallet


def event_discriminator(name: EventKind) -> bytes:
    """Anchor event discriminator: first 8 bytes of sha256("event:<Name>")."""
    return hashlib.sha256(f"event:{name}".encode()).digest()[:8]

PIXEL_CHANGED_DISC     = event_discriminator("PixelChanged")
SHARD_INITIALIZED_DISC = event_discriminator("ShardInitialized")

_DATA_PREFIX = "Program data: "
_LOG_PREFIX  = "Program log: "

# ---------- borsh field slicing (fixed layouts, no IDL coder) ------------------

_PIXEL_HEAD = struct.Struct("<III")     # px, py, color
_SHARD_HEAD = struct.Struct("<HH")      # shard_x, shard_y
_I64        = struct.Struct("<q")
_PUBKEY_LEN = 32

def _pubkey(b: bytes, off: int) -> Wallet:
    return Wallet(base58.b58encode(b[off:off + _PUBKEY_LEN]).decode())

def _decode_pixel_changed(body: bytes) -> PixelChanged:
    # [u32 px, u32 py, u32 color, pubkey painter, pubkey main_wallet, i64 timestamp]
    need = _PIXEL_HEAD.size + 2 * _PUBKEY_LEN + _I64.size
    if len(body) < need:
        raise DecodeError(f"PixelChanged payload too short: {len(body)} < {need}")
    px, py, color = _PIXEL_HEAD.unpack_from(body, 0)
    o = _PIXEL_HEAD.size
    painter = _pubkey(body, o)
    main_wallet = _pubkey(body, o + _PUBKEY_LEN)
    (ts,) = _I64.unpack_from(body, o + 2 * _PUBKEY_LEN)
    return PixelChanged(px=px, py=py, color=color, painter=painter,
                        main_wallet=main_wallet, timestamp=ts)

def _decode_shard_initialized(body: bytes) -> ShardInitialized:
    # [u16 shard_x, u16 shard_y, pubkey creator, pubkey main_wallet, i64 timestamp]
    need = _SHARD_HEAD.size + 2 * _PUBKEY_LEN + _I64.size
    if len(body) < need:
        raise DecodeError(f"ShardInitialized payload too short: {len(body)} < {need}")
    sx, sy = _SHARD_HEAD.unpack_from(body, 0)
    o = _SHARD_HEAD.size
    creator = _pubkey(body, o)
    main_wallet = _pubkey(body, o + _PUBKEY_LEN)
    (ts,) = _I64.unpack_from(body, o + 2 * _PUBKEY_LEN)
    return ShardInitialized(shard_x=sx, shard_y=sy, creator=creator,
                            main_wallet=main_wallet, timestamp=ts)

_DECODERS = {
    PIXEL_CHANGED_DISC: _decode_pixel_changed,
    SHARD_INITIALIZED_DISC: _decode_shard_initialized,
}

def decode_event_payload(payload: bytes) -> DomainEvent | None:
    """Decode one raw event payload; None for an unknown discriminator."""
    decoder = _DECODERS.get(payload[:8])
    if decoder is None:
        return None
    return decoder(payload[8:])


# ---------- log walking --------------------------------------------------------

def _invoked_program(line: str) -> str | None:
    # "Program <id> invoke [n]"
    parts = line.split()
    if len(parts) == 4 and parts[0] == "Program" and parts[2] == "invoke":
        return parts[1]
    return None

def _is_exit(line: str) -> bool:
    # "Program <id> success" | "Program <id> failed: ..."
    parts = line.split(maxsplit=3)
    return len(parts) >= 3 and parts[0] == "Program" and (
        parts[2] == "success" or parts[2].startswith("failed"))

def _iter_program_payloads(lines: Sequence[str], program_id: str | None) -> Iterable[str]:
    """Yield base64 payloads logged while `program_id` is the executing program."""
    tracked = program_id is not None and any(_invoked_program(l) for l in lines)
    stack: list[str] = []
    for line in lines:
        if tracked:
            pid = _invoked_program(line)
            if pid is not None:
                stack.append(pid); continue
            if _is_exit(line):
                if stack: stack.pop()
                continue
            if not stack or stack[-1] != program_id:
                continue
        if line.startswith(_DATA_PREFIX):
            yield line[len(_DATA_PREFIX):].strip()
        elif line.startswith(_LOG_PREFIX):
            # pre-sol_log_data programs emitted events as base64 msg! lines
            yield line[len(_LOG_PREFIX):].strip()

def parse_logs(lines: Sequence[str], program_id: str | None = None) -> list[DomainEvent]:
    """
    Decode one transaction's log lines into typed events, in log order.
    Unrecognized or malformed entries are skipped, never fatal.
    """
    out: list[DomainEvent] = []
    for b64 in _iter_program_payloads(lines, program_id):
        try:
            payload = base64.b64decode(b64, validate=True)
        except (binascii.Error, ValueError):
            continue
        if len(payload) < 8:
            continue
        try:
            ev = decode_event_payload(payload)
        except DecodeError:
            # skip bad entry
            continue
        if ev is not None:
            out.append(ev)
    return out
