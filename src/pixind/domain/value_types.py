from __future__ import annotations
from typing import NewType, Literal

Signature = NewType("Signature", str)   # base58 transaction signature
Wallet    = NewType("Wallet", str)      # base58 pubkey
ProgramId = NewType("ProgramId", str)   # base58 pubkey
SourceLabel = NewType("SourceLabel", str)
EventKind = Literal["PixelChanged", "ShardInitialized"]
