from __future__ import annotations
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, lowercase
Topic   = NewType("Topic", str)     # 66-char 0x-hash, lowercase
TxHash  = NewType("TxHash", str)    # 66-char 0x-hash, lowercase
OutputKind = Literal["rollup_transactions", "state_roots"]
Stage = Literal["block", "transactions", "processed"]

ROLLUP_TRANSACTIONS: OutputKind = "rollup_transactions"
STATE_ROOTS: OutputKind = "state_roots"
ZERO_ADDRESS = Address("0x" + "0" * 40)
