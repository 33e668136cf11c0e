# dtl/ports/chain.py
from __future__ import annotations

from typing import Optional, Protocol, Sequence
from ..domain.models import Block, EventLog, Transaction
from ..domain.value_types import Address, Topic, TxHash


class ChainSource(Protocol):
    """Port defining the read-only contract against the source (L1) chain."""

    async def get_logs(
        self,
        address: Address,
        topics: Sequence[Topic],
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Return normalized, typed logs for [from_block, to_block] inclusive."""

    async def get_transaction(self, tx_hash: TxHash) -> Optional[Transaction]:
        """Return the transaction, or None if the chain source does not know it."""

    async def get_block(self, number: int) -> Optional[Block]:
        """Return the block at `number`, or None if it does not exist yet."""

    async def latest_block(self) -> int:
        """Return the latest block number as an integer."""
