# dtl/ports/storage.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import Block, PersistenceState, RollupTransaction, Transaction


class DataWriter(Protocol):
    """The part of the storage backend handed to log handlers."""

    async def insert_rollup_transactions(
        self, l1_tx_hash: str, records: Sequence[RollupTransaction]
    ) -> int:
        """Persist rollup transactions derived from an L1 transaction; return how many."""

    async def insert_state_roots(self, l1_tx_hash: str, roots: Sequence[str]) -> int:
        """Persist state roots derived from an L1 transaction; return how many."""


class DataService(DataWriter, Protocol):
    """
    Port for durable storage of L1 chain data.

    Every write must be idempotent for identical input. Completion flags are a
    side effect of the writes; callers never set them directly. The two
    derived-output flags become visible together, when `mark_block_processed`
    commits the outputs written for the block.
    """

    async def get_persistence_state(self, block_number: int) -> PersistenceState:
        """Return the flags for `block_number` (all False if nothing is stored)."""

    async def insert_block(self, block: Block, mark_processed: bool) -> None:
        """Persist the block alone, optionally marking it fully processed."""

    async def insert_block_with_transactions(
        self,
        block: Block,
        transactions: Sequence[Transaction],
        mark_processed: bool,
    ) -> None:
        """Persist the block and its relevant transactions, in the given order."""

    async def mark_block_processed(self, block_hash: str) -> None:
        """Record that every stage of the block is complete and commit its derived outputs."""
