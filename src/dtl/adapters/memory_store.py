from __future__ import annotations
from typing import Sequence

from ..domain.errors import WriteError
from ..domain.models import Block, PersistenceState, RollupTransaction, Transaction
from ..domain.value_types import ROLLUP_TRANSACTIONS, STATE_ROOTS, OutputKind
from ..ports.storage import DataService


class InMemoryDataService(DataService):
    """
    Dictionary-backed storage. Flags are derived from what is stored, so they
    can only ever become true. Writes keyed the same way overwrite in place.
    Derived outputs count as persisted once `mark_block_processed` commits them.
    """
    def __init__(self) -> None:
        self.blocks: dict[int, Block] = {}
        self.block_transactions: dict[str, list[Transaction]] = {}
        self.rollup_transactions: dict[str, list[RollupTransaction]] = {}
        self.state_roots: dict[str, list[str]] = {}
        self.processed_blocks: set[str] = set()
        self._tx_block: dict[str, int] = {}
        self._rollup_blocks: set[int] = set()
        self._root_blocks: set[int] = set()
        self._uncommitted: dict[int, set[OutputKind]] = {}

    async def get_persistence_state(self, block_number: int) -> PersistenceState:
        block = self.blocks.get(block_number)
        return PersistenceState(
            block_persisted=block is not None,
            transactions_persisted=block is not None and block.hash in self.block_transactions,
            rollup_transactions_persisted=block_number in self._rollup_blocks,
            state_roots_persisted=block_number in self._root_blocks,
        )

    async def insert_block(self, block: Block, mark_processed: bool) -> None:
        self.blocks[block.number] = block
        if mark_processed:
            self.processed_blocks.add(block.hash)

    async def insert_block_with_transactions(
        self, block: Block, transactions: Sequence[Transaction], mark_processed: bool
    ) -> None:
        self.blocks[block.number] = block
        self.block_transactions[block.hash] = list(transactions)
        for tx in transactions:
            self._tx_block[tx.hash] = block.number
        if mark_processed:
            self.processed_blocks.add(block.hash)

    def _block_of(self, l1_tx_hash: str) -> int:
        try:
            return self._tx_block[l1_tx_hash]
        except KeyError:
            raise WriteError(f"unknown L1 transaction {l1_tx_hash}") from None

    async def insert_rollup_transactions(self, l1_tx_hash: str, records: Sequence[RollupTransaction]) -> int:
        self._uncommitted.setdefault(self._block_of(l1_tx_hash), set()).add(ROLLUP_TRANSACTIONS)
        self.rollup_transactions[l1_tx_hash] = list(records)
        return len(records)

    async def insert_state_roots(self, l1_tx_hash: str, roots: Sequence[str]) -> int:
        self._uncommitted.setdefault(self._block_of(l1_tx_hash), set()).add(STATE_ROOTS)
        self.state_roots[l1_tx_hash] = list(roots)
        return len(roots)

    async def mark_block_processed(self, block_hash: str) -> None:
        number = next((n for n, b in self.blocks.items() if b.hash == block_hash), None)
        if number is None:
            raise WriteError(f"cannot mark unknown block {block_hash} processed")
        outputs = self._uncommitted.pop(number, set())
        if ROLLUP_TRANSACTIONS in outputs:
            self._rollup_blocks.add(number)
        if STATE_ROOTS in outputs:
            self._root_blocks.add(number)
        self.processed_blocks.add(block_hash)
