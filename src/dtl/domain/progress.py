"""
Per-block processing state machine.

A `BlockProgress` is built from the backend's `PersistenceState` at the start
of every `handle` call and threaded through each stage. It never persists
anything itself: it only tracks which writes the current call has issued so
the persister can decide what remains.

The two derived-output flags collapse into a two-valued lattice,
``NOT_STARTED -> LOGS_PROCESSED``. Either flag being set means the log pass
for the block already completed, which holds only because rollup transactions
and state roots are always written from the same pass over matched logs.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum

from .models import Block, PersistenceState


class LogsStage(Enum):
    NOT_STARTED = "not_started"
    LOGS_PROCESSED = "logs_processed"


@dataclass(slots=True)
class BlockProgress:
    block: Block
    state: PersistenceState
    block_written: bool = False
    processed_marked: bool = False

    @classmethod
    def start(cls, block: Block, state: PersistenceState) -> BlockProgress:
        return cls(block=block, state=state)

    @property
    def logs_stage(self) -> LogsStage:
        if self.state.rollup_transactions_persisted or self.state.state_roots_persisted:
            return LogsStage.LOGS_PROCESSED
        return LogsStage.NOT_STARTED

    @property
    def block_pending(self) -> bool:
        return not self.state.block_persisted and not self.block_written

    @property
    def logs_pending(self) -> bool:
        return self.logs_stage is LogsStage.NOT_STARTED

    def record_block_write(self, *, with_transactions: bool, mark_processed: bool) -> None:
        if not self.block_pending:
            raise RuntimeError(f"block {self.block.number} already written")
        self.block_written = True
        if with_transactions:
            self.state = self.state.merge(PersistenceState(block_persisted=True, transactions_persisted=True))
        else:
            self.state = self.state.merge(PersistenceState(block_persisted=True))
        if mark_processed:
            self.processed_marked = True

    def record_processed(self) -> None:
        self.processed_marked = True
