from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional
from .value_types import Address, OutputKind, Stage, Topic, TxHash

@dataclass(slots=True, frozen=True)
class Block:
    number: int
    hash: str
    parent_hash: str
    timestamp: int

@dataclass(slots=True, frozen=True)
class Transaction:
    hash: TxHash
    block_number: int
    block_hash: str
    transaction_index: int
    from_address: Address
    to_address: Optional[Address]     # None for contract creation
    input: str                        # hex with 0x (or "0x")
    nonce: int = 0
    value: int = 0
    gas_limit: int = 0
    gas_price: int = 0

@dataclass(slots=True, frozen=True)
class EventLog:
    address: Address
    topics: tuple[Topic, ...]         # all topics, lowercased with 0x
    data_hex: str
    block_number: int
    block_hash: str
    tx_hash: TxHash
    log_index: int

    @property
    def key(self) -> tuple[str, int]:
        return (self.tx_hash, self.log_index)


class QueueOrigin(IntEnum):
    SAFETY_QUEUE = 0
    L1_TO_L2_QUEUE = 1
    SEQUENCER = 2


@dataclass(slots=True, frozen=True)
class RollupTransaction:
    index_within_submission: int
    target: Address
    calldata: str
    l1_message_sender: Address
    l1_timestamp: int
    l1_block_number: int
    l1_tx_hash: TxHash
    l1_tx_index: int
    l1_tx_log_index: int
    nonce: int
    queue_origin: QueueOrigin

@dataclass(slots=True, frozen=True)
class PersistenceState:
    """Completion flags for one L1 block. Flags only ever go from False to True."""
    block_persisted: bool = False
    transactions_persisted: bool = False
    rollup_transactions_persisted: bool = False
    state_roots_persisted: bool = False

    def merge(self, other: PersistenceState) -> PersistenceState:
        return PersistenceState(
            block_persisted=self.block_persisted or other.block_persisted,
            transactions_persisted=self.transactions_persisted or other.transactions_persisted,
            rollup_transactions_persisted=self.rollup_transactions_persisted or other.rollup_transactions_persisted,
            state_roots_persisted=self.state_roots_persisted or other.state_roots_persisted,
        )

@dataclass(slots=True, frozen=True)
class ProgressRec:
    block_number: int
    block_hash: str
    stage: Stage
    tx_hashes: tuple[str, ...] = field(default_factory=tuple)
    outputs: tuple[OutputKind, ...] = field(default_factory=tuple)   # derived outputs committed with "processed"
    records: int = 0
    updated_at: float = 0.0
