import hashlib
from typing import Optional, Sequence

import pytest
import structlog

from dtl.domain.models import (
    Block,
    EventLog,
    PersistenceState,
    QueueOrigin,
    RollupTransaction,
    Transaction,
)
from dtl.domain.decoding import APPEND_SEQUENCER_BATCH_SELECTOR, APPEND_STATE_BATCH_SELECTOR
from dtl.domain.errors import WriteError
from dtl.domain.value_types import ZERO_ADDRESS, Address, Topic, TxHash


def h(seed: str) -> str:
    """Deterministic 32-byte 0x hash for test fixtures."""
    return "0x" + hashlib.sha256(seed.encode()).hexdigest()


TOPIC = Topic(h("topic"))
TOPIC_2 = Topic(h("topic 2"))
CONTRACT = Address("0xdeadbeefdeadbeefdeadbeefdeadbeefdeadbeef")


def make_block(seed: str = "block", number: int = 0, timestamp: int = 1) -> Block:
    return Block(number=number, hash=h(seed), parent_hash=h("parent " + seed), timestamp=timestamp)


def make_tx(seed: str = "tx", block_number: int = 0, block_seed: str = "block") -> Transaction:
    return Transaction(
        hash=TxHash(h(seed)),
        block_number=block_number,
        block_hash=h(block_seed),
        transaction_index=1,
        from_address=ZERO_ADDRESS,
        to_address=CONTRACT,
        input="0xdeadb33f",
        nonce=1,
        gas_limit=1_000_000,
    )


def make_log(
    topics: Sequence[str],
    address: str,
    tx_hash: str = h("tx"),
    log_index: int = 0,
    block_number: int = 0,
) -> EventLog:
    return EventLog(
        address=Address(address),
        topics=tuple(Topic(t) for t in topics),
        data_hex="0x",
        block_number=block_number,
        block_hash=h("block"),
        tx_hash=TxHash(tx_hash),
        log_index=log_index,
    )


def make_rollup_tx(l1_tx_hash: str = h("tx")) -> RollupTransaction:
    return RollupTransaction(
        index_within_submission=0,
        target=ZERO_ADDRESS,
        calldata="0xdeadbeef",
        l1_message_sender=ZERO_ADDRESS,
        l1_timestamp=0,
        l1_block_number=0,
        l1_tx_hash=TxHash(l1_tx_hash),
        l1_tx_index=0,
        l1_tx_log_index=0,
        nonce=0,
        queue_origin=QueueOrigin.SAFETY_QUEUE,
    )


class RecordingDataService:
    """Data service double: state is set by the test, every call is recorded."""

    def __init__(self) -> None:
        self.persistence_state = PersistenceState()
        self.calls: list[tuple] = []
        self.blocks: list[Block] = []
        self.processed_blocks: set[str] = set()
        self.block_transactions: dict[str, list[Transaction]] = {}
        self.rollup_transactions: dict[str, list[RollupTransaction]] = {}
        self.state_roots: dict[str, list[str]] = {}
        self.fail_on: Optional[str] = None

    @property
    def writes(self) -> list[tuple]:
        return [c for c in self.calls if c[0] != "get_persistence_state"]

    def calls_to(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    def _check(self, method: str) -> None:
        if self.fail_on == method:
            raise WriteError(f"{method} rejected")

    async def get_persistence_state(self, block_number: int) -> PersistenceState:
        self.calls.append(("get_persistence_state", block_number))
        return self.persistence_state

    async def insert_block(self, block: Block, mark_processed: bool) -> None:
        self.calls.append(("insert_block", block, mark_processed))
        self._check("insert_block")
        self.blocks.append(block)
        if mark_processed:
            self.processed_blocks.add(block.hash)

    async def insert_block_with_transactions(self, block, transactions, mark_processed) -> None:
        self.calls.append(("insert_block_with_transactions", block, list(transactions), mark_processed))
        self._check("insert_block_with_transactions")
        self.blocks.append(block)
        self.block_transactions[block.hash] = list(transactions)
        if mark_processed:
            self.processed_blocks.add(block.hash)

    async def insert_rollup_transactions(self, l1_tx_hash, records) -> int:
        self.calls.append(("insert_rollup_transactions", l1_tx_hash, list(records)))
        self._check("insert_rollup_transactions")
        self.rollup_transactions[l1_tx_hash] = list(records)
        return len(records)

    async def insert_state_roots(self, l1_tx_hash, roots) -> int:
        self.calls.append(("insert_state_roots", l1_tx_hash, list(roots)))
        self._check("insert_state_roots")
        self.state_roots[l1_tx_hash] = list(roots)
        return len(roots)

    async def mark_block_processed(self, block_hash: str) -> None:
        self.calls.append(("mark_block_processed", block_hash))
        self._check("mark_block_processed")
        self.processed_blocks.add(block_hash)


class FakeChainSource:
    """Returns logs keyed by the first requested topic, like a filtered eth_getLogs."""

    def __init__(self) -> None:
        self.topic_to_logs: dict[str, list[EventLog]] = {}
        self.txs: dict[str, Transaction] = {}
        self.blocks: dict[int, Block] = {}
        self.calls: list[tuple] = []
        self.latest = 0
        self.fail_get_logs: Optional[Exception] = None

    async def get_logs(self, address, topics, from_block, to_block) -> list[EventLog]:
        self.calls.append(("get_logs", address, tuple(topics), from_block, to_block))
        if self.fail_get_logs is not None:
            raise self.fail_get_logs
        return list(self.topic_to_logs.get(topics[0], []))

    async def get_transaction(self, tx_hash) -> Optional[Transaction]:
        self.calls.append(("get_transaction", tx_hash))
        return self.txs.get(tx_hash)

    async def get_block(self, number: int) -> Optional[Block]:
        self.calls.append(("get_block", number))
        return self.blocks.get(number)

    async def latest_block(self) -> int:
        return self.latest


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def data_service() -> RecordingDataService:
    return RecordingDataService()


@pytest.fixture
def chain() -> FakeChainSource:
    return FakeChainSource()


# ---- ABI calldata builders -----------------------------------------------------

def word(n: int) -> bytes:
    return n.to_bytes(32, "big")


def pad(b: bytes) -> bytes:
    return b + b"\x00" * (-len(b) % 32)


def sequencer_calldata(elements, timestamp=1_600_000_000, block_number=10, starts_at=5) -> bytes:
    offsets, body, cur = b"", b"", len(elements) * 32
    for el in elements:
        offsets += word(cur)
        chunk = word(len(el)) + pad(el)
        body += chunk
        cur += len(chunk)
    head = word(4 * 32) + word(timestamp) + word(block_number) + word(starts_at)
    return APPEND_SEQUENCER_BATCH_SELECTOR + head + word(len(elements)) + offsets + body


def state_calldata(roots, starts_at=3) -> bytes:
    body = b"".join(bytes.fromhex(r[2:]) for r in roots)
    return APPEND_STATE_BATCH_SELECTOR + word(2 * 32) + word(starts_at) + word(len(roots)) + body
