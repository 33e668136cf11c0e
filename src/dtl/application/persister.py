from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Iterable, Optional, Sequence, TypeVar

import structlog

from ..domain.errors import UndeclaredOutputError, UnknownTransactionError
from ..domain.matching import HandlerBinding, HandlerRegistry
from ..domain.models import Block, EventLog, RollupTransaction, Transaction
from ..domain.progress import BlockProgress
from ..domain.value_types import ROLLUP_TRANSACTIONS, STATE_ROOTS, OutputKind
from ..ports.chain import ChainSource
from ..ports.storage import DataService, DataWriter

logger = structlog.get_logger()
T = TypeVar("T")


async def _gather_or_cancel(aws: Iterable[Awaitable[T]]) -> list[T]:
    """asyncio.gather, except that a failure cancels the fetches still in flight."""
    tasks = [asyncio.create_task(a) for a in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass(slots=True, frozen=True)
class _PendingWrite:
    kind: OutputKind
    l1_tx_hash: str
    payload: tuple


class BufferedDataWriter:
    """
    Collects the derived writes issued by handlers for one block.

    Nothing reaches the backend until `flush`, which the persister calls only
    after every matched log was handled. A failing handler therefore leaves
    both derived-output flags exactly as they were.
    """

    def __init__(self) -> None:
        self._pending: list[_PendingWrite] = []

    def scoped(self, binding: HandlerBinding) -> DataWriter:
        return _ScopedWriter(self, binding)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def flush(self, target: DataWriter) -> dict[OutputKind, int]:
        written: dict[OutputKind, int] = {}
        for w in self._pending:
            if w.kind == ROLLUP_TRANSACTIONS:
                n = await target.insert_rollup_transactions(w.l1_tx_hash, list(w.payload))
            else:
                n = await target.insert_state_roots(w.l1_tx_hash, list(w.payload))
            written[w.kind] = written.get(w.kind, 0) + n
        self._pending.clear()
        return written


class _ScopedWriter:
    def __init__(self, buffer: BufferedDataWriter, binding: HandlerBinding) -> None:
        self._buffer = buffer
        self._binding = binding

    def _append(self, kind: OutputKind, l1_tx_hash: str, payload: Sequence) -> int:
        if kind not in self._binding.produces:
            raise UndeclaredOutputError(self._binding.topic, kind)
        self._buffer._pending.append(_PendingWrite(kind, l1_tx_hash, tuple(payload)))
        return len(payload)

    async def insert_rollup_transactions(self, l1_tx_hash: str, records: Sequence[RollupTransaction]) -> int:
        return self._append(ROLLUP_TRANSACTIONS, l1_tx_hash, records)

    async def insert_state_roots(self, l1_tx_hash: str, roots: Sequence[str]) -> int:
        return self._append(STATE_ROOTS, l1_tx_hash, roots)


class ChainDataPersister:
    """
    Persists one L1 block at a time: the block, the transactions behind any
    relevant logs, and whatever the handlers derive from those logs.

    `handle` is idempotent and resumes from the stages the backend reports as
    done. It never retries; callers re-invoke it with the same block.
    """

    def __init__(
        self,
        data_service: DataService,
        chain: ChainSource,
        registry: HandlerRegistry,
        earliest_block: Optional[int] = None,
    ) -> None:
        self.data_service = data_service
        self.chain = chain
        self.registry = registry
        self.earliest_block = earliest_block

    @classmethod
    async def create(
        cls,
        data_service: DataService,
        chain: ChainSource,
        bindings: Sequence[HandlerBinding],
        earliest_block: Optional[int] = None,
    ) -> ChainDataPersister:
        return cls(data_service, chain, HandlerRegistry(bindings), earliest_block)

    async def handle(self, block: Block) -> None:
        if self.earliest_block is not None and block.number < self.earliest_block:
            return
        log = logger.bind(block_number=block.number, block_hash=block.hash)
        try:
            await self._handle(block, log)
        except Exception as e:
            log.error("block_failed", error=f"{type(e).__name__}: {e}")
            raise

    async def _handle(self, block: Block, log) -> None:
        state = await self.data_service.get_persistence_state(block.number)
        progress = BlockProgress.start(block, state)

        if self.registry.is_empty:
            if progress.block_pending:
                await self.data_service.insert_block(block, mark_processed=True)
                progress.record_block_write(with_transactions=False, mark_processed=True)
                log.debug("block_persisted", transactions=0)
            return

        if not progress.logs_pending:
            if progress.block_pending:
                # derived outputs exist for a block the backend never stored
                log.warning("block_missing_after_logs_processed")
                await self.data_service.insert_block(block, mark_processed=True)
                progress.record_block_write(with_transactions=False, mark_processed=True)
            return

        matched = await self._matched_logs(block)
        transactions = await self._resolve_transactions(matched)

        if progress.block_pending:
            txs = list(transactions.values())
            if txs:
                await self.data_service.insert_block_with_transactions(block, txs, mark_processed=False)
                progress.record_block_write(with_transactions=True, mark_processed=False)
            else:
                await self.data_service.insert_block(block, mark_processed=True)
                progress.record_block_write(with_transactions=False, mark_processed=True)
            log.debug("block_persisted", transactions=len(txs))

        buffer = BufferedDataWriter()
        for ev, binding in matched:
            await binding.handle(buffer.scoped(binding), ev, transactions[ev.tx_hash])
        written = await buffer.flush(self.data_service)

        if not progress.processed_marked:
            await self.data_service.mark_block_processed(block.hash)
            progress.record_processed()
        log.info("block_processed", matched_logs=len(matched), transactions=len(transactions),
                 rollup_transactions=written.get(ROLLUP_TRANSACTIONS, 0),
                 state_roots=written.get(STATE_ROOTS, 0))

    async def _matched_logs(self, block: Block) -> list[tuple[EventLog, HandlerBinding]]:
        """(log, binding) pairs in binding order, then log order. Each log once per binding."""
        bindings = self.registry.bindings
        results = await _gather_or_cancel(
            self.chain.get_logs(b.contract_address, [b.topic], block.number, block.number)
            for b in bindings
        )
        seen: set[tuple[str, int]] = set()
        out: list[tuple[EventLog, HandlerBinding]] = []
        for logs in results:
            for ev in logs:
                if ev.key in seen:
                    continue
                seen.add(ev.key)
                out.extend((ev, b) for b in self.registry.matching(ev))
        return out

    async def _resolve_transactions(
        self, matched: list[tuple[EventLog, HandlerBinding]]
    ) -> dict[str, Transaction]:
        order = list(dict.fromkeys(ev.tx_hash for ev, _ in matched))
        fetched = await _gather_or_cancel(self.chain.get_transaction(h) for h in order)
        out: dict[str, Transaction] = {}
        for h, tx in zip(order, fetched):
            if tx is None:
                raise UnknownTransactionError(h)
            out[h] = tx
        return out
