from __future__ import annotations
import os, time, asyncio, pyarrow as pa, pyarrow.parquet as pq
from typing import Optional, Sequence

from ..domain.errors import WriteError
from ..domain.models import Block, PersistenceState, ProgressRec, QueueOrigin, RollupTransaction, Transaction
from ..domain.value_types import ROLLUP_TRANSACTIONS, STATE_ROOTS, Address, OutputKind, TxHash
from ..ports.storage import DataService
from .progress_jsonl import JSONLProgressLog

BLOCK_SCHEMA = pa.schema([
    pa.field("number",      pa.int64()),
    pa.field("hash",        pa.string()),
    pa.field("parent_hash", pa.string()),
    pa.field("timestamp",   pa.int64()),
])

TX_SCHEMA = pa.schema([
    pa.field("hash",              pa.string()),
    pa.field("block_number",      pa.int64()),
    pa.field("block_hash",        pa.string()),
    pa.field("transaction_index", pa.int32()),
    pa.field("from_address",      pa.string()),
    pa.field("to_address",        pa.string()),
    pa.field("input",             pa.large_string()),
    pa.field("nonce",             pa.int64()),
    pa.field("value",             pa.string()),      # big ints as strings
    pa.field("gas_limit",         pa.string()),
    pa.field("gas_price",         pa.string()),
])

ROLLUP_TX_SCHEMA = pa.schema([
    pa.field("index_within_submission", pa.int64()),
    pa.field("target",                  pa.string()),
    pa.field("calldata",                pa.large_string()),
    pa.field("l1_message_sender",       pa.string()),
    pa.field("l1_timestamp",            pa.int64()),
    pa.field("l1_block_number",         pa.int64()),
    pa.field("l1_tx_hash",              pa.string()),
    pa.field("l1_tx_index",             pa.int32()),
    pa.field("l1_tx_log_index",         pa.int32()),
    pa.field("nonce",                   pa.int64()),
    pa.field("queue_origin",            pa.int8()),
])

STATE_ROOT_SCHEMA = pa.schema([
    pa.field("l1_tx_hash", pa.string()),
    pa.field("index",      pa.int32()),
    pa.field("root",       pa.string()),
])


def _blocks_table(block: Block) -> pa.Table:
    return pa.Table.from_pydict({
        "number": [block.number], "hash": [block.hash],
        "parent_hash": [block.parent_hash], "timestamp": [block.timestamp],
    }, schema=BLOCK_SCHEMA)

def _txs_table(txs: Sequence[Transaction]) -> pa.Table:
    return pa.Table.from_pydict({
        "hash":              [t.hash for t in txs],
        "block_number":      [t.block_number for t in txs],
        "block_hash":        [t.block_hash for t in txs],
        "transaction_index": [t.transaction_index for t in txs],
        "from_address":      [t.from_address for t in txs],
        "to_address":        [t.to_address for t in txs],
        "input":             [t.input for t in txs],
        "nonce":             [t.nonce for t in txs],
        "value":             [str(t.value) for t in txs],
        "gas_limit":         [str(t.gas_limit) for t in txs],
        "gas_price":         [str(t.gas_price) for t in txs],
    }, schema=TX_SCHEMA)

def _rollup_table(records: Sequence[RollupTransaction]) -> pa.Table:
    return pa.Table.from_pydict({
        "index_within_submission": [r.index_within_submission for r in records],
        "target":                  [r.target for r in records],
        "calldata":                [r.calldata for r in records],
        "l1_message_sender":       [r.l1_message_sender for r in records],
        "l1_timestamp":            [r.l1_timestamp for r in records],
        "l1_block_number":         [r.l1_block_number for r in records],
        "l1_tx_hash":              [r.l1_tx_hash for r in records],
        "l1_tx_index":             [r.l1_tx_index for r in records],
        "l1_tx_log_index":         [r.l1_tx_log_index for r in records],
        "nonce":                   [r.nonce for r in records],
        "queue_origin":            [int(r.queue_origin) for r in records],
    }, schema=ROLLUP_TX_SCHEMA)

def _roots_table(l1_tx_hash: str, roots: Sequence[str]) -> pa.Table:
    return pa.Table.from_pydict({
        "l1_tx_hash": [l1_tx_hash] * len(roots),
        "index":      list(range(len(roots))),
        "root":       list(roots),
    }, schema=STATE_ROOT_SCHEMA)


class ParquetDataService(DataService):
    """
    One Parquet file per stored unit under `root_dir`, plus an append-only
    progress log under `root_dir/manifests`. Data files are written first and
    atomically (tmp + rename to a deterministic path), the progress record
    second, so a crash in between is repaired by simply redoing the write.
    Rollup transactions and state roots only count as persisted once
    `mark_block_processed` commits them together in one progress record.
    """
    def __init__(self, root_dir: str, codec: str = "zstd") -> None:
        self.root = root_dir
        self.codec = codec
        for sub in ("blocks", "transactions", "rollup_transactions", "state_roots", "manifests"):
            os.makedirs(os.path.join(self.root, sub), exist_ok=True)
        self.progress = JSONLProgressLog(os.path.join(self.root, "manifests", "progress.jsonl"))
        # derived outputs written but not yet committed by a "processed" record
        self._uncommitted: dict[int, set[OutputKind]] = {}

    def _path(self, kind: str, key: str) -> str:
        return os.path.join(self.root, kind, f"{key}.parquet")

    def _write_table(self, table: pa.Table, path: str) -> None:
        tmp = path + ".tmp"
        pq.write_table(table, tmp, compression=self.codec)
        os.replace(tmp, path)

    async def _write(self, table: pa.Table, path: str) -> None:
        try:
            await asyncio.to_thread(self._write_table, table, path)
        except (OSError, pa.ArrowException) as e:
            raise WriteError(f"failed writing {path}: {e}") from e

    async def _record(self, block_number: int, block_hash: str, stage, *,
                      tx_hashes: Sequence[str] = (), outputs: Sequence[OutputKind] = (),
                      records: int = 0) -> None:
        try:
            await self.progress.append(ProgressRec(
                block_number=block_number, block_hash=block_hash, stage=stage,
                tx_hashes=tuple(tx_hashes), outputs=tuple(outputs), records=records, updated_at=time.time(),
            ))
        except OSError as e:
            raise WriteError(f"failed recording {stage} for block {block_number}: {e}") from e

    # ---- DataService ---------------------------------------------------------

    async def get_persistence_state(self, block_number: int) -> PersistenceState:
        return self.progress.state(block_number)

    async def insert_block(self, block: Block, mark_processed: bool) -> None:
        await self._write(_blocks_table(block), self._path("blocks", f"block_{block.number}"))
        await self._record(block.number, block.hash, "block")
        if mark_processed:
            await self._record(block.number, block.hash, "processed")

    async def insert_block_with_transactions(
        self, block: Block, transactions: Sequence[Transaction], mark_processed: bool
    ) -> None:
        await self._write(_blocks_table(block), self._path("blocks", f"block_{block.number}"))
        await self._write(_txs_table(transactions), self._path("transactions", f"block_{block.number}"))
        await self._record(block.number, block.hash, "transactions",
                           tx_hashes=[t.hash for t in transactions], records=len(transactions))
        if mark_processed:
            await self._record(block.number, block.hash, "processed")

    def _owning_block(self, l1_tx_hash: str) -> int:
        number = self.progress.block_of_tx(l1_tx_hash)
        if number is None:
            raise WriteError(f"unknown L1 transaction {l1_tx_hash}")
        return number

    async def insert_rollup_transactions(self, l1_tx_hash: str, records: Sequence[RollupTransaction]) -> int:
        number = self._owning_block(l1_tx_hash)
        await self._write(_rollup_table(records), self._path("rollup_transactions", l1_tx_hash))
        self._uncommitted.setdefault(number, set()).add(ROLLUP_TRANSACTIONS)
        return len(records)

    async def insert_state_roots(self, l1_tx_hash: str, roots: Sequence[str]) -> int:
        number = self._owning_block(l1_tx_hash)
        await self._write(_roots_table(l1_tx_hash, roots), self._path("state_roots", l1_tx_hash))
        self._uncommitted.setdefault(number, set()).add(STATE_ROOTS)
        return len(roots)

    async def mark_block_processed(self, block_hash: str) -> None:
        number = self.progress.block_number_of(block_hash)
        if number is None:
            raise WriteError(f"cannot mark unknown block {block_hash} processed")
        outputs = sorted(self._uncommitted.get(number, ()))
        await self._record(number, block_hash, "processed", outputs=outputs)
        self._uncommitted.pop(number, None)

    # ---- readers -------------------------------------------------------------

    def _read(self, kind: str, key: str) -> Optional[pa.Table]:
        path = self._path(kind, key)
        if not os.path.exists(path):
            return None
        return pq.read_table(path)

    def read_block(self, number: int) -> Optional[Block]:
        t = self._read("blocks", f"block_{number}")
        if t is None or len(t) == 0:
            return None
        row = t.to_pylist()[0]
        return Block(number=row["number"], hash=row["hash"],
                     parent_hash=row["parent_hash"], timestamp=row["timestamp"])

    def read_transactions(self, block_number: int) -> list[Transaction]:
        t = self._read("transactions", f"block_{block_number}")
        if t is None:
            return []
        return [Transaction(
            hash=TxHash(r["hash"]), block_number=r["block_number"], block_hash=r["block_hash"],
            transaction_index=r["transaction_index"], from_address=Address(r["from_address"]),
            to_address=Address(r["to_address"]) if r["to_address"] else None, input=r["input"],
            nonce=r["nonce"], value=int(r["value"]), gas_limit=int(r["gas_limit"]),
            gas_price=int(r["gas_price"]),
        ) for r in t.to_pylist()]

    def read_rollup_transactions(self, l1_tx_hash: str) -> list[RollupTransaction]:
        t = self._read("rollup_transactions", l1_tx_hash)
        if t is None:
            return []
        return [RollupTransaction(
            index_within_submission=r["index_within_submission"], target=Address(r["target"]),
            calldata=r["calldata"], l1_message_sender=Address(r["l1_message_sender"]),
            l1_timestamp=r["l1_timestamp"], l1_block_number=r["l1_block_number"],
            l1_tx_hash=TxHash(r["l1_tx_hash"]), l1_tx_index=r["l1_tx_index"],
            l1_tx_log_index=r["l1_tx_log_index"], nonce=r["nonce"],
            queue_origin=QueueOrigin(r["queue_origin"]),
        ) for r in t.to_pylist()]

    def read_state_roots(self, l1_tx_hash: str) -> list[str]:
        t = self._read("state_roots", l1_tx_hash)
        if t is None:
            return []
        return [r["root"] for r in t.sort_by([("index", "ascending")]).to_pylist()]
