# dtl/adapters/progress_jsonl.py
from __future__ import annotations

import os, json, asyncio
from dataclasses import asdict

from ..domain.models import PersistenceState, ProgressRec
from ..domain.value_types import ROLLUP_TRANSACTIONS, STATE_ROOTS

_STAGE_FLAGS: dict[str, PersistenceState] = {
    "block":        PersistenceState(block_persisted=True),
    "transactions": PersistenceState(block_persisted=True, transactions_persisted=True),
    "processed":    PersistenceState(block_persisted=True),
}

_OUTPUT_FLAGS: dict[str, PersistenceState] = {
    ROLLUP_TRANSACTIONS: PersistenceState(rollup_transactions_persisted=True),
    STATE_ROOTS:         PersistenceState(state_roots_persisted=True),
}


class JSONLProgressLog:
    """
    Append-only JSONL log of completed stages, one record per line.

    The per-block flags are the OR of every record seen for that block, so a
    flag can never be unset by a later line. The derived-output flags only come
    from the `outputs` of a "processed" record, so both appear in the same line
    or not at all. State is rebuilt from the file on construction; unreadable
    lines (e.g. a torn final write) are skipped.
    """
    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        open(self.path, "a").close()
        self._lock = asyncio.Lock()
        self._state: dict[int, PersistenceState] = {}
        self._hashes: dict[str, int] = {}
        self._tx_block: dict[str, int] = {}
        self._processed: set[str] = set()
        self._load()

    def _load(self) -> None:
        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    raw = json.loads(line)
                    rec = ProgressRec(
                        block_number=int(raw["block_number"]),
                        block_hash=str(raw["block_hash"]),
                        stage=raw["stage"],
                        tx_hashes=tuple(raw.get("tx_hashes") or ()),
                        outputs=tuple(raw.get("outputs") or ()),
                        records=int(raw.get("records", 0)),
                        updated_at=float(raw.get("updated_at", 0.0)),
                    )
                except (ValueError, KeyError, TypeError):
                    continue
                if rec.stage in _STAGE_FLAGS:
                    self._apply(rec)

    def _apply(self, rec: ProgressRec) -> None:
        cur = self._state.get(rec.block_number, PersistenceState())
        self._state[rec.block_number] = cur.merge(_STAGE_FLAGS[rec.stage])
        self._hashes[rec.block_hash] = rec.block_number
        if rec.stage == "transactions":
            for h in rec.tx_hashes:
                self._tx_block[h] = rec.block_number
        if rec.stage == "processed":
            self._processed.add(rec.block_hash)
            for kind in rec.outputs:
                flags = _OUTPUT_FLAGS.get(kind)
                if flags is not None:
                    self._state[rec.block_number] = self._state[rec.block_number].merge(flags)

    def state(self, block_number: int) -> PersistenceState:
        return self._state.get(block_number, PersistenceState())

    def block_of_tx(self, tx_hash: str) -> int | None:
        return self._tx_block.get(tx_hash)

    def block_number_of(self, block_hash: str) -> int | None:
        return self._hashes.get(block_hash)

    def is_processed(self, block_hash: str) -> bool:
        return block_hash in self._processed

    async def append(self, rec: ProgressRec) -> None:
        line = json.dumps(asdict(rec), separators=(",", ":")) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._write_line, self.path, line)
            self._apply(rec)

    @staticmethod
    def _write_line(path: str, line: str) -> None:
        with open(path, "a", buffering=1) as f:
            f.write(line); f.flush(); os.fsync(f.fileno())
