from __future__ import annotations
import asyncio, httpx
from typing import Any, Optional, Sequence

from ..domain.errors import TransientFetchError
from ..domain.models import Block, EventLog, Transaction
from ..domain.value_types import Address, Topic, TxHash
from ..ports.chain import ChainSource

def _to_hex_block(n: int) -> str: return hex(int(n))
def _is_topic_hash(x: str) -> bool: return isinstance(x, str) and x.startswith("0x") and len(x)==66
def _int(v: Any) -> int:
    if v is None: return 0
    if isinstance(v, int): return v
    s = str(v).lower()
    return int(s, 16) if s.startswith("0x") else int(s)

def _build_topics_param(topics: Sequence[Topic]) -> list[list[str]]:
    ts = [str(t).strip().lower() for t in topics]
    if not all(_is_topic_hash(x) for x in ts):
        raise ValueError(f"Invalid topic(s): {ts}")
    return [ts]


def parse_log(rl: dict) -> EventLog:
    return EventLog(
        address=Address(rl["address"].lower()),
        topics=tuple(Topic(t.lower()) for t in rl.get("topics", [])),
        data_hex=str(rl.get("data") or "0x"),
        block_number=_int(rl["blockNumber"]),
        block_hash=(rl.get("blockHash") or "").lower(),
        tx_hash=TxHash(rl["transactionHash"].lower()),
        log_index=_int(rl["logIndex"]),
    )

def parse_transaction(rt: dict) -> Transaction:
    return Transaction(
        hash=TxHash(rt["hash"].lower()),
        block_number=_int(rt.get("blockNumber")),
        block_hash=(rt.get("blockHash") or "").lower(),
        transaction_index=_int(rt.get("transactionIndex")),
        from_address=Address(rt["from"].lower()),
        to_address=Address(rt["to"].lower()) if rt.get("to") else None,
        input=str(rt.get("input") or "0x"),
        nonce=_int(rt.get("nonce")),
        value=_int(rt.get("value")),
        gas_limit=_int(rt.get("gas")),
        gas_price=_int(rt.get("gasPrice")),
    )

def parse_block(rb: dict) -> Block:
    return Block(
        number=_int(rb["number"]),
        hash=rb["hash"].lower(),
        parent_hash=rb["parentHash"].lower(),
        timestamp=_int(rb["timestamp"]),
    )


class HttpxRPC(ChainSource):
    def __init__(self, rpc_url: str, timeout_s: int = 20, max_conn: int = 64,
                 *, client: Optional[httpx.AsyncClient] = None, max_rate_limit_retries: int = 3) -> None:
        self.rpc_url = rpc_url
        self.max_rate_limit_retries = max_rate_limit_retries
        self.client = client or httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
        )
        self._id = 0

    async def _call(self, method: str, params: list) -> Any:
        self._id += 1
        payload = {"jsonrpc":"2.0","id":self._id,"method":method,"params":params}
        # retry on 429 with simple backoff; everything else goes back to the caller
        for attempt in range(self.max_rate_limit_retries):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
                if r.status_code == 429:
                    ra = r.headers.get("Retry-After")
                    delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                    await asyncio.sleep(delay); continue
                r.raise_for_status()
                data = r.json()
            except (httpx.HTTPError, ValueError) as e:
                raise TransientFetchError(f"{method} failed: {type(e).__name__}: {e}") from e
            if "error" in data:
                err = data["error"]
                if isinstance(err, dict):
                    raise TransientFetchError(f"{method} RPC error code={err.get('code')} message={err.get('message')}")
                raise TransientFetchError(f"{method} RPC error: {err}")
            return data.get("result")
        raise TransientFetchError(f"Retries exhausted for {method}")

    async def latest_block(self) -> int:
        return _int(await self._call("eth_blockNumber", []))

    async def get_block(self, number: int) -> Optional[Block]:
        res = await self._call("eth_getBlockByNumber", [_to_hex_block(number), False])
        return parse_block(res) if res else None

    async def get_transaction(self, tx_hash: TxHash) -> Optional[Transaction]:
        res = await self._call("eth_getTransactionByHash", [str(tx_hash)])
        return parse_transaction(res) if res else None

    async def get_logs(self, address: Address, topics: Sequence[Topic], from_block: int, to_block: int) -> list[EventLog]:
        res = await self._call("eth_getLogs", [{
            "address": str(address).lower(),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": _build_topics_param(topics),
        }])
        return [parse_log(rl) for rl in (res or [])]

    async def aclose(self) -> None:
        await self.client.aclose()
