from __future__ import annotations
import asyncio
from typing import Callable, Dict, Optional

import structlog

from ..adapters.parquet_store import ParquetDataService
from ..adapters.rpc_httpx import HttpxRPC
from ..config import Settings
from ..domain.errors import DTLError
from ..domain.models import Block
from ..ports.chain import ChainSource
from ..ports.storage import DataService
from .handlers import default_bindings
from .persister import ChainDataPersister

logger = structlog.get_logger()


async def resolve_block_range(chain: ChainSource, start_block: int | str, end_block: int | str) -> tuple[int, int]:
    s_block = 0 if (isinstance(start_block, str) and start_block.lower() in ("earliest", "genesis")) else int(start_block)
    e_block = await chain.latest_block() if (isinstance(end_block, str) and end_block.lower() == "latest") else int(end_block)
    if s_block > e_block:
        raise ValueError(f"start_block ({s_block}) must be <= end_block ({e_block})")
    return s_block, e_block


async def build_persister(settings: Settings, data_service: DataService, chain: ChainSource) -> ChainDataPersister:
    return await ChainDataPersister.create(
        data_service, chain, default_bindings(settings), earliest_block=settings.EARLIEST_BLOCK,
    )


async def sync_blocks(
    *,
    chain: ChainSource,
    persister: ChainDataPersister,
    start_block: int | str,
    end_block: int | str,
    max_attempts: int = 3,
    retry_delay: float = 0.8,
    on_block: Optional[Callable[[Block], None]] = None,
) -> Dict[str, int]:
    """
    Feed blocks to the persister strictly in order, one at a time.

    A failing block is re-submitted up to `max_attempts` times with linear
    backoff; if it still fails the error propagates and later blocks are not
    touched.
    """
    s_block, e_block = await resolve_block_range(chain, start_block, end_block)
    stats = {"processed": 0, "skipped": 0, "retried": 0}

    for number in range(s_block, e_block + 1):
        if persister.earliest_block is not None and number < persister.earliest_block:
            stats["skipped"] += 1
            continue
        tries = 0
        while True:
            tries += 1
            try:
                block = await chain.get_block(number)
                if block is None:
                    raise DTLError(f"block {number} not available from chain source")
                await persister.handle(block)
                break
            except DTLError as e:
                if tries >= max_attempts:
                    logger.error("block_gave_up", block_number=number, attempts=tries,
                                 error=f"{type(e).__name__}: {e}")
                    raise
                stats["retried"] += 1
                logger.warning("block_retry", block_number=number, attempt=tries,
                               error=f"{type(e).__name__}: {e}")
                await asyncio.sleep(retry_delay * tries)
        stats["processed"] += 1
        if on_block is not None:
            on_block(block)

    return stats


async def sync_range_parquet(
    *,
    settings: Settings,
    start_block: int | str,
    end_block: int | str,
    on_block: Optional[Callable[[Block], None]] = None,
) -> Dict[str, int]:
    """Wire the JSON-RPC chain source and the Parquet store from settings and run the feed."""
    rpc = HttpxRPC(settings.RPC_URL, settings.RPC_TIMEOUT, settings.RPC_MAX_CONNECTIONS)
    try:
        store = ParquetDataService(settings.DATA_DIR)
        persister = await build_persister(settings, store, rpc)
        return await sync_blocks(
            chain=rpc, persister=persister,
            start_block=start_block, end_block=end_block,
            max_attempts=settings.MAX_ATTEMPTS, retry_delay=settings.RETRY_DELAY,
            on_block=on_block,
        )
    finally:
        await rpc.aclose()
