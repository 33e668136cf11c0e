"""
Built-in log handlers for the two rollup contracts.

Both read the batch out of the calldata of the L1 transaction that emitted the
event; the event itself only carries a batch header hash.
"""
from __future__ import annotations

import structlog

from ..config import Settings
from ..domain.decoding import (
    APPEND_SEQUENCER_BATCH_SELECTOR,
    APPEND_STATE_BATCH_SELECTOR,
    decode_sequencer_batch,
    decode_state_batch,
    event_topic,
    has_selector,
    hexstr_to_bytes,
)
from ..domain.matching import HandlerBinding
from ..domain.models import EventLog, QueueOrigin, RollupTransaction, Transaction
from ..domain.value_types import ROLLUP_TRANSACTIONS, STATE_ROOTS, Address, ZERO_ADDRESS
from ..ports.storage import DataWriter

logger = structlog.get_logger()


async def handle_sequencer_batch_appended(writer: DataWriter, log: EventLog, tx: Transaction) -> None:
    """
    One RollupTransaction per batch element. Elements are stored as opaque
    calldata; `nonce` is the element's index in the canonical chain.
    """
    calldata = hexstr_to_bytes(tx.input)
    if not has_selector(calldata, APPEND_SEQUENCER_BATCH_SELECTOR):
        logger.warning("unexpected_calldata", tx_hash=tx.hash, expected="appendSequencerBatch")
        return
    batch = decode_sequencer_batch(calldata)
    records = [
        RollupTransaction(
            index_within_submission=i,
            target=ZERO_ADDRESS,
            calldata="0x" + element.hex(),
            l1_message_sender=tx.from_address,
            l1_timestamp=batch.timestamp,
            l1_block_number=batch.block_number,
            l1_tx_hash=tx.hash,
            l1_tx_index=tx.transaction_index,
            l1_tx_log_index=log.log_index,
            nonce=batch.starts_at_tx_index + i,
            queue_origin=QueueOrigin.SEQUENCER,
        )
        for i, element in enumerate(batch.elements)
    ]
    await writer.insert_rollup_transactions(tx.hash, records)


async def handle_state_batch_appended(writer: DataWriter, log: EventLog, tx: Transaction) -> None:
    calldata = hexstr_to_bytes(tx.input)
    if not has_selector(calldata, APPEND_STATE_BATCH_SELECTOR):
        logger.warning("unexpected_calldata", tx_hash=tx.hash, expected="appendStateBatch")
        return
    batch = decode_state_batch(calldata)
    await writer.insert_state_roots(tx.hash, list(batch.roots))


def default_bindings(settings: Settings) -> list[HandlerBinding]:
    """Bindings for every rollup contract whose address is configured."""
    out: list[HandlerBinding] = []
    if settings.CANONICAL_TX_CHAIN_ADDRESS:
        out.append(HandlerBinding(
            topic=event_topic(settings.SEQUENCER_BATCH_EVENT),
            contract_address=Address(settings.CANONICAL_TX_CHAIN_ADDRESS),
            handle=handle_sequencer_batch_appended,
            produces=frozenset({ROLLUP_TRANSACTIONS}),
        ))
    if settings.STATE_COMMITMENT_CHAIN_ADDRESS:
        out.append(HandlerBinding(
            topic=event_topic(settings.STATE_BATCH_EVENT),
            contract_address=Address(settings.STATE_COMMITMENT_CHAIN_ADDRESS),
            handle=handle_state_batch_appended,
            produces=frozenset({STATE_ROOTS}),
        ))
    return out
