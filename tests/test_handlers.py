import dataclasses
import importlib

import pytest

from conftest import (
    CONTRACT,
    FakeChainSource,
    RecordingDataService,
    h,
    make_block,
    make_log,
    make_tx,
    sequencer_calldata,
    state_calldata,
)

from dtl.adapters.memory_store import InMemoryDataService
from dtl.application.handlers import (
    default_bindings,
    handle_sequencer_batch_appended,
    handle_state_batch_appended,
)
from dtl.application.persister import ChainDataPersister
from dtl import config
from dtl.config import Settings
from dtl.domain.decoding import event_topic
from dtl.domain.errors import DecodingError
from dtl.domain.models import PersistenceState, QueueOrigin
from dtl.domain.value_types import ROLLUP_TRANSACTIONS, STATE_ROOTS

SCC = "0x" + "5c" * 20


def with_input(tx, data: bytes):
    return dataclasses.replace(tx, input="0x" + data.hex())


@pytest.mark.asyncio
async def test_sequencer_batch_becomes_rollup_transactions():
    writer = RecordingDataService()
    tx = with_input(make_tx(), sequencer_calldata([b"\xaa", b"\xbb\xcc"], timestamp=77, block_number=9, starts_at=4))
    log = make_log([h("t")], CONTRACT, tx.hash, log_index=3)

    await handle_sequencer_batch_appended(writer, log, tx)

    records = writer.rollup_transactions[tx.hash]
    assert [r.calldata for r in records] == ["0xaa", "0xbbcc"]
    assert [r.index_within_submission for r in records] == [0, 1]
    assert [r.nonce for r in records] == [4, 5]
    assert all(r.queue_origin is QueueOrigin.SEQUENCER for r in records)
    assert records[0].l1_timestamp == 77 and records[0].l1_block_number == 9
    assert records[0].l1_tx_log_index == 3
    assert records[0].l1_message_sender == tx.from_address


@pytest.mark.asyncio
async def test_state_batch_becomes_state_roots():
    writer = RecordingDataService()
    roots = [h("a"), h("b"), h("c")]
    tx = with_input(make_tx(), state_calldata(roots))

    await handle_state_batch_appended(writer, make_log([h("t")], SCC, tx.hash), tx)

    assert writer.state_roots == {tx.hash: roots}


@pytest.mark.asyncio
async def test_unrelated_calldata_writes_nothing():
    writer = RecordingDataService()
    tx = make_tx()  # input 0xdeadb33f

    await handle_state_batch_appended(writer, make_log([h("t")], SCC, tx.hash), tx)
    await handle_sequencer_batch_appended(writer, make_log([h("t")], CONTRACT, tx.hash), tx)

    assert writer.calls == []


@pytest.mark.asyncio
async def test_malformed_batch_raises():
    writer = RecordingDataService()
    tx = with_input(make_tx(), state_calldata([h("a"), h("b")])[:-10])

    with pytest.raises(DecodingError):
        await handle_state_batch_appended(writer, make_log([h("t")], SCC, tx.hash), tx)


def test_default_bindings_follow_configured_addresses():
    settings = Settings(
        CANONICAL_TX_CHAIN_ADDRESS=CONTRACT.upper().replace("0X", "0x"),
        STATE_COMMITMENT_CHAIN_ADDRESS=SCC,
    )

    ctc, scc = default_bindings(settings)

    assert ctc.contract_address == CONTRACT
    assert ctc.topic == event_topic("SequencerBatchAppended(bytes32)")
    assert ctc.produces == frozenset({ROLLUP_TRANSACTIONS})
    assert scc.contract_address == SCC
    assert scc.topic == event_topic("StateBatchAppended(bytes32)")
    assert scc.produces == frozenset({STATE_ROOTS})


def test_no_addresses_no_bindings():
    settings = Settings(CANONICAL_TX_CHAIN_ADDRESS=None, STATE_COMMITMENT_CHAIN_ADDRESS=None)
    assert default_bindings(settings) == []


def test_invalid_address_is_rejected():
    with pytest.raises(ValueError):
        Settings(STATE_COMMITMENT_CHAIN_ADDRESS="0x1234")


@pytest.mark.asyncio
async def test_both_contracts_in_one_block():
    settings = Settings(CANONICAL_TX_CHAIN_ADDRESS=CONTRACT, STATE_COMMITMENT_CHAIN_ADDRESS=SCC)
    store = InMemoryDataService()
    chain = FakeChainSource()
    persister = await ChainDataPersister.create(store, chain, default_bindings(settings))

    seq_tx = with_input(make_tx("seq"), sequencer_calldata([b"\x01", b"\x02"]))
    state_tx = with_input(make_tx("state"), state_calldata([h("root")]))
    chain.txs = {seq_tx.hash: seq_tx, state_tx.hash: state_tx}
    seq_topic = event_topic(settings.SEQUENCER_BATCH_EVENT)
    state_topic = event_topic(settings.STATE_BATCH_EVENT)
    chain.topic_to_logs = {
        seq_topic: [make_log([seq_topic], CONTRACT, seq_tx.hash, log_index=0)],
        state_topic: [make_log([state_topic], SCC, state_tx.hash, log_index=1)],
    }
    block = make_block()

    await persister.handle(block)

    assert store.block_transactions[block.hash] == [seq_tx, state_tx]
    assert len(store.rollup_transactions[seq_tx.hash]) == 2
    assert store.state_roots[state_tx.hash] == [h("root")]
    assert await store.get_persistence_state(block.number) == PersistenceState(True, True, True, True)
    assert block.hash in store.processed_blocks


def test_importing_config_does_not_read_the_environment(monkeypatch):
    monkeypatch.setenv("DTL_RPC_TIMEOUT", "not-a-number")

    importlib.reload(config)

    with pytest.raises(ValueError):
        config.Settings()
