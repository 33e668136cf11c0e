import pytest

from conftest import make_block

from dtl.domain.models import PersistenceState
from dtl.domain.progress import BlockProgress, LogsStage


@pytest.mark.parametrize("state, stage", [
    (PersistenceState(), LogsStage.NOT_STARTED),
    (PersistenceState(block_persisted=True, transactions_persisted=True), LogsStage.NOT_STARTED),
    (PersistenceState(rollup_transactions_persisted=True), LogsStage.LOGS_PROCESSED),
    (PersistenceState(state_roots_persisted=True), LogsStage.LOGS_PROCESSED),
    (PersistenceState(True, True, True, True), LogsStage.LOGS_PROCESSED),
])
def test_logs_stage_collapses_derived_flags(state, stage):
    assert BlockProgress.start(make_block(), state).logs_stage is stage


def test_block_write_transitions():
    progress = BlockProgress.start(make_block(), PersistenceState())
    assert progress.block_pending

    progress.record_block_write(with_transactions=True, mark_processed=False)

    assert not progress.block_pending
    assert progress.state.block_persisted and progress.state.transactions_persisted
    assert not progress.processed_marked


def test_block_cannot_be_written_twice():
    progress = BlockProgress.start(make_block(), PersistenceState(block_persisted=True))

    with pytest.raises(RuntimeError):
        progress.record_block_write(with_transactions=False, mark_processed=True)


def test_block_write_keeps_flags_already_set():
    progress = BlockProgress.start(make_block(), PersistenceState(state_roots_persisted=True))

    progress.record_block_write(with_transactions=False, mark_processed=True)

    assert progress.state == PersistenceState(block_persisted=True, state_roots_persisted=True)
    assert progress.processed_marked
    assert not progress.logs_pending


def test_merge_is_flagwise_or():
    a = PersistenceState(block_persisted=True)
    b = PersistenceState(state_roots_persisted=True)

    assert a.merge(b) == PersistenceState(block_persisted=True, state_roots_persisted=True)
    assert a.merge(PersistenceState()) == a
