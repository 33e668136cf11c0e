from __future__ import annotations

from dataclasses import dataclass

from eth_utils import event_signature_to_log_topic, function_signature_to_4byte_selector

from .errors import DecodingError
from .value_types import Topic


APPEND_SEQUENCER_BATCH_SIG = "appendSequencerBatch(bytes[],uint256,uint256,uint256)"
APPEND_STATE_BATCH_SIG     = "appendStateBatch(bytes32[],uint256)"

APPEND_SEQUENCER_BATCH_SELECTOR = function_signature_to_4byte_selector(APPEND_SEQUENCER_BATCH_SIG)
APPEND_STATE_BATCH_SELECTOR     = function_signature_to_4byte_selector(APPEND_STATE_BATCH_SIG)


def event_topic(signature: str) -> Topic:
    """'StateBatchAppended(bytes32)' -> lowercase 0x topic0."""
    return Topic("0x" + event_signature_to_log_topic(signature).hex())


def hexstr_to_bytes(s: str | None) -> bytes:
    if not s:
        return b""
    h = s[2:] if s[:2].lower() == "0x" else s
    if len(h) % 2: h = "0" + h
    try:
        return bytes.fromhex(h)
    except ValueError as e:
        raise DecodingError(f"not a hex string: {s[:20]}...") from e


# --------- 32B word slicing (no eth_abi) -------------------------------------

def _word(b: bytes, i: int) -> bytes:
    o = i*32
    if o + 32 > len(b):
        raise DecodingError(f"calldata too short: need word at offset {o}, have {len(b)} bytes")
    return b[o:o+32]

def _word_at(b: bytes, offset: int) -> bytes:
    if offset < 0 or offset + 32 > len(b):
        raise DecodingError(f"calldata too short: need word at offset {offset}, have {len(b)} bytes")
    return b[offset:offset+32]

def _u256(w: bytes) -> int:
    return int.from_bytes(w, "big")


@dataclass(slots=True, frozen=True)
class SequencerBatch:
    elements: tuple[bytes, ...]
    timestamp: int
    block_number: int
    starts_at_tx_index: int


@dataclass(slots=True, frozen=True)
class StateBatch:
    roots: tuple[str, ...]          # 0x-hex, 32 bytes each
    starts_at_root_index: int


def has_selector(calldata: bytes, selector: bytes) -> bool:
    return calldata[:4] == selector


def decode_sequencer_batch(calldata: bytes) -> SequencerBatch:
    # ["bytes[]","uint256","uint256","uint256"]
    if not has_selector(calldata, APPEND_SEQUENCER_BATCH_SELECTOR):
        raise DecodingError("not an appendSequencerBatch call")
    args = calldata[4:]
    arr_off   = _u256(_word(args, 0))
    timestamp = _u256(_word(args, 1))
    block_num = _u256(_word(args, 2))
    starts_at = _u256(_word(args, 3))

    n = _u256(_word_at(args, arr_off))
    base = arr_off + 32             # element offsets are relative to the first offset slot
    if base + n*32 > len(args):
        raise DecodingError(f"batch claims {n} elements but calldata is {len(args)} bytes")

    elements: list[bytes] = []
    for i in range(n):
        el_off = base + _u256(_word_at(args, base + i*32))
        length = _u256(_word_at(args, el_off))
        start = el_off + 32
        if start + length > len(args):
            raise DecodingError(f"element {i} overruns calldata ({length} bytes at {start})")
        elements.append(args[start:start+length])

    return SequencerBatch(tuple(elements), timestamp, block_num, starts_at)


def decode_state_batch(calldata: bytes) -> StateBatch:
    # ["bytes32[]","uint256"]
    if not has_selector(calldata, APPEND_STATE_BATCH_SELECTOR):
        raise DecodingError("not an appendStateBatch call")
    args = calldata[4:]
    arr_off   = _u256(_word(args, 0))
    starts_at = _u256(_word(args, 1))

    n = _u256(_word_at(args, arr_off))
    base = arr_off + 32
    if base + n*32 > len(args):
        raise DecodingError(f"batch claims {n} roots but calldata is {len(args)} bytes")
    roots = tuple("0x" + _word_at(args, base + i*32).hex() for i in range(n))
    return StateBatch(roots, starts_at)
