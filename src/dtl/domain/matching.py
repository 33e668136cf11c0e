from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Iterator, Sequence

from .models import EventLog, Transaction
from .value_types import Address, OutputKind, Topic

if TYPE_CHECKING:
    from ..ports.storage import DataWriter

LogHandler = Callable[["DataWriter", EventLog, Transaction], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class HandlerBinding:
    """
    Which logs a pipeline cares about and what to do with them.

    `produces` is the set of derived outputs the handler is allowed to write;
    the writer handed to `handle` enforces it.
    """
    topic: Topic
    contract_address: Address
    handle: LogHandler
    produces: frozenset[OutputKind]


def matches(log: EventLog, binding: HandlerBinding) -> bool:
    """Exact topic membership and exact emitter address, nothing else."""
    return binding.topic in log.topics and log.address == binding.contract_address


class HandlerRegistry:
    """Bindings fixed at construction, iterated in registration order."""

    def __init__(self, bindings: Iterable[HandlerBinding] = ()) -> None:
        self._bindings: tuple[HandlerBinding, ...] = tuple(bindings)

    def __iter__(self) -> Iterator[HandlerBinding]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    @property
    def is_empty(self) -> bool:
        return not self._bindings

    @property
    def bindings(self) -> Sequence[HandlerBinding]:
        return self._bindings

    def matching(self, log: EventLog) -> list[HandlerBinding]:
        return [b for b in self._bindings if matches(log, b)]
