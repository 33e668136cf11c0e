"""
Errors raised by the data-transport layer.

Everything here is retryable from the caller's point of view: re-invoking
``ChainDataPersister.handle`` with the same block once the cause is gone
resumes from whatever stages the backend already committed.
"""
from __future__ import annotations


class DTLError(Exception):
    """Base class for errors raised deliberately by this package."""


class TransientFetchError(DTLError):
    """The chain source could not serve a request (transport, HTTP or JSON-RPC error)."""


class UnknownTransactionError(DTLError):
    """A matched log references a transaction the chain source cannot resolve."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__(f"transaction {tx_hash} not found on chain source")
        self.tx_hash = tx_hash


class WriteError(DTLError):
    """The storage backend rejected a write."""


class UndeclaredOutputError(DTLError):
    """A handler wrote an output kind its binding did not declare."""

    def __init__(self, topic: str, kind: str) -> None:
        super().__init__(f"handler for topic {topic} wrote undeclared output {kind!r}")
        self.topic = topic
        self.kind = kind


class DecodingError(DTLError):
    """Batch calldata could not be decoded."""
