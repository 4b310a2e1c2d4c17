"""Optimistic update transactions over the conversation store.

A transaction wraps one optimistic mutation of one conversation:
``snapshot()`` captures the entry, ``apply()`` performs the optimistic
append, and exactly one of ``commit()`` or ``revert()`` ends it. The
registry hands out at most one live transaction per conversation key.
"""
import itertools
import logging
from enum import Enum
from typing import Dict, Hashable, Optional

from errors import ConcurrentSendError
from models.conversation import Message
from client.conversation_store import ConversationStore, StoreSnapshot

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    PENDING = "pending"
    SNAPSHOTTED = "snapshotted"
    APPLIED = "applied"
    COMMITTED = "committed"
    REVERTED = "reverted"


class OptimisticTransaction:
    """One in-flight optimistic mutation, scoped to a single conversation key."""

    def __init__(self, store: ConversationStore, key: Optional[str], token: int):
        self.store = store
        self.key = key
        self.token = token
        self.state = TransactionState.PENDING
        self._snapshot: Optional[StoreSnapshot] = None

    @property
    def is_open(self) -> bool:
        return self.state not in (TransactionState.COMMITTED, TransactionState.REVERTED)

    @property
    def has_snapshot(self) -> bool:
        return self._snapshot is not None

    def snapshot(self) -> None:
        """Capture the entry before any change. A new conversation has nothing to capture."""
        self._require(TransactionState.PENDING)
        if self.key is not None:
            self._snapshot = self.store.snapshot(self.key)
        self.state = TransactionState.SNAPSHOTTED

    def apply(self, message: Message) -> bool:
        """
        Optimistically append a message.

        Returns:
            True if the store held the conversation and the message was appended
        """
        self._require(TransactionState.SNAPSHOTTED)
        applied = self.key is not None and self.store.append(self.key, message)
        self.state = TransactionState.APPLIED
        return applied

    def commit(self) -> None:
        """The remote side confirmed; discard the snapshot."""
        self._require(TransactionState.SNAPSHOTTED, TransactionState.APPLIED)
        self._snapshot = None
        self.state = TransactionState.COMMITTED

    def revert(self) -> None:
        """Restore the entry to the snapshot. Reverting twice is a no-op."""
        if self.state == TransactionState.REVERTED:
            return
        self._require(TransactionState.PENDING, TransactionState.SNAPSHOTTED, TransactionState.APPLIED)
        if self._snapshot is not None:
            self.store.restore(self.key, self._snapshot)
        self._snapshot = None
        self.state = TransactionState.REVERTED

    def _require(self, *states: TransactionState) -> None:
        if self.state not in states:
            raise RuntimeError(f"Transaction for {self.key!r} is {self.state.value}")


class TransactionRegistry:
    """Tracks the live transaction per conversation key.

    The key None stands for "a new conversation". Each transaction gets a
    unique token; a transaction whose token is no longer the tracked one was
    abandoned and must not touch the store.
    """

    def __init__(self, store: ConversationStore):
        self.store = store
        self._active: Dict[Hashable, OptimisticTransaction] = {}
        self._tokens = itertools.count(1)

    def begin(self, key: Optional[str]) -> OptimisticTransaction:
        """
        Start a transaction for a key.

        Raises:
            ConcurrentSendError: If a transaction for the key is still in flight
        """
        if key in self._active:
            raise ConcurrentSendError(
                "A message is already being sent in this conversation",
                details={"conversation_id": key}
            )
        transaction = OptimisticTransaction(self.store, key, next(self._tokens))
        self._active[key] = transaction
        return transaction

    def is_current(self, transaction: OptimisticTransaction) -> bool:
        current = self._active.get(transaction.key)
        return current is not None and current.token == transaction.token

    def in_flight(self, key: Optional[str]) -> bool:
        return key in self._active

    def release(self, transaction: OptimisticTransaction) -> None:
        """Stop tracking a finished transaction (only if it is still the tracked one)."""
        if self.is_current(transaction):
            del self._active[transaction.key]

    def abandon(self, key: Optional[str]) -> Optional[OptimisticTransaction]:
        """
        Detach the in-flight transaction for a key.

        Its late response will find itself no longer current and leave the
        store alone. The optimistic message it applied is reverted now.
        """
        transaction = self._active.pop(key, None)
        if transaction is not None:
            if transaction.is_open:
                transaction.revert()
            logger.debug(f"Abandoned send transaction {transaction.token} for {key!r}")
        return transaction

    def abandon_all(self) -> None:
        for key in list(self._active):
            self.abandon(key)
