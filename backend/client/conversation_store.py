"""Client-side conversation cache."""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from models.conversation import Conversation, Message

logger = logging.getLogger(__name__)

Listener = Callable[[str, Optional[Conversation]], None]


@dataclass(frozen=True)
class StoreSnapshot:
    """Copy of one store entry, restorable exactly."""
    conversation: Optional[Conversation]
    stale: bool


@dataclass
class _Entry:
    conversation: Conversation
    stale: bool = False


class ConversationStore:
    """In-memory map from conversation id to Conversation.

    Only the dispatcher and refetch results write here. Reads hand out
    copies, so nothing outside the store can change a cached conversation.
    Listeners subscribed to an id are called after every change to it.
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}
        self._listeners: Dict[str, List[Listener]] = {}

    def get(self, conversation_id: str) -> Optional[Conversation]:
        entry = self._entries.get(conversation_id)
        return entry.conversation.copy() if entry else None

    def set(self, conversation_id: str, conversation: Conversation) -> None:
        """Store a conversation (fresh, not stale)."""
        self._entries[conversation_id] = _Entry(conversation.copy())
        self._notify(conversation_id)

    def append(self, conversation_id: str, message: Message) -> bool:
        """Append a message in place. No-op (returns False) if the id is absent."""
        entry = self._entries.get(conversation_id)
        if entry is None:
            return False
        entry.conversation = entry.conversation.with_messages(message)
        self._notify(conversation_id)
        return True

    def invalidate(self, conversation_id: str) -> None:
        """Mark an entry stale so the next read refetches it."""
        entry = self._entries.get(conversation_id)
        if entry is not None and not entry.stale:
            entry.stale = True
            self._notify(conversation_id)

    def is_stale(self, conversation_id: str) -> bool:
        entry = self._entries.get(conversation_id)
        return entry is not None and entry.stale

    def contains(self, conversation_id: str) -> bool:
        return conversation_id in self._entries

    def remove(self, conversation_id: str) -> None:
        if self._entries.pop(conversation_id, None) is not None:
            self._notify(conversation_id)

    def clear(self) -> None:
        ids = list(self._entries)
        self._entries.clear()
        for conversation_id in ids:
            self._notify(conversation_id)

    def snapshot(self, conversation_id: str) -> StoreSnapshot:
        entry = self._entries.get(conversation_id)
        if entry is None:
            return StoreSnapshot(conversation=None, stale=False)
        return StoreSnapshot(conversation=entry.conversation.copy(), stale=entry.stale)

    def restore(self, conversation_id: str, snapshot: StoreSnapshot) -> None:
        """Put an entry back exactly as snapshotted (absent entries become absent)."""
        if snapshot.conversation is None:
            self._entries.pop(conversation_id, None)
        else:
            self._entries[conversation_id] = _Entry(snapshot.conversation.copy(), snapshot.stale)
        self._notify(conversation_id)

    def subscribe(self, conversation_id: str, listener: Listener) -> Callable[[], None]:
        """
        Register a change listener for one conversation.

        Returns:
            Function that removes the listener
        """
        self._listeners.setdefault(conversation_id, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(conversation_id, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(conversation_id, None)

        return unsubscribe

    def _notify(self, conversation_id: str) -> None:
        current = self.get(conversation_id)
        for listener in list(self._listeners.get(conversation_id, [])):
            try:
                listener(conversation_id, current)
            except Exception:
                logger.exception(f"Store listener for {conversation_id} failed")
