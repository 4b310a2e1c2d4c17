"""Chat session: the client-side context a chat screen works against."""
import logging
from typing import List, Optional

import httpx

from config import CHAT_API_URL, CLIENT_TIMEOUT
from models.conversation import Conversation, ConversationSummary
from client.chat_api import ChatApiClient
from client.conversation_store import ConversationStore
from client.dispatcher import MessageDispatcher, SendResult
from client.transaction import TransactionRegistry

logger = logging.getLogger(__name__)


class ChatSession:
    """
    Owns the API client, the conversation store and the dispatcher for one
    signed-in user, and tracks which conversation is active.

    Usage:
        async with ChatSession(access_token=token) as session:
            result = await session.send_message("How do I start meditating?")
            conversation = await session.load_conversation(result.conversation_id)
    """

    def __init__(
        self,
        base_url: str = CHAT_API_URL,
        access_token: Optional[str] = None,
        timeout: float = CLIENT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api = ChatApiClient(
            base_url=base_url,
            access_token=access_token,
            timeout=timeout,
            transport=transport
        )
        self.store = ConversationStore()
        self.registry = TransactionRegistry(self.store)
        self.dispatcher = MessageDispatcher(self.api, self.store, self.registry)
        self.current_conversation_id: Optional[str] = None
        self._closed = False

    async def send_message(self, text: str) -> SendResult:
        """Send to the active conversation; the first send adopts the new id."""
        result = await self.dispatcher.send(self.current_conversation_id, text)
        if self.current_conversation_id is None and not self._closed:
            self.current_conversation_id = result.conversation_id
            logger.info(f"Started conversation {result.conversation_id}")
        return result

    async def load_conversation(self, conversation_id: str) -> Conversation:
        """Make a conversation active, fetching it if it is not cached or is stale."""
        self.current_conversation_id = conversation_id
        cached = self.store.get(conversation_id)
        if cached is not None and not self.store.is_stale(conversation_id):
            return cached

        conversation = await self.api.get_conversation(conversation_id)
        self.store.set(conversation_id, conversation)
        return self.store.get(conversation_id)

    def start_new_conversation(self) -> None:
        self.current_conversation_id = None

    async def list_conversations(self) -> List[ConversationSummary]:
        return await self.api.list_conversations()

    async def delete_conversation(self, conversation_id: str) -> None:
        await self.api.delete_conversation(conversation_id)
        self.dispatcher.abandon(conversation_id)
        self.store.remove(conversation_id)
        if self.current_conversation_id == conversation_id:
            self.current_conversation_id = None

    async def close(self) -> None:
        """Abandon in-flight sends and close the HTTP client."""
        if self._closed:
            return
        self._closed = True
        self.registry.abandon_all()
        await self.api.aclose()

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
