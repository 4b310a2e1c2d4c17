"""Client-side message dispatcher: optimistic send with rollback."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from errors import ChatError, PersistenceError, TransientNetworkError
from models.conversation import Message, validate_message
from client.chat_api import ChatApiClient, SendMessageResponse
from client.conversation_store import ConversationStore
from client.transaction import OptimisticTransaction, TransactionRegistry

logger = logging.getLogger(__name__)

# Failures after which the server may or may not hold the exchange
UNCERTAIN_ERRORS = (TransientNetworkError, PersistenceError, asyncio.CancelledError)


@dataclass
class SendResult:
    conversation_id: str
    reply_text: str
    timestamp: datetime


class MessageDispatcher:
    """
    Sends user messages with an optimistic store update.

    The user message shows up in the store before the network call. On
    success the store is reconciled with the persisted conversation; on
    failure it is put back exactly as it was and the typed error re-raised.
    """

    def __init__(
        self,
        api: ChatApiClient,
        store: ConversationStore,
        registry: Optional[TransactionRegistry] = None
    ):
        self.api = api
        self.store = store
        self.registry = registry or TransactionRegistry(store)

    def is_sending(self, conversation_id: Optional[str]) -> bool:
        return self.registry.in_flight(conversation_id)

    def abandon(self, conversation_id: Optional[str]) -> None:
        """Detach the in-flight send for a conversation; its late response is ignored."""
        self.registry.abandon(conversation_id)

    async def send(self, conversation_id: Optional[str], text: str) -> SendResult:
        """
        Send a message to an existing conversation, or start a new one.

        Args:
            conversation_id: Target conversation, None for a new conversation
            text: Raw message text

        Returns:
            SendResult with the confirmed conversation id and the reply

        Raises:
            ValidationError: Empty or too long message (nothing sent)
            ConcurrentSendError: A send for this conversation is in flight
            ChatError: Whatever the server reported; the store is rolled back
        """
        # Both checks run before the first await
        message_text = validate_message(text)
        transaction = self.registry.begin(conversation_id)

        try:
            transaction.snapshot()
            transaction.apply(Message.user(message_text))
            response = await self.api.send_message(conversation_id, message_text)
        except (Exception, asyncio.CancelledError) as e:
            self._roll_back(transaction, e)
            raise

        try:
            if not self.registry.is_current(transaction):
                logger.info(
                    f"Ignoring late response for abandoned send to {conversation_id!r}"
                )
            else:
                transaction.commit()
                await self._reconcile(transaction, response)
        finally:
            self.registry.release(transaction)

        return SendResult(
            conversation_id=response.conversation_id,
            reply_text=response.response,
            timestamp=response.timestamp
        )

    def _roll_back(self, transaction: OptimisticTransaction, error: BaseException) -> None:
        try:
            if not self.registry.is_current(transaction):
                logger.info(f"Send to {transaction.key!r} failed after abandon: {error!r}")
                return

            transaction.revert()
            if isinstance(error, UNCERTAIN_ERRORS) and transaction.key is not None:
                self.store.invalidate(transaction.key)

            code = error.code if isinstance(error, ChatError) else type(error).__name__
            logger.warning(
                f"Send to {transaction.key!r} failed, rolled back: {code}",
                extra={"error_code": code}
            )
        finally:
            self.registry.release(transaction)

    async def _reconcile(self, transaction: OptimisticTransaction, response: SendMessageResponse) -> None:
        """Show the reply, then replace the entry with the persisted conversation."""
        conversation_id = response.conversation_id
        self.store.append(conversation_id, Message.assistant(response.response, response.timestamp))
        self.store.invalidate(conversation_id)
        try:
            conversation = await self.api.get_conversation(conversation_id)
        except ChatError as e:
            # The exchange is persisted; the stale entry is refetched on next load
            logger.warning(
                f"Refetch of {conversation_id} after send failed: {e.code}",
                extra={"error_code": e.code}
            )
            return
        if not self.registry.is_current(transaction):
            logger.info(f"Dropping refetch of {conversation_id}: send was abandoned")
            return
        self.store.set(conversation_id, conversation)
