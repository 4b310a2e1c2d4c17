"""Conversation persistence in Supabase PostgreSQL."""
import logging
import uuid
from typing import List, Optional
import httpx
from supabase import create_client, Client

from models.conversation import (
    Conversation,
    ConversationSummary,
    Message,
    USER,
    ASSISTANT,
    format_timestamp,
    make_title,
    parse_timestamp,
    utc_now,
)
from config import SUPABASE_URL, SUPABASE_KEY, CONVERSATIONS_TABLE, PERSISTENCE_MAX_RETRIES
from errors import ChatError, ConversationNotFoundError, PersistenceError, TransientNetworkError

logger = logging.getLogger(__name__)


class ConversationManager:
    """Durable store of chat conversations, one row per conversation.

    The whole message list lives in a JSON column, so an exchange is appended
    with a single insert or a single conditional update: both messages are
    committed together or not at all.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        table_name: str = CONVERSATIONS_TABLE,
        max_retries: int = PERSISTENCE_MAX_RETRIES
    ):
        """
        Initialize the conversation manager.

        Args:
            client: Supabase client (created from SUPABASE_URL/SUPABASE_KEY if omitted)
            table_name: Conversations table
            max_retries: Attempts when a concurrent write changes the row under us
        """
        if client is None:
            if not SUPABASE_URL or not SUPABASE_KEY:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")
            client = create_client(SUPABASE_URL, SUPABASE_KEY)

        self.client = client
        self.table_name = table_name
        self.max_retries = max_retries
        logger.info("ConversationManager initialized with Supabase")

    def append_exchange(
        self,
        conversation_id: Optional[str],
        owner_id: str,
        user_message: Message,
        assistant_message: Message
    ) -> str:
        """
        Append a user/assistant message pair, creating the conversation if needed.

        Args:
            conversation_id: Existing conversation, or None to create one
            owner_id: Owner of the conversation
            user_message: The user's message
            assistant_message: The assistant's reply

        Returns:
            ID of the conversation the exchange was appended to

        Raises:
            ValueError: If the messages are not a user message followed by an assistant reply
            ConversationNotFoundError: If conversation_id does not exist for this owner
            PersistenceError: If the write fails or keeps conflicting
            TransientNetworkError: On connectivity failure
        """
        if user_message.role != USER or assistant_message.role != ASSISTANT:
            raise ValueError("An exchange is a user message followed by an assistant message")

        exchange = [user_message.to_record(), assistant_message.to_record()]

        if not conversation_id:
            return self._create(owner_id, exchange, title=make_title(user_message.content))

        for attempt in range(1, self.max_retries + 1):
            row = self._fetch_row(conversation_id, owner_id, columns="id, messages, updated_at")
            now = format_timestamp(utc_now())

            # Conditional on updated_at so a concurrent append is never overwritten
            result = self._execute(
                lambda: self.client.table(self.table_name)
                .update({"messages": (row.get("messages") or []) + exchange, "updated_at": now})
                .eq("id", conversation_id)
                .eq("updated_at", row["updated_at"])
                .execute(),
                f"append to conversation {conversation_id}"
            )

            if result.data:
                logger.info(f"Appended exchange to conversation {conversation_id}")
                return conversation_id

            logger.warning(
                f"Conversation {conversation_id} changed during append "
                f"(attempt {attempt}/{self.max_retries})"
            )

        raise PersistenceError(
            f"Conversation {conversation_id} kept changing; exchange not saved",
            code="CONCURRENT_MODIFICATION",
            details={"conversation_id": conversation_id, "attempts": self.max_retries}
        )

    def get_conversation(self, conversation_id: str, owner_id: Optional[str] = None) -> Conversation:
        """
        Load a conversation with all its messages.

        Args:
            conversation_id: ID of the conversation
            owner_id: If given, the conversation must belong to this owner

        Returns:
            Conversation with messages in send order

        Raises:
            ConversationNotFoundError: If it does not exist (or belongs to someone else)
        """
        row = self._fetch_row(conversation_id, owner_id, columns="*")
        conversation = Conversation.from_record(row)
        logger.debug(f"Loaded conversation {conversation_id} with {len(conversation.messages)} messages")
        return conversation

    def list_conversations(self, owner_id: str) -> List[ConversationSummary]:
        """
        List an owner's conversations, most recently updated first.

        Args:
            owner_id: Owner of the conversations

        Returns:
            Summaries with a preview of each conversation's last message
        """
        result = self._execute(
            lambda: self.client.table(self.table_name)
            .select("id, title, messages, updated_at")
            .eq("user_id", owner_id)
            .order("updated_at", desc=True)
            .execute(),
            f"list conversations for {owner_id}"
        )

        summaries = []
        for row in result.data or []:
            messages = row.get("messages") or []
            summaries.append(ConversationSummary(
                id=row["id"],
                title=row.get("title"),
                last_message=messages[-1].get("content", "") if messages else "",
                updated_at=parse_timestamp(row["updated_at"]),
            ))

        # Keep the ordering contract even if the backend ignored order()
        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    def delete_conversation(self, conversation_id: str, owner_id: str) -> None:
        """
        Delete a conversation.

        Raises:
            ConversationNotFoundError: If nothing was deleted
        """
        result = self._execute(
            lambda: self.client.table(self.table_name)
            .delete()
            .eq("id", conversation_id)
            .eq("user_id", owner_id)
            .execute(),
            f"delete conversation {conversation_id}"
        )
        if not result.data:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        logger.info(f"Deleted conversation {conversation_id}")

    def _create(self, owner_id: str, exchange: List[dict], title: str) -> str:
        new_id = self._generate_conversation_id()
        now = format_timestamp(utc_now())

        self._execute(
            lambda: self.client.table(self.table_name).insert({
                "id": new_id,
                "user_id": owner_id,
                "title": title,
                "messages": exchange,
                "created_at": now,
                "updated_at": now,
            }).execute(),
            "create conversation"
        )

        logger.info(f"Created new conversation: {new_id}")
        return new_id

    def _fetch_row(self, conversation_id: str, owner_id: Optional[str], columns: str) -> dict:
        def query():
            builder = self.client.table(self.table_name).select(columns).eq("id", conversation_id)
            if owner_id is not None:
                builder = builder.eq("user_id", owner_id)
            return builder.limit(1).execute()

        result = self._execute(query, f"load conversation {conversation_id}")
        if not result.data:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return result.data[0]

    def _execute(self, operation, action: str):
        try:
            return operation()
        except ChatError:
            raise
        except httpx.TimeoutException as e:
            logger.error(f"Timeout trying to {action}: {e}")
            raise TransientNetworkError(f"Timed out trying to {action}")
        except httpx.TransportError as e:
            logger.error(f"Network error trying to {action}: {e}")
            raise TransientNetworkError(f"Network error trying to {action}")
        except Exception as e:
            logger.error(f"Error trying to {action}: {e}")
            raise PersistenceError(f"Failed to {action}", details={"original_error": str(e)})

    def _generate_conversation_id(self) -> str:
        """
        Generate a unique conversation ID.

        Returns:
            UUID string, matching the table's uuid primary key
        """
        return str(uuid.uuid4())
