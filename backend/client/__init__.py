"""Async client side of the chat: API client, store, dispatcher and session."""
from .chat_api import ChatApiClient, SendMessageResponse
from .conversation_store import ConversationStore, StoreSnapshot
from .transaction import OptimisticTransaction, TransactionRegistry, TransactionState
from .dispatcher import MessageDispatcher, SendResult
from .session import ChatSession

__all__ = ['ChatApiClient', 'SendMessageResponse', 'ConversationStore', 'StoreSnapshot', 'OptimisticTransaction', 'TransactionRegistry', 'TransactionState', 'MessageDispatcher', 'SendResult', 'ChatSession']
