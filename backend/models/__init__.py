"""Data models for the Manifest Guru chat backend."""
from .conversation import Conversation, ConversationSummary, Message, validate_message
from .knowledge import EmbeddingRecord, KnowledgeSource, ScoredRecord
from .api import ChatRequest, ChatResponse, ConversationOut, ConversationListItem, ErrorResponse

__all__ = [
    "Conversation",
    "ConversationSummary",
    "Message",
    "validate_message",
    "EmbeddingRecord",
    "KnowledgeSource",
    "ScoredRecord",
    "ChatRequest",
    "ChatResponse",
    "ConversationOut",
    "ConversationListItem",
    "ErrorResponse",
]
