"""API request/response models."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import AI_MESSAGE_MAX_LENGTH


class ChatRequest(BaseModel):
    """Request body for POST /chat."""
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    message: str

    @field_validator("message")
    @classmethod
    def message_length(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Message cannot be empty")
        if len(trimmed) > AI_MESSAGE_MAX_LENGTH:
            raise ValueError(f"Message too long (maximum {AI_MESSAGE_MAX_LENGTH} characters)")
        return trimmed


class ChatResponse(BaseModel):
    """Successful reply from POST /chat."""
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")
    response: str
    timestamp: str


class MessageOut(BaseModel):
    role: str
    content: str
    timestamp: str


class ConversationOut(BaseModel):
    """Persisted conversation record."""
    id: str
    user_id: str
    title: Optional[str] = None
    messages: List[MessageOut]
    created_at: str
    updated_at: str


class ConversationListItem(BaseModel):
    id: str
    title: Optional[str] = None
    last_message: str
    updated_at: str


class ErrorResponse(BaseModel):
    """Error envelope; never combined with a partial success object."""
    error: str
    code: Optional[str] = None
