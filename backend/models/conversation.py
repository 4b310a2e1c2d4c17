"""Conversation data models."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from config import AI_MESSAGE_MAX_LENGTH, TITLE_MAX_LENGTH
from errors import ValidationError

USER = "user"
ASSISTANT = "assistant"
ROLES = (USER, ASSISTANT)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as ISO-8601 in UTC with a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Union[str, int, float, datetime]) -> datetime:
    """
    Parse a timestamp from Supabase or from a stored message.

    Supabase can return timestamps with varying microsecond precision,
    which Python's fromisoformat() can't always handle, and older message
    records stored epoch milliseconds instead of ISO strings.

    Args:
        value: ISO-8601 string, epoch milliseconds, or datetime

    Returns:
        Timezone-aware datetime
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)

    timestamp_str = value.replace("Z", "+00:00")

    # Format: 2026-02-21T02:08:26.18976+00:00
    if "." in timestamp_str:
        head, tail = timestamp_str.split(".", 1)
        tz_index = max(tail.find("+"), tail.find("-"))
        if tz_index == -1:
            fraction, tz = tail, ""
        else:
            fraction, tz = tail[:tz_index], tail[tz_index:]
        # Truncate or pad microseconds to 6 digits
        timestamp_str = f"{head}.{fraction[:6].ljust(6, '0')}{tz}"

    parsed = datetime.fromisoformat(timestamp_str)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def validate_message(text: Optional[str], max_length: int = AI_MESSAGE_MAX_LENGTH) -> str:
    """
    Validate a chat message and return it trimmed.

    Args:
        text: Raw message text
        max_length: Maximum number of characters after trimming

    Returns:
        The trimmed message

    Raises:
        ValidationError: If the message is empty or too long
    """
    if text is None or not isinstance(text, str):
        raise ValidationError("Message is required")

    trimmed = text.strip()
    if not trimmed:
        raise ValidationError("Message cannot be empty")
    if len(trimmed) > max_length:
        raise ValidationError(
            f"Message too long ({len(trimmed)} characters, maximum {max_length})",
            details={"length": len(trimmed), "max_length": max_length}
        )
    return trimmed


def make_title(first_message: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    """Conversation title derived from the first user message."""
    return first_message[:max_length] + "..."


@dataclass(frozen=True)
class Message:
    """A single chat message."""
    role: str
    content: str
    timestamp: datetime

    @classmethod
    def user(cls, content: str, timestamp: Optional[datetime] = None) -> "Message":
        return cls(role=USER, content=content, timestamp=timestamp or utc_now())

    @classmethod
    def assistant(cls, content: str, timestamp: Optional[datetime] = None) -> "Message":
        return cls(role=ASSISTANT, content=content, timestamp=timestamp or utc_now())

    def to_record(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Message":
        role = data.get("role")
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(
            role=role,
            content=data.get("content") or "",
            timestamp=parse_timestamp(data["timestamp"]),
        )


@dataclass
class Conversation:
    """A chat conversation between one owner and the assistant."""
    id: str
    owner_id: str
    messages: List[Message] = field(default_factory=list)
    title: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def copy(self) -> "Conversation":
        """Copy with an independent message list (messages themselves are immutable)."""
        return replace(self, messages=list(self.messages))

    def with_messages(self, *messages: Message) -> "Conversation":
        return replace(self, messages=[*self.messages, *messages])

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the persisted row / API representation."""
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "title": self.title,
            "messages": [message.to_record() for message in self.messages],
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            owner_id=data.get("user_id") or "",
            title=data.get("title"),
            messages=[Message.from_record(m) for m in (data.get("messages") or [])],
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
        )


@dataclass
class ConversationSummary:
    """Conversation list item with a preview of the last message."""
    id: str
    title: Optional[str]
    last_message: str
    updated_at: datetime

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "last_message": self.last_message,
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "ConversationSummary":
        return cls(
            id=data["id"],
            title=data.get("title"),
            last_message=data.get("last_message") or "",
            updated_at=parse_timestamp(data["updated_at"]),
        )
