"""Typed failures raised across the chat pipeline.

Every stage reports a failure as one of these exceptions. Each carries a
machine-readable ``code``, a user-facing ``message`` and free-form
``details``, and maps onto an HTTP status for the API layer. The client
rebuilds the same types from the ``{"error", "code"}`` envelope with
:func:`error_from_payload`.
"""
from typing import Any, Dict, Optional, Type


class ChatError(Exception):
    """Base class for every pipeline failure."""

    default_code = "CHAT_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize into the API error envelope."""
        return {"error": self.message, "code": self.code}


class ValidationError(ChatError):
    """Empty or over-length message; rejected before any network call."""

    default_code = "VALIDATION_ERROR"
    http_status = 422


class TransientNetworkError(ChatError):
    """Timeout or connectivity failure on an external call. Safe to retry."""

    default_code = "TRANSIENT_NETWORK_ERROR"
    http_status = 503


class UpstreamDegradation(ChatError):
    """Embedding or retrieval failed and the pipeline continued without context.

    Never surfaced to the user.
    """

    default_code = "UPSTREAM_DEGRADED"
    http_status = 200


class ProviderError(ChatError):
    """A provider returned a non-retryable error, bad output, or exhausted retries."""

    default_code = "PROVIDER_ERROR"
    http_status = 502


class PersistenceError(ChatError):
    """The exchange could not be committed."""

    default_code = "PERSISTENCE_ERROR"
    http_status = 500


class ConversationNotFoundError(ChatError):
    default_code = "CONVERSATION_NOT_FOUND"
    http_status = 404


class AuthenticationError(ChatError):
    default_code = "UNAUTHORIZED"
    http_status = 401


class ConcurrentSendError(ChatError):
    """A send is already in flight for this conversation (client side)."""

    default_code = "SEND_IN_PROGRESS"
    http_status = 409


_ERRORS_BY_CODE: Dict[str, Type[ChatError]] = {
    cls.default_code: cls
    for cls in (
        ValidationError,
        TransientNetworkError,
        ProviderError,
        PersistenceError,
        ConversationNotFoundError,
        AuthenticationError,
        ConcurrentSendError,
    )
}

# Specific provider codes that still belong to a known class
_ERRORS_BY_CODE.update({
    "EMPTY_COMPLETION": ProviderError,
    "RATE_LIMIT_ERROR": ProviderError,
    "AUTHENTICATION_ERROR": ProviderError,
    "TIMEOUT_ERROR": TransientNetworkError,
    "CONNECTION_ERROR": TransientNetworkError,
    "CONCURRENT_MODIFICATION": PersistenceError,
})


def error_from_payload(
    message: str,
    code: Optional[str] = None,
    status_code: Optional[int] = None
) -> ChatError:
    """
    Rebuild a typed error from an API error envelope.

    Unknown codes fall back on the HTTP status: 5xx gateway/unavailable
    statuses are transient, everything else a generic ChatError.

    Args:
        message: Error description from the envelope
        code: Optional machine-readable code
        status_code: HTTP status of the response, if any

    Returns:
        ChatError subclass instance matching the code
    """
    cls = _ERRORS_BY_CODE.get(code or "")
    if cls is None:
        if status_code in (502, 503, 504):
            cls = TransientNetworkError
        elif status_code == 422:
            cls = ValidationError
        else:
            cls = ChatError
    return cls(message, code=code, details={"status_code": status_code} if status_code else None)
