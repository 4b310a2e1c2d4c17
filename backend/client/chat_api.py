"""HTTP client for the chat API, used by the client-side dispatcher."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from config import CHAT_API_URL, CLIENT_TIMEOUT
from errors import ChatError, ProviderError, TransientNetworkError, error_from_payload
from models.conversation import Conversation, ConversationSummary, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class SendMessageResponse:
    conversation_id: str
    response: str
    timestamp: datetime


class ChatApiClient:
    """Async client for POST /chat and the conversation read endpoints."""

    def __init__(
        self,
        base_url: str = CHAT_API_URL,
        access_token: Optional[str] = None,
        timeout: float = CLIENT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            base_url: API root URL
            access_token: Supabase session JWT sent as a bearer token
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests, ASGI apps)
        """
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport
        )

    async def send_message(self, conversation_id: Optional[str], message: str) -> SendMessageResponse:
        """
        Send a message; creates a conversation when conversation_id is None.

        Raises:
            ChatError subclass matching the server's error code
        """
        body: Dict[str, Any] = {"message": message}
        if conversation_id:
            body["conversationId"] = conversation_id

        data = await self._request("POST", "/chat", json=body)
        try:
            return SendMessageResponse(
                conversation_id=data["conversationId"],
                response=data["response"],
                timestamp=parse_timestamp(data["timestamp"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"Malformed chat response: {e}", code="MALFORMED_RESPONSE")

    async def get_conversation(self, conversation_id: str) -> Conversation:
        data = await self._request("GET", f"/conversations/{conversation_id}")
        return Conversation.from_record(data)

    async def list_conversations(self) -> List[ConversationSummary]:
        data = await self._request("GET", "/conversations")
        return [ConversationSummary.from_record(item) for item in data]

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request("DELETE", f"/conversations/{conversation_id}")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"[ChatApiClient] {method} {path} timed out: {e}")
            raise TransientNetworkError("The request timed out. Please try again.")
        except httpx.TransportError as e:
            logger.error(f"[ChatApiClient] {method} {path} failed: {e}")
            raise TransientNetworkError("Could not reach the server. Please try again.")

        if response.status_code == 204:
            return None

        if response.is_success:
            try:
                return response.json()
            except ValueError:
                raise ProviderError("Server returned invalid JSON", code="MALFORMED_RESPONSE")

        raise self._error_from_response(response)

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ChatError:
        message, code = None, None
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            message = payload.get("error")
            code = payload.get("code")
        message = message or f"Request failed with status {response.status_code}"
        logger.error(f"[ChatApiClient] Error response {response.status_code}: {code} {message}")
        return error_from_payload(message, code=code, status_code=response.status_code)
