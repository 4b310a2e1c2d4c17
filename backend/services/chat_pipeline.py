"""Server-side chat pipeline: embed, retrieve, assemble, generate, persist."""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from config import (
    RETRIEVAL_TOP_K,
    RELEVANCE_THRESHOLD,
    PROMPT_TOKEN_BUDGET,
    DEGRADE_ON_RETRIEVAL_FAILURE,
)
from errors import ProviderError, TransientNetworkError, UpstreamDegradation
from models.conversation import Message, format_timestamp, utc_now, validate_message
from models.knowledge import KnowledgeSource, ScoredRecord
from services.context_assembler import ContextAssembler, PERSONA_PROMPT
from services.conversation_manager import ConversationManager
from services.embedding_model import EmbeddingModel
from services.llm_client import LLMClient
from services.retrieval_engine import RetrievalEngine

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    """Outcome of one successful pipeline run."""
    conversation_id: str
    response: str
    timestamp: datetime
    passages_used: int = 0
    degraded: bool = False
    latency_ms: int = 0

    @property
    def timestamp_iso(self) -> str:
        return format_timestamp(self.timestamp)


class ChatPipeline:
    """Runs one chat request to completion or to a single typed failure.

    Stateless between requests; every collaborator is injected.
    """

    def __init__(
        self,
        embedding_model: EmbeddingModel,
        retrieval_engine: RetrievalEngine,
        context_assembler: ContextAssembler,
        llm_client: LLMClient,
        conversation_manager: ConversationManager,
        persona_prompt: str = PERSONA_PROMPT,
        top_k: int = RETRIEVAL_TOP_K,
        score_threshold: float = RELEVANCE_THRESHOLD,
        token_budget: int = PROMPT_TOKEN_BUDGET,
        degrade_on_retrieval_failure: bool = DEGRADE_ON_RETRIEVAL_FAILURE,
        sources: Optional[Sequence[KnowledgeSource]] = None
    ):
        self.embedding_model = embedding_model
        self.retrieval_engine = retrieval_engine
        self.context_assembler = context_assembler
        self.llm_client = llm_client
        self.conversation_manager = conversation_manager
        self.persona_prompt = persona_prompt
        self.top_k = top_k
        self.score_threshold = score_threshold
        self.token_budget = token_budget
        self.degrade_on_retrieval_failure = degrade_on_retrieval_failure
        self.sources = sources

    def run(self, owner_id: str, message: str, conversation_id: Optional[str] = None) -> ChatResult:
        """
        Answer a user message and persist the exchange.

        Steps:
        1. Validate the message
        2. Load the conversation history (must belong to owner_id)
        3. Embed the message and retrieve knowledge passages; on failure
           continue without passages unless degradation is disabled
        4. Assemble the prompt within the token budget
        5. Generate the reply
        6. Append the user/assistant pair atomically

        Args:
            owner_id: Authenticated user
            message: User message
            conversation_id: Existing conversation, or None to start one

        Returns:
            ChatResult with the (possibly new) conversation id and reply

        Raises:
            ValidationError, ConversationNotFoundError, TransientNetworkError,
            ProviderError, PersistenceError
        """
        start_time = time.time()
        text = validate_message(message)
        logger.info(f"Processing chat message for owner {owner_id}: {text[:100]}")

        history: List[Message] = []
        if conversation_id:
            history = self.conversation_manager.get_conversation(conversation_id, owner_id).messages

        passages, degraded = self._retrieve_context(text)

        prompt = self.context_assembler.assemble(
            passages=passages,
            history=history,
            persona_prompt=self.persona_prompt,
            user_message=text,
            budget=self.token_budget
        )

        llm_response = self.llm_client.generate(prompt)

        user_message = Message.user(text, timestamp=utc_now())
        assistant_message = Message.assistant(llm_response.text, timestamp=utc_now())
        saved_id = self.conversation_manager.append_exchange(
            conversation_id, owner_id, user_message, assistant_message
        )

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Chat message processed in {latency_ms}ms",
            extra={
                "conversation_id": saved_id,
                "passages_used": prompt.passages_used,
                "history_turns_used": prompt.history_turns_used,
                "prompt_tokens": prompt.token_count,
                "degraded": degraded,
            }
        )

        return ChatResult(
            conversation_id=saved_id,
            response=llm_response.text,
            timestamp=assistant_message.timestamp,
            passages_used=prompt.passages_used,
            degraded=degraded,
            latency_ms=latency_ms
        )

    def _retrieve_context(self, text: str):
        """Embed and retrieve; returns (passages, degraded)."""
        try:
            query_vector = self.embedding_model.embed_text(text)
            passages = self.retrieval_engine.retrieve(
                query_vector,
                top_k=self.top_k,
                score_threshold=self.score_threshold,
                sources=self.sources
            )
            return passages, False
        except (TransientNetworkError, ProviderError) as e:
            if not self.degrade_on_retrieval_failure:
                raise
            degradation = UpstreamDegradation(
                f"Continuing without knowledge context: {e.message}",
                details={"cause": e.code}
            )
            logger.warning(
                degradation.message,
                extra={"error_code": degradation.code, "error_details": degradation.details}
            )
            no_passages: List[ScoredRecord] = []
            return no_passages, True
