"""Unit tests for ChatPipeline."""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import Mock
from errors import (
    ConversationNotFoundError,
    PersistenceError,
    ProviderError,
    TransientNetworkError,
    ValidationError,
)
from models.knowledge import EmbeddingRecord, KnowledgeSource
from services.chat_pipeline import ChatPipeline
from services.context_assembler import ContextAssembler
from services.conversation_manager import ConversationManager
from services.llm_client import LLMResponse
from services.retrieval_engine import RetrievalEngine
from services.vector_store import InMemoryVectorStore

OWNER = "user-1"


def llm_reply(text="Start with five quiet breaths each morning."):
    return LLMResponse(text=text, tokens_input=100, tokens_output=12, latency_ms=5, model_used="test-model")


@pytest.fixture
def knowledge():
    return InMemoryVectorStore([
        EmbeddingRecord("m1", "Meditation begins with the breath.", KnowledgeSource.SHI_HENG_YI,
                        embedding=[1.0, 0.0, 0.0]),
        EmbeddingRecord("t1", "Energy, frequency and vibration.", KnowledgeSource.TESLA,
                        embedding=[0.0, 1.0, 0.0]),
    ])


@pytest.fixture
def embedding_model():
    model = Mock()
    model.embed_text.return_value = [1.0, 0.0, 0.0]
    return model


@pytest.fixture
def llm_client():
    client = Mock()
    client.generate.return_value = llm_reply()
    return client


@pytest.fixture
def manager(fake_supabase):
    return ConversationManager(client=fake_supabase)


@pytest.fixture
def pipeline(embedding_model, knowledge, llm_client, manager):
    return ChatPipeline(
        embedding_model=embedding_model,
        retrieval_engine=RetrievalEngine(knowledge),
        context_assembler=ContextAssembler(token_counter=lambda text: len(text.split())),
        llm_client=llm_client,
        conversation_manager=manager
    )


class TestChatPipeline:

    def test_new_conversation(self, pipeline, manager, llm_client):
        """A first message creates a conversation holding the exchange."""
        result = pipeline.run(OWNER, "  How do I start meditating?  ")

        conversation = manager.get_conversation(result.conversation_id, OWNER)
        assert [(m.role, m.content) for m in conversation.messages] == [
            ("user", "How do I start meditating?"),
            ("assistant", "Start with five quiet breaths each morning."),
        ]
        assert result.response == "Start with five quiet breaths each morning."
        assert result.timestamp == conversation.messages[1].timestamp
        assert result.passages_used == 1
        assert not result.degraded

        prompt = llm_client.generate.call_args.args[0]
        assert "Meditation begins with the breath." in prompt.system
        assert "Energy, frequency" not in prompt.system

    def test_existing_conversation_uses_history(self, pipeline, manager, llm_client):
        first = pipeline.run(OWNER, "How do I start meditating?")
        llm_client.generate.return_value = llm_reply("Sit a little longer each day.")

        second = pipeline.run(OWNER, "And after a week?", conversation_id=first.conversation_id)

        assert second.conversation_id == first.conversation_id
        conversation = manager.get_conversation(first.conversation_id)
        assert len(conversation.messages) == 4
        prompt = llm_client.generate.call_args.args[0]
        assert [m["content"] for m in prompt.messages] == [
            "How do I start meditating?",
            "Start with five quiet breaths each morning.",
            "And after a week?",
        ]

    def test_validation_before_any_call(self, pipeline, embedding_model, llm_client, fake_supabase):
        with pytest.raises(ValidationError):
            pipeline.run(OWNER, "   ")
        with pytest.raises(ValidationError):
            pipeline.run(OWNER, "x" * 1001)

        embedding_model.embed_text.assert_not_called()
        llm_client.generate.assert_not_called()
        assert fake_supabase.get_table().calls == []

    def test_unknown_conversation(self, pipeline, llm_client):
        with pytest.raises(ConversationNotFoundError):
            pipeline.run(OWNER, "Hello", conversation_id="missing")
        llm_client.generate.assert_not_called()

    def test_other_owners_conversation(self, pipeline):
        first = pipeline.run(OWNER, "Hello")

        with pytest.raises(ConversationNotFoundError):
            pipeline.run("someone-else", "Hello", conversation_id=first.conversation_id)

    def test_no_relevant_knowledge_still_answers(self, pipeline, embedding_model, llm_client):
        embedding_model.embed_text.return_value = [0.0, 0.0, 1.0]

        result = pipeline.run(OWNER, "Tell me something")

        assert result.passages_used == 0
        assert not result.degraded
        assert "No specific context retrieved" in llm_client.generate.call_args.args[0].system

    @pytest.mark.parametrize("failure", [TransientNetworkError("timeout"), ProviderError("bad key")])
    def test_embedding_failure_degrades(self, pipeline, embedding_model, llm_client, manager, failure):
        """Embedding failures continue with an empty context."""
        embedding_model.embed_text.side_effect = failure

        result = pipeline.run(OWNER, "How do I start meditating?")

        assert result.degraded
        assert result.passages_used == 0
        assert len(manager.get_conversation(result.conversation_id).messages) == 2

    def test_retrieval_failure_degrades(self, embedding_model, llm_client, manager):
        store = Mock()
        store.search.side_effect = ProviderError("rpc missing", code="KNOWLEDGE_STORE_ERROR")
        pipeline = ChatPipeline(embedding_model, RetrievalEngine(store), ContextAssembler(token_counter=len), llm_client, manager)

        result = pipeline.run(OWNER, "Hello")

        assert result.degraded

    def test_degradation_can_be_disabled(self, embedding_model, knowledge, llm_client, manager):
        embedding_model.embed_text.side_effect = TransientNetworkError("timeout")
        pipeline = ChatPipeline(
            embedding_model, RetrievalEngine(knowledge), ContextAssembler(token_counter=len), llm_client, manager,
            degrade_on_retrieval_failure=False
        )

        with pytest.raises(TransientNetworkError):
            pipeline.run(OWNER, "Hello")
        llm_client.generate.assert_not_called()

    def test_llm_failure_persists_nothing(self, pipeline, llm_client, fake_supabase):
        llm_client.generate.side_effect = ProviderError("empty", code="EMPTY_COMPLETION")

        with pytest.raises(ProviderError):
            pipeline.run(OWNER, "Hello")

        assert fake_supabase.get_table().rows == []

    def test_persistence_failure_propagates(self, pipeline, fake_supabase):
        fake_supabase.get_table().failures.append(Exception("disk full"))

        with pytest.raises(PersistenceError):
            pipeline.run(OWNER, "Hello")

    def test_result_timestamp_iso(self, pipeline):
        result = pipeline.run(OWNER, "Hello")

        assert result.timestamp_iso.endswith("Z")
