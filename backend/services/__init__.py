"""Services for the Manifest Guru chat backend."""
from .embedding_model import EmbeddingModel
from .vector_store import VectorStore, InMemoryVectorStore
from .retrieval_engine import RetrievalEngine
from .context_assembler import ContextAssembler, AssembledPrompt, PERSONA_PROMPT
from .llm_client import LLMClient, LLMResponse
from .conversation_manager import ConversationManager
from .chat_pipeline import ChatPipeline, ChatResult
from .chunking_engine import ChunkingEngine
from .auth import AuthContext

__all__ = ['EmbeddingModel', 'VectorStore', 'InMemoryVectorStore', 'RetrievalEngine', 'ContextAssembler', 'AssembledPrompt', 'PERSONA_PROMPT', 'LLMClient', 'LLMResponse', 'ConversationManager', 'ChatPipeline', 'ChatResult', 'ChunkingEngine', 'AuthContext']
