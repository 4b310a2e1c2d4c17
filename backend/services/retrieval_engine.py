"""Retrieval engine for ranking knowledge passages against a query vector."""
import logging
from typing import List, Optional, Protocol, Sequence
from models.knowledge import KnowledgeSource, ScoredRecord
from config import RETRIEVAL_TOP_K, RELEVANCE_THRESHOLD

logger = logging.getLogger(__name__)


class KnowledgeIndex(Protocol):
    def search(
        self,
        query_embedding: List[float],
        top_k: int = 5,
        score_threshold: float = 0.0,
        sources: Optional[Sequence[KnowledgeSource]] = None
    ) -> List[ScoredRecord]:
        ...


class RetrievalEngine:
    """Top-K similarity retrieval over the partitioned knowledge corpus."""

    def __init__(self, vector_store: KnowledgeIndex):
        """
        Initialize the retrieval engine.

        Args:
            vector_store: VectorStore or InMemoryVectorStore used for similarity search
        """
        self.vector_store = vector_store
        logger.info("Initialized RetrievalEngine")

    def retrieve(
        self,
        query_vector: List[float],
        top_k: int = RETRIEVAL_TOP_K,
        score_threshold: float = RELEVANCE_THRESHOLD,
        sources: Optional[Sequence[KnowledgeSource]] = None
    ) -> List[ScoredRecord]:
        """
        Retrieve the top-K knowledge records above a similarity threshold.

        The store does the similarity search; the engine then enforces the
        ranking contract itself:
        1. Keep only records scoring strictly above score_threshold
        2. Sort by similarity, highest first (ties keep store order)
        3. Truncate to top_k

        An empty corpus or a query with no sufficiently similar record gives
        an empty list, which is a normal outcome.

        Args:
            query_vector: Embedding of the user message
            top_k: Maximum number of records to return
            score_threshold: Minimum similarity (exclusive)
            sources: Optional knowledge partitions to search

        Returns:
            Ranked list of scored records, possibly empty

        Raises:
            ValueError: If query_vector is empty or top_k is not positive
            TransientNetworkError, ProviderError: Propagated from the store
        """
        if not query_vector:
            raise ValueError("Query vector cannot be empty")

        if top_k <= 0:
            raise ValueError("top_k must be positive")

        logger.debug(f"Searching for top {top_k} records above {score_threshold}")
        candidates = self.vector_store.search(
            query_vector,
            top_k=top_k,
            score_threshold=score_threshold,
            sources=sources
        )

        if not candidates:
            logger.info("No knowledge records found for query")
            return []

        ranked = sorted(
            (c for c in candidates if c.similarity > score_threshold),
            key=lambda c: c.similarity,
            reverse=True
        )[:top_k]

        if ranked:
            logger.info(
                f"Retrieved {len(ranked)} records "
                f"(top score: {ranked[0].similarity:.3f}, threshold: {score_threshold:.3f})"
            )
        else:
            logger.info(f"No records above relevance threshold {score_threshold}")

        return ranked
