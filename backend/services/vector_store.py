"""Knowledge stores: Supabase pgvector and an in-process numpy index."""
import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence
import httpx
import numpy as np
from supabase import create_client, Client
from models.knowledge import EmbeddingRecord, KnowledgeSource, ScoredRecord
from config import SUPABASE_URL, SUPABASE_KEY, KNOWLEDGE_TABLE, KNOWLEDGE_MATCH_FUNCTION
from errors import ChatError, ProviderError, TransientNetworkError

logger = logging.getLogger(__name__)

# Over-fetch factor when filtering by source after the RPC call
SOURCE_FILTER_OVERSAMPLE = 4


def _source_values(sources: Optional[Sequence[KnowledgeSource]]) -> Optional[set]:
    if not sources:
        return None
    return {KnowledgeSource(s).value for s in sources}


class VectorStore:
    """Knowledge embeddings in Supabase pgvector, searched by cosine similarity."""

    def __init__(
        self,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY,
        table_name: str = KNOWLEDGE_TABLE,
        match_function: str = KNOWLEDGE_MATCH_FUNCTION
    ):
        """
        Initialize the vector store with Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the knowledge table
            match_function: Name of the similarity search RPC

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")

        self.table_name = table_name
        self.match_function = match_function
        self.client: Client = create_client(supabase_url, supabase_key)

        logger.info(f"Initialized VectorStore with table: {table_name}")

    def add_records(self, records: List[EmbeddingRecord]) -> None:
        """
        Insert embedding records. Used by ingestion only.

        Args:
            records: Records with embeddings already computed

        Raises:
            ValueError: If records is empty or a record has no embedding
            TransientNetworkError: On connectivity failure
            ProviderError: If the database rejects the insert
        """
        if not records:
            raise ValueError("Records list cannot be empty")

        rows = []
        for record in records:
            if record.embedding is None:
                raise ValueError(f"Record {record.record_id} has no embedding")
            metadata = dict(record.metadata)
            if record.source is not None:
                metadata["source"] = record.source.value
            rows.append({
                "id": record.record_id,
                "content": record.content,
                "embedding": list(record.embedding),
                "metadata": metadata,
            })

        self._execute(
            lambda: self.client.table(self.table_name).insert(rows).execute(),
            "add records to knowledge store"
        )
        logger.info(f"Added {len(rows)} records to {self.table_name}")

    def search(
        self,
        query_embedding: List[float],
        top_k: int = 5,
        score_threshold: float = 0.0,
        sources: Optional[Sequence[KnowledgeSource]] = None
    ) -> List[ScoredRecord]:
        """
        Find knowledge records most similar to the query embedding.

        The RPC is expected to be defined in Supabase as:

            CREATE OR REPLACE FUNCTION match_knowledge(
              query_embedding vector(1536),
              match_threshold float,
              match_count int
            )
            RETURNS TABLE (id uuid, content text, metadata jsonb, similarity float)
            ...
              SELECT id, content, metadata,
                     1 - (embedding <=> query_embedding) AS similarity
              FROM knowledge_embeddings
              WHERE 1 - (embedding <=> query_embedding) > match_threshold
              ORDER BY embedding <=> query_embedding
              LIMIT match_count;

        Args:
            query_embedding: Embedding vector for the user message
            top_k: Number of records to retrieve
            score_threshold: Minimum similarity passed to the RPC
            sources: Optional knowledge partitions to restrict the search to

        Returns:
            ScoredRecord list as returned by the database

        Raises:
            ValueError: If query_embedding is empty or top_k is invalid
            TransientNetworkError: On connectivity failure
            ProviderError: If the RPC fails
        """
        if not query_embedding:
            raise ValueError("Query embedding cannot be empty")

        if top_k <= 0:
            raise ValueError("top_k must be positive")

        wanted = _source_values(sources)
        match_count = top_k * SOURCE_FILTER_OVERSAMPLE if wanted else top_k

        response = self._execute(
            lambda: self.client.rpc(
                self.match_function,
                {
                    "query_embedding": list(query_embedding),
                    "match_threshold": score_threshold,
                    "match_count": match_count
                }
            ).execute(),
            "search knowledge store"
        )

        scored = []
        for row in response.data or []:
            record = self._row_to_record(row)
            if wanted and (record.source is None or record.source.value not in wanted):
                continue
            scored.append(ScoredRecord(record=record, similarity=float(row["similarity"])))

        logger.debug(f"Found {len(scored)} knowledge matches")
        return scored

    def count(self, source: Optional[KnowledgeSource] = None) -> int:
        """Number of stored records, optionally for one source."""
        def query():
            builder = self.client.table(self.table_name).select("id", count="exact")
            if source is not None:
                builder = builder.eq("metadata->>source", KnowledgeSource(source).value)
            return builder.execute()

        response = self._execute(query, "count knowledge records")
        return response.count if response.count is not None else 0

    def clear(self, source: KnowledgeSource) -> None:
        """Delete every record of one source, ahead of re-ingesting it."""
        self._execute(
            lambda: self.client.table(self.table_name)
            .delete()
            .eq("metadata->>source", KnowledgeSource(source).value)
            .execute(),
            "clear knowledge source"
        )
        logger.info(f"Cleared knowledge source {KnowledgeSource(source).value}")

    @staticmethod
    def _row_to_record(row: Dict[str, Any]) -> EmbeddingRecord:
        metadata = row.get("metadata") or {}
        return EmbeddingRecord(
            record_id=str(row["id"]),
            content=row["content"],
            source=KnowledgeSource.parse(metadata.get("source")),
            metadata=metadata,
        )

    @staticmethod
    def _execute(operation, action: str):
        try:
            return operation()
        except httpx.TimeoutException as e:
            logger.error(f"Timeout trying to {action}: {e}")
            raise TransientNetworkError(f"Timed out trying to {action}")
        except httpx.TransportError as e:
            logger.error(f"Network error trying to {action}: {e}")
            raise TransientNetworkError(f"Network error trying to {action}: {e}")
        except ChatError:
            raise
        except Exception as e:
            error_msg = f"Failed to {action}: {str(e)}"
            logger.error(error_msg)
            raise ProviderError(error_msg, code="KNOWLEDGE_STORE_ERROR")


class InMemoryVectorStore:
    """In-process knowledge index using numpy cosine similarity.

    Serves local development and tests with the same search contract as
    VectorStore.
    """

    def __init__(self, records: Optional[List[EmbeddingRecord]] = None):
        self._records: List[EmbeddingRecord] = []
        self._matrix: Optional[np.ndarray] = None
        if records:
            self.add_records(records)

    def add_records(self, records: List[EmbeddingRecord]) -> None:
        if not records:
            raise ValueError("Records list cannot be empty")

        vectors = []
        for record in records:
            if record.embedding is None:
                raise ValueError(f"Record {record.record_id or '<new>'} has no embedding")
            vectors.append(np.asarray(record.embedding, dtype=np.float64))

        new_rows = np.vstack(vectors)
        if self._matrix is not None and new_rows.shape[1] != self._matrix.shape[1]:
            raise ValueError(
                f"Embedding dimension {new_rows.shape[1]} does not match index dimension {self._matrix.shape[1]}"
            )

        self._matrix = new_rows if self._matrix is None else np.vstack([self._matrix, new_rows])
        self._records.extend(
            r if r.record_id else EmbeddingRecord(
                record_id=str(uuid.uuid4()),
                content=r.content,
                source=r.source,
                metadata=r.metadata,
                embedding=r.embedding,
            )
            for r in records
        )

    def search(
        self,
        query_embedding: List[float],
        top_k: int = 5,
        score_threshold: float = 0.0,
        sources: Optional[Sequence[KnowledgeSource]] = None
    ) -> List[ScoredRecord]:
        if not query_embedding:
            raise ValueError("Query embedding cannot be empty")

        if top_k <= 0:
            raise ValueError("top_k must be positive")

        if self._matrix is None:
            return []

        query = np.asarray(query_embedding, dtype=np.float64)
        if query.shape[0] != self._matrix.shape[1]:
            raise ValueError(
                f"Query dimension {query.shape[0]} does not match index dimension {self._matrix.shape[1]}"
            )

        norms = np.linalg.norm(self._matrix, axis=1) * np.linalg.norm(query)
        dots = self._matrix @ query
        # Zero vectors are similar to nothing
        similarities = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        wanted = _source_values(sources)
        order = np.argsort(-similarities, kind="stable")

        results = []
        for index in order:
            score = float(similarities[index])
            if score <= score_threshold:
                break
            record = self._records[index]
            if wanted and (record.source is None or record.source.value not in wanted):
                continue
            results.append(ScoredRecord(record=record, similarity=score))
            if len(results) == top_k:
                break
        return results

    def count(self, source: Optional[KnowledgeSource] = None) -> int:
        if source is None:
            return len(self._records)
        return sum(1 for r in self._records if r.source == KnowledgeSource(source))
