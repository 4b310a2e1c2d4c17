"""Knowledge corpus data models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class KnowledgeSource(str, Enum):
    """Knowledge collections the corpus is partitioned into."""
    LUNAR_RIVERS = "lunar-rivers"
    SHI_HENG_YI = "shi-heng-yi"
    TESLA = "tesla"
    BOOK_ESSENCE = "book-essence"
    WORKBOOK = "workbook"
    YOUTUBE = "youtube"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["KnowledgeSource"]:
        """Map a stored tag to a source, None if unknown."""
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class EmbeddingRecord:
    """A knowledge passage with its embedding. Produced by ingestion only."""
    record_id: str
    content: str
    source: Optional[KnowledgeSource]
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)
    embedding: Optional[List[float]] = field(default=None, compare=False, repr=False)

    @property
    def source_label(self) -> str:
        if self.source is not None:
            return self.source.value
        return self.metadata.get("source") or "Unknown"


@dataclass(frozen=True)
class ScoredRecord:
    """Embedding record with similarity score from retrieval."""
    record: EmbeddingRecord
    similarity: float  # cosine similarity, higher is closer
