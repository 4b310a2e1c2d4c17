"""
Knowledge Ingestion Script for the Manifest Guru chat backend.

This script:
1. Finds source texts under KNOWLEDGE_DIR/<source>/ (*.md, *.txt)
2. Chunks each text with overlap
3. Generates embeddings in batches
4. Replaces the stored records of the source in Supabase pgvector
   (knowledge_embeddings) once every embedding is in hand

The directory name of each source must be one of the knowledge
collections (lunar-rivers, shi-heng-yi, tesla, book-essence, workbook,
youtube).

Usage:
    python ingest_knowledge.py
"""
import sys
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from services.chunking_engine import ChunkingEngine
from services.embedding_model import EmbeddingModel
from services.vector_store import VectorStore
from models.knowledge import EmbeddingRecord, KnowledgeSource
from config import KNOWLEDGE_DIR

logger = logging.getLogger(__name__)

BATCH_SIZE = 20
TEXT_SUFFIXES = {".md", ".txt"}


def discover_sources(root: Path) -> Dict[KnowledgeSource, List[Path]]:
    """
    Map each known source directory under root to its text files.

    Args:
        root: Knowledge directory

    Returns:
        Files per source, sorted by path; unknown directories are skipped
    """
    found: Dict[KnowledgeSource, List[Path]] = {}
    for directory in sorted(p for p in root.iterdir() if p.is_dir()):
        source = KnowledgeSource.parse(directory.name)
        if source is None:
            logger.warning(f"Skipping {directory.name}/: not a known knowledge source")
            continue
        files = sorted(p for p in directory.rglob("*") if p.suffix.lower() in TEXT_SUFFIXES)
        if files:
            found[source] = files
    return found


def build_records(
    source: KnowledgeSource,
    path: Path,
    chunking_engine: ChunkingEngine
) -> List[EmbeddingRecord]:
    """Chunk one file into records without embeddings."""
    chunks = [c for c in chunking_engine.chunk_text(path.read_text(encoding="utf-8")) if c.strip()]
    processed_at = datetime.now(timezone.utc).isoformat()
    return [
        EmbeddingRecord(
            record_id=str(uuid.uuid4()),
            content=chunk,
            source=source,
            metadata={
                "source": source.value,
                "title": path.stem.replace("-", " ").replace("_", " ").title(),
                "file": path.name,
                "chunk_index": index,
                "total_chunks": len(chunks),
                "processed_at": processed_at,
            },
        )
        for index, chunk in enumerate(chunks)
    ]


def embed_records(records: List[EmbeddingRecord], embedding_model: EmbeddingModel) -> List[EmbeddingRecord]:
    """Return copies of records carrying their embeddings, batch by batch."""
    embedded: List[EmbeddingRecord] = []
    total_batches = (len(records) + BATCH_SIZE - 1) // BATCH_SIZE

    for i in range(0, len(records), BATCH_SIZE):
        batch = records[i:i + BATCH_SIZE]
        logger.info(f"Embedding batch {i // BATCH_SIZE + 1}/{total_batches} ({len(batch)} chunks)...")
        vectors = embedding_model.embed_batch([r.content for r in batch])
        if len(vectors) != len(batch):
            raise ValueError(f"Got {len(vectors)} embeddings for {len(batch)} chunks")
        embedded.extend(
            EmbeddingRecord(
                record_id=r.record_id,
                content=r.content,
                source=r.source,
                metadata=r.metadata,
                embedding=vector,
            )
            for r, vector in zip(batch, vectors)
        )
    return embedded


def ingest_source(
    source: KnowledgeSource,
    files: List[Path],
    chunking_engine: ChunkingEngine,
    embedding_model: EmbeddingModel,
    vector_store: VectorStore
) -> int:
    """
    Rebuild the stored records of one source.

    The old records are cleared only after the new ones are embedded, so a
    failed run leaves the previous corpus in place.

    Returns:
        Number of records stored
    """
    records: List[EmbeddingRecord] = []
    for path in files:
        file_records = build_records(source, path, chunking_engine)
        logger.info(f"  - {path.name}: {len(file_records)} chunks")
        records.extend(file_records)

    if not records:
        logger.warning(f"No chunks for {source.value}; keeping stored records")
        return 0

    embedded = embed_records(records, embedding_model)

    vector_store.clear(source)
    for i in range(0, len(embedded), BATCH_SIZE):
        vector_store.add_records(embedded[i:i + BATCH_SIZE])
    return len(embedded)


def main():
    """Main ingestion process."""
    try:
        root = Path(KNOWLEDGE_DIR)
        if not root.is_dir():
            logger.error(f"Knowledge directory {root} does not exist")
            sys.exit(1)

        logger.info("=" * 60)
        logger.info(f"Starting knowledge ingestion from {root}")
        logger.info("=" * 60)

        embedding_model = EmbeddingModel()
        if not embedding_model.warmup():
            logger.error("Embedding endpoint unavailable; stored records left untouched")
            sys.exit(1)
        vector_store = VectorStore()
        chunking_engine = ChunkingEngine()

        sources = discover_sources(root)
        if not sources:
            logger.error("No knowledge files found")
            sys.exit(1)

        for source, files in sources.items():
            logger.info(f"\n[{source.value}] {len(files)} files")
            if not ingest_source(source, files, chunking_engine, embedding_model, vector_store):
                continue
            logger.info(f"✓ Stored {vector_store.count(source)} records for {source.value}")

        logger.info("\n" + "=" * 60)
        logger.info("INGESTION COMPLETE!")
        logger.info("=" * 60)

    except KeyboardInterrupt:
        logger.warning("\nIngestion interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"\nIngestion failed: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
