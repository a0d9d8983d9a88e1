"""
Knowledge Ingestion CLI
Pulls public references for a list of topics from every knowledge source
and writes them into the shared vector index.

Usage:
    python -m medretrieval.ingest_cli --topics "diabetes,hypertension"
"""
import argparse
import asyncio
from typing import Dict, List

from .aggregator import SourceAggregator
from .cache import TTLCache
from .config import settings
from .embeddings import create_embedding_service
from .indexing import IndexingPipeline
from .logging_config import get_logger
from .record_store import InMemoryRecordStore
from .vector_store import VectorStore

log = get_logger("ingest_cli")


async def ingest_topics(topics: List[str], pipeline: IndexingPipeline) -> Dict[str, int]:
    """Ingest each topic in turn; returns points written per topic."""
    counts = {}
    for topic in topics:
        summary = await pipeline.ingest_topic(topic)
        counts[summary["topic"]] = summary["count"]
    return counts


def main(argv: List[str] = None):
    """CLI entry point for topic ingestion."""
    parser = argparse.ArgumentParser(
        description="Ingest public medical references into the semantic index"
    )
    parser.add_argument(
        "--topics",
        type=str,
        default="diabetes,hypertension,asthma,heart failure,sepsis",
        help="Comma-separated list of topics to ingest",
    )
    parser.add_argument(
        "--index-path",
        type=str,
        default=None,
        help="Path to vector store index",
    )
    parser.add_argument(
        "--backend",
        type=str,
        default=None,
        help="Embedding backend (sentence-transformers or hashing)",
    )
    args = parser.parse_args(argv)

    topics = [t.strip() for t in args.topics.split(",") if t.strip()]
    index_path = args.index_path or settings.vector_store_path

    print("Knowledge Ingestion")
    print(f"Topics: {topics}")
    print(f"Index path: {index_path}")
    print("=" * 60)

    vector_store = VectorStore(index_path=index_path)
    pipeline = IndexingPipeline(
        record_store=InMemoryRecordStore(),
        embedder=create_embedding_service(args.backend),
        vector_store=vector_store,
        aggregator=SourceAggregator(cache=TTLCache()),
    )
    counts = asyncio.run(ingest_topics(topics, pipeline))
    vector_store.save(index_path)

    print("\nResults:")
    for topic, count in counts.items():
        print(f"  {topic}: {count} items")
    print(f"\nTotal: {sum(counts.values())} items")
    print(f"Vector store total: {vector_store.count()} points")
    return counts


if __name__ == "__main__":
    main()
