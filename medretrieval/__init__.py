"""
Medical Retrieval - Source Package
"""
from .config import settings
from .logging_config import setup_logging, get_logger
from .exceptions import (
    RetrievalError,
    QueryValidationError,
    AuthorizationError,
    EmbeddingError,
    VectorStoreError,
    RecordStoreError,
    SourceTimeoutError,
)
from .models import KnowledgeItem, VectorPoint, PointPayload, SearchQuery, SearchResult
from .intent_router import AgentType, AgentRoute, route
from .cache import TTLCache
from .sources import SourceAdapter, default_adapters
from .aggregator import SourceAggregator, format_context, get_aggregator
from .embeddings import EmbeddingService, create_embedding_service, get_embedding_service
from .vector_store import VectorStore, get_vector_store
from .record_store import RecordStore, InMemoryRecordStore, FirestoreRecordStore, get_record_store
from .auth import Identity, IdentityVerifier, get_identity_verifier
from .indexing import IndexingPipeline, get_indexing_pipeline
from .search import SearchService, get_search_service

__all__ = [
    "settings",
    "setup_logging",
    "get_logger",
    "RetrievalError",
    "QueryValidationError",
    "AuthorizationError",
    "EmbeddingError",
    "VectorStoreError",
    "RecordStoreError",
    "SourceTimeoutError",
    "KnowledgeItem",
    "VectorPoint",
    "PointPayload",
    "SearchQuery",
    "SearchResult",
    "AgentType",
    "AgentRoute",
    "route",
    "TTLCache",
    "SourceAdapter",
    "default_adapters",
    "SourceAggregator",
    "format_context",
    "get_aggregator",
    "EmbeddingService",
    "create_embedding_service",
    "get_embedding_service",
    "VectorStore",
    "get_vector_store",
    "RecordStore",
    "InMemoryRecordStore",
    "FirestoreRecordStore",
    "get_record_store",
    "Identity",
    "IdentityVerifier",
    "get_identity_verifier",
    "IndexingPipeline",
    "get_indexing_pipeline",
    "SearchService",
    "get_search_service",
]
