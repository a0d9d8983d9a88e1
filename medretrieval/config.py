"""
Configuration settings for the Medical Knowledge Retrieval Engine
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # External knowledge sources
    source_timeout_seconds: float = 8.0
    max_per_source: int = 5
    max_aggregate_results: int = 15
    max_query_length: int = 200
    ingest_max_per_source: int = 20
    nice_api_key: str = ""
    openalex_mailto: str = ""

    # Source cache
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 50

    # Embedding Configuration
    embedding_backend: str = "sentence-transformers"
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_batch_size: int = 32
    hashing_dimension: int = 256
    passage_prefix: str = ""
    query_prefix: str = ""

    # Vector Store Configuration
    vector_collection: str = "medretrieval_docs"
    vector_store_path: str = "./data/vector_index"
    vector_distance: str = "cosine"

    # Indexing
    chunk_size: int = 800
    index_batch_size: int = 100
    patients_limit: int = 500
    reports_limit: int = 200
    labs_limit: int = 200

    # Search
    search_max_limit: int = 50
    search_max_offset: int = 10000

    # Identity verification (shared secret or JWKS, e.g. Firebase ID tokens)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwks_url: str = ""
    jwt_issuer: str = ""
    jwt_audience: str = ""

    # Record store
    record_store_backend: str = "memory"
    firestore_project_id: str = ""
    firestore_access_token: str = ""

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_key: str = ""
    rate_limit_requests: int = 60
    rate_limit_window_seconds: int = 60

    # Logging Configuration
    log_level: str = "INFO"
    log_file: str = "logs/medretrieval.log"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


# Reliability weight per source label; anything unlisted falls back to the default
SOURCE_PRIORITY = {
    "PubMed": 5,
    "CDC": 5,
    "NICE": 4,
    "ClinicalTrials.gov": 4,
    "OpenAlex": 3,
}
DEFAULT_SOURCE_PRIORITY = 2

RECORD_TYPES = ("patient", "report", "lab")
KNOWLEDGE_TYPE = "knowledge"
POINT_TYPES = RECORD_TYPES + (KNOWLEDGE_TYPE,)
