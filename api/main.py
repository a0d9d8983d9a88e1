"""
FastAPI Application: Medical Retrieval API
Features: live knowledge aggregation, tenant-scoped semantic search,
reindex/ingest endpoints, rate limiting, Prometheus metrics, structured error responses.
"""
import asyncio
import time
from collections import defaultdict
from typing import Dict, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from medretrieval.aggregator import SourceAggregator, format_context, get_aggregator
from medretrieval.auth import Identity, IdentityVerifier, extract_bearer, get_identity_verifier
from medretrieval.config import settings
from medretrieval.embeddings import EmbeddingService, get_embedding_service
from medretrieval.exceptions import AuthorizationError, QueryValidationError, RetrievalError
from medretrieval.indexing import IndexingPipeline, get_indexing_pipeline
from medretrieval.intent_router import route
from medretrieval.logging_config import correlation_id, get_correlation_id, get_logger, tenant_id
from medretrieval.search import SearchService, get_search_service
from medretrieval.vector_store import VectorStore
from api.monitoring import (
    get_metrics, get_metrics_content_type,
    record_request, record_source_fetch, record_indexed,
    record_error, update_vector_store_size,
)

log = get_logger("api")

ERROR_STATUS = {
    "validation_error": 400,
    "authorization_error": 401,
    "embedding_error": 500,
    "vector_store_error": 500,
    "record_store_error": 502,
    "source_timeout": 504,
}

# --- FastAPI App ---
app = FastAPI(
    title="Medical Retrieval API",
    description="Multi-source medical knowledge aggregation and tenant-scoped semantic search",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Rate Limiter (in-memory sliding window) ---
_rate_limit_store: Dict[str, list] = defaultdict(list)


def _check_rate_limit(client_id: str) -> bool:
    """Check if client has exceeded rate limit. Returns True if allowed."""
    now = time.time()
    window_start = now - settings.rate_limit_window_seconds
    _rate_limit_store[client_id] = [
        t for t in _rate_limit_store[client_id] if t > window_start
    ]
    if len(_rate_limit_store[client_id]) >= settings.rate_limit_requests:
        return False
    _rate_limit_store[client_id].append(now)
    return True


def error_payload(message: str, error_type: str) -> dict:
    return {"ok": False, "error": message, "error_type": error_type}


# --- Component providers (overridable in tests) ---
def aggregator_dependency() -> SourceAggregator:
    aggregator = get_aggregator()
    if aggregator.observer is None:
        aggregator.observer = record_source_fetch
    return aggregator


def search_dependency() -> SearchService:
    return get_search_service()


def indexing_dependency() -> IndexingPipeline:
    pipeline = get_indexing_pipeline()
    if pipeline.aggregator.observer is None:
        pipeline.aggregator.observer = record_source_fetch
    return pipeline


def verifier_dependency() -> IdentityVerifier:
    return get_identity_verifier()


def embedder_dependency() -> EmbeddingService:
    return get_embedding_service()


# --- Auth Dependencies ---
async def verify_api_key(x_api_key: Optional[str] = Header(None)):
    """Verify API key if configured."""
    configured_key = settings.api_key
    if not configured_key:
        return  # No key configured = open access
    if x_api_key != configured_key:
        raise AuthorizationError("Invalid or missing API key")


async def current_identity(
    authorization: Optional[str] = Header(None),
    verifier: IdentityVerifier = Depends(verifier_dependency),
) -> Identity:
    """Resolve the bearer token to a tenant before any data access."""
    identity = verifier.verify(extract_bearer(authorization))
    tenant_id.set(identity.tenant_id)
    return identity


# --- Error Handlers ---
@app.exception_handler(RetrievalError)
async def retrieval_error_handler(request: Request, exc: RetrievalError):
    status = ERROR_STATUS.get(exc.error_type, 500)
    record_error(exc.error_type)
    if status >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        log.info(f"{request.method} {request.url.path} rejected ({exc.error_type}): {exc}")
    return JSONResponse(status_code=status, content=error_payload(str(exc), exc.error_type))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    record_error("validation_error")
    fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
    return JSONResponse(
        status_code=400,
        content=error_payload(f"Invalid request parameters: {fields}", "validation_error"),
    )


# --- Middleware ---
@app.middleware("http")
async def request_middleware(request: Request, call_next):
    """Log requests, enforce rate limiting, record metrics."""
    correlation_id.set(request.headers.get("X-Correlation-ID") or "")
    cid = get_correlation_id()
    tenant_id.set("-")

    client_ip = request.client.host if request.client else "unknown"
    if not _check_rate_limit(client_ip):
        record_error("rate_limit")
        return JSONResponse(
            status_code=429,
            content=error_payload("Rate limit exceeded. Try again later.", "rate_limit"),
            headers={"X-Correlation-ID": cid},
        )

    start = time.time()
    response = await call_next(request)
    duration = time.time() - start

    endpoint = request.url.path
    record_request(request.method, endpoint, response.status_code, duration)
    log.info(f"{request.method} {endpoint} -> {response.status_code} ({duration:.3f}s)")
    response.headers["X-Correlation-ID"] = cid
    return response


# --- Request Models ---
class IngestRequest(BaseModel):
    topic: str = ""


async def _persist(store: VectorStore) -> None:
    if store.index_path:
        await asyncio.to_thread(store.save)
    update_vector_store_size(store.count())


# --- Endpoints ---
@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Medical Retrieval API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "metrics": "/metrics",
    }


@app.get("/api/health", tags=["Health"])
async def health_check(
    pipeline: IndexingPipeline = Depends(indexing_dependency),
    embedder: EmbeddingService = Depends(embedder_dependency),
):
    store = pipeline.vector_store
    points = store.count()
    update_vector_store_size(points)
    return {
        "status": "healthy",
        "collection": store.collection,
        "vector_points": points,
        "embedding_dimension": embedder.dimension,
        "sources": [adapter.label for adapter in pipeline.aggregator.adapters],
    }


@app.get("/api/knowledge", tags=["Knowledge"])
async def knowledge(
    q: str = "",
    lang: str = "en",
    max_per_source: Optional[int] = Query(None, alias="maxPerSource", ge=1, le=50),
    aggregator: SourceAggregator = Depends(aggregator_dependency),
):
    """Route a question and gather ranked external references for it."""
    if not q.strip():
        raise QueryValidationError("Missing q parameter")

    agent = route(q, lang)
    if not agent.use_medical_sources:
        return {"ok": True, "agent": agent.agent_type.value, "count": 0, "items": [], "context": ""}

    items = await aggregator.aggregate(q, max_per_source=max_per_source)
    return {
        "ok": True,
        "agent": agent.agent_type.value,
        "count": len(items),
        "items": [item.model_dump() for item in items],
        "context": format_context(items),
    }


@app.get("/api/rg/search", tags=["Search"])
async def search(
    q: str = "",
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    type: Optional[str] = None,
    patient_id: Optional[str] = Query(None, alias="patientId"),
    patient_name: Optional[str] = Query(None, alias="patientName"),
    date: Optional[str] = None,
    score_threshold: Optional[float] = Query(None, alias="scoreThreshold"),
    authorization: Optional[str] = Header(None),
    service: SearchService = Depends(search_dependency),
):
    """Semantic search over the caller's own indexed records."""
    result = await service.search_for_token(
        extract_bearer(authorization),
        q,
        limit=limit,
        offset=offset,
        type_filter=type,
        patient_id=patient_id,
        patient_name=patient_name,
        date=date,
        score_threshold=score_threshold,
    )
    return {
        "ok": True,
        "count": result.count,
        "matches": [match.model_dump() for match in result.matches],
    }


@app.get("/api/rg/knowledge", tags=["Search"])
async def search_knowledge(
    q: str = "",
    topic: Optional[str] = None,
    limit: int = 10,
    service: SearchService = Depends(search_dependency),
):
    """Semantic search over ingested public knowledge."""
    result = await service.search_knowledge(q, topic=topic, limit=limit)
    return {
        "ok": True,
        "count": result.count,
        "matches": [match.model_dump() for match in result.matches],
    }


@app.post("/api/rg/reindex", tags=["Indexing"])
async def reindex(
    identity: Identity = Depends(current_identity),
    pipeline: IndexingPipeline = Depends(indexing_dependency),
):
    """Rebuild the caller's points from their patient, report and lab records."""
    summary = await pipeline.reindex(identity.tenant_id)
    record_indexed("reindex", summary["indexed"])
    await _persist(pipeline.vector_store)
    return {"ok": True, **summary}


@app.post("/api/rg/ingest", tags=["Indexing"], dependencies=[Depends(verify_api_key)])
async def ingest(
    body: IngestRequest,
    pipeline: IndexingPipeline = Depends(indexing_dependency),
):
    """Pull public knowledge for a topic into the shared index."""
    summary = await pipeline.ingest_topic(body.topic)
    record_indexed("ingest", summary["count"])
    await _persist(pipeline.vector_store)
    return {"ok": True, **summary}


@app.get("/metrics", tags=["Monitoring"])
async def prometheus_metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
