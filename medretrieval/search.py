"""
Search Service
Tenant-scoped semantic search over the vector store.

The filter for every tenant search starts with ``tenantId == <verified
tenant>``; the tenant comes from the identity verifier, never from request
parameters, so one tenant's points are never eligible in another tenant's
search regardless of similarity.
"""
import asyncio
from typing import List, Optional

from .auth import IdentityVerifier, get_identity_verifier
from .config import KNOWLEDGE_TYPE, POINT_TYPES, settings
from .embeddings import EmbeddingService, get_embedding_service
from .exceptions import AuthorizationError, QueryValidationError, VectorStoreError
from .indexing import format_date
from .logging_config import get_logger, tenant_id as tenant_context, timed
from .models import FieldCondition, PointFilter, SearchMatch, SearchQuery, SearchResult
from .vector_store import VectorStore, get_vector_store

log = get_logger("search")


def clamp(value: Optional[int], low: int, high: int, default: int) -> int:
    if value is None:
        return default
    return max(low, min(high, int(value)))


def build_filter(query: SearchQuery) -> PointFilter:
    """Tenant clause first, then the optional exact-match clauses."""
    if not query.tenant_id:
        raise AuthorizationError("Search requires a verified tenant")

    must = [FieldCondition(key="tenantId", value=query.tenant_id)]
    if query.type_filter:
        must.append(FieldCondition(key="type", value=query.type_filter))
    if query.patient_id:
        must.append(FieldCondition(key="patientId", value=query.patient_id))
    if query.patient_name:
        must.append(FieldCondition(key="patientName", value=query.patient_name))
    if query.date:
        must.append(FieldCondition(key="date", value=query.date))
    return PointFilter(must=must)


class SearchService:
    def __init__(
        self,
        embedder: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStore] = None,
        verifier: Optional[IdentityVerifier] = None,
    ):
        self.embedder = embedder or get_embedding_service()
        self.vector_store = vector_store or get_vector_store()
        self.verifier = verifier or get_identity_verifier()
        self.vector_store.ensure_collection(
            self.vector_store.collection, self.embedder.dimension, self.vector_store.distance
        )

    def _validated(self, query: SearchQuery) -> SearchQuery:
        text = (query.text or "").strip()
        if not text:
            raise QueryValidationError("Missing q parameter")
        if query.type_filter and query.type_filter not in POINT_TYPES:
            raise QueryValidationError(f"Invalid type filter: {query.type_filter}")

        date = None
        if query.date:
            date = format_date(query.date)
            if not date:
                raise QueryValidationError(f"Invalid date filter: {query.date}")

        threshold = query.score_threshold
        if threshold is not None and not 0.0 <= threshold <= 1.0:
            raise QueryValidationError("scoreThreshold must be between 0 and 1")

        return query.model_copy(update={
            "text": text,
            "limit": clamp(query.limit, 1, settings.search_max_limit, 10),
            "offset": clamp(query.offset, 0, settings.search_max_offset, 0),
            "date": date,
        })

    async def _nearest(self, text: str, point_filter: PointFilter, limit: int, offset: int,
                       score_threshold: Optional[float]) -> List[SearchMatch]:
        vector = await asyncio.to_thread(self.embedder.embed_query, text)
        try:
            return await asyncio.to_thread(
                self.vector_store.search, vector, point_filter, limit, offset, score_threshold
            )
        except VectorStoreError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Vector search failed: {e}") from e

    @timed(name="search.search")
    async def search(self, query: SearchQuery) -> SearchResult:
        """Nearest tenant points for ``query.text``; an empty result is not an error."""
        if not query.tenant_id:
            raise AuthorizationError("Search requires a verified tenant")
        query = self._validated(query)
        matches = await self._nearest(
            query.text, build_filter(query), query.limit, query.offset, query.score_threshold
        )
        log.info(f"Search returned {len(matches)} matches (limit={query.limit}, offset={query.offset})")
        return SearchResult(count=len(matches), matches=matches)

    async def search_for_token(
        self,
        token: str,
        text: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        type_filter: Optional[str] = None,
        patient_id: Optional[str] = None,
        patient_name: Optional[str] = None,
        date: Optional[str] = None,
        score_threshold: Optional[float] = None,
    ) -> SearchResult:
        """Verify the bearer token, then search within the caller's tenant."""
        identity = self.verifier.verify(token)
        tenant_context.set(identity.tenant_id)
        return await self.search(SearchQuery(
            text=text or "",
            tenant_id=identity.tenant_id,
            limit=limit if limit is not None else 10,
            offset=offset if offset is not None else 0,
            type_filter=type_filter or None,
            patient_id=patient_id or None,
            patient_name=patient_name or None,
            date=date or None,
            score_threshold=score_threshold,
        ))

    @timed(name="search.search_knowledge")
    async def search_knowledge(self, text: str, topic: Optional[str] = None, limit: int = 10) -> SearchResult:
        """Search public knowledge items only (points without a tenant)."""
        text = (text or "").strip()
        if not text:
            raise QueryValidationError("Missing q parameter")
        must = [
            FieldCondition(key="tenantId", value=None),
            FieldCondition(key="type", value=KNOWLEDGE_TYPE),
        ]
        if topic:
            must.append(FieldCondition(key="topic", value=topic.strip()))
        limit = clamp(limit, 1, settings.search_max_limit, 10)
        matches = await self._nearest(text, PointFilter(must=must), limit, 0, None)
        return SearchResult(count=len(matches), matches=matches)


# Singleton instance
_search_service = None


def get_search_service() -> SearchService:
    """Get or create the search service singleton."""
    global _search_service
    if _search_service is None:
        _search_service = SearchService()
    return _search_service
