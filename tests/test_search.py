"""
Tests for the tenant-scoped search service.
"""
import asyncio

import pytest
from unittest.mock import MagicMock

from medretrieval.aggregator import SourceAggregator
from medretrieval.exceptions import AuthorizationError, QueryValidationError
from medretrieval.indexing import IndexingPipeline
from medretrieval.models import SearchQuery
from medretrieval.search import SearchService, build_filter, clamp


@pytest.fixture
def indexed_store(record_store, hashing_embedder, vector_store, ttl_cache, make_adapter, item_factory):
    """Both tenants reindexed plus one public knowledge item."""
    adapter = make_adapter("pubmed", "PubMed", [
        item_factory("https://a", title="Chest pain evaluation", summary="Acute chest pain workup"),
    ])
    pipeline = IndexingPipeline(
        record_store=record_store,
        embedder=hashing_embedder,
        vector_store=vector_store,
        aggregator=SourceAggregator(adapters=[adapter], cache=ttl_cache),
    )
    asyncio.run(pipeline.reindex("doctor-42"))
    asyncio.run(pipeline.reindex("doctor-7"))
    asyncio.run(pipeline.ingest_topic("chest pain"))
    return vector_store


@pytest.fixture
def service(hashing_embedder, indexed_store, verifier):
    return SearchService(embedder=hashing_embedder, vector_store=indexed_store, verifier=verifier)


class TestBuildFilter:
    def test_tenant_clause_first(self):
        query = SearchQuery(text="x", tenant_id="doctor-42", type_filter="lab", patient_id="p1",
                            patient_name="Amira Hassan", date="2024-02-10")
        clauses = [(c.key, c.value) for c in build_filter(query).must]
        assert clauses == [
            ("tenantId", "doctor-42"),
            ("type", "lab"),
            ("patientId", "p1"),
            ("patientName", "Amira Hassan"),
            ("date", "2024-02-10"),
        ]

    def test_missing_tenant_never_unscoped(self):
        with pytest.raises(AuthorizationError):
            build_filter(SearchQuery(text="x", tenant_id=""))


class TestTenantIsolation:
    def test_only_own_points_returned(self, service):
        result = asyncio.run(service.search(SearchQuery(text="chest pain", tenant_id="doctor-42", limit=10)))
        assert result.count > 0
        assert all(m.payload["tenantId"] == "doctor-42" for m in result.matches)

    def test_other_tenant_sees_only_their_points(self, service):
        result = asyncio.run(service.search(SearchQuery(text="chest pain", tenant_id="doctor-7", limit=50)))
        assert [m.id for m in result.matches] == ["q1::patient::0"]

    def test_public_knowledge_not_in_tenant_search(self, service):
        result = asyncio.run(service.search(SearchQuery(text="chest pain evaluation", tenant_id="doctor-42")))
        assert all(m.payload["type"] != "knowledge" for m in result.matches)

    def test_unknown_tenant_gets_empty_result(self, service):
        result = asyncio.run(service.search(SearchQuery(text="chest pain", tenant_id="doctor-99")))
        assert result.count == 0
        assert result.matches == []


class TestFilters:
    def test_type_and_patient_filters(self, service):
        result = asyncio.run(service.search(SearchQuery(
            text="HbA1c", tenant_id="doctor-42", type_filter="lab", patient_id="p1",
        )))
        assert [m.id for m in result.matches] == ["l1::lab::0"]

    def test_patient_name_filter(self, service):
        result = asyncio.run(service.search(SearchQuery(
            text="chest pain", tenant_id="doctor-42", patient_name="Omar Said",
        )))
        assert {m.id for m in result.matches} == {"p2::patient::0", "r1::report::0"}

    def test_date_filter_is_normalized(self, service):
        result = asyncio.run(service.search(SearchQuery(
            text="consult", tenant_id="doctor-42", date="2024-03-02T08:00:00Z",
        )))
        assert [m.id for m in result.matches] == ["r1::report::0"]

    def test_match_carries_payload_not_vector(self, service):
        match = asyncio.run(service.search(SearchQuery(text="diabetes", tenant_id="doctor-42"))).matches[0]
        dumped = match.model_dump()
        assert set(dumped) == {"id", "score", "payload"}
        assert "text" in dumped["payload"]


class TestValidation:
    @pytest.mark.parametrize("overrides", [
        {"text": "   "},
        {"type_filter": "invoice"},
        {"date": "yesterday-ish"},
        {"date": "0000-01-01"},
        {"score_threshold": 1.5},
    ])
    def test_invalid_queries_rejected(self, service, overrides):
        params = {"text": "chest pain", "tenant_id": "doctor-42", **overrides}
        with pytest.raises(QueryValidationError):
            asyncio.run(service.search(SearchQuery(**params)))

    def test_validation_happens_before_embedding(self, indexed_store, verifier):
        embedder = MagicMock()
        embedder.dimension = 64
        service = SearchService(embedder=embedder, vector_store=indexed_store, verifier=verifier)
        with pytest.raises(QueryValidationError):
            asyncio.run(service.search(SearchQuery(text="", tenant_id="doctor-42")))
        embedder.embed_query.assert_not_called()

    def test_limit_and_offset_clamped(self):
        assert clamp(0, 1, 50, 10) == 1
        assert clamp(500, 1, 50, 10) == 50
        assert clamp(None, 1, 50, 10) == 10
        assert clamp(-3, 0, 10000, 0) == 0

    def test_oversized_limit_still_searches(self, service):
        result = asyncio.run(service.search(SearchQuery(text="patient", tenant_id="doctor-42", limit=500)))
        assert result.count == 4


class TestSearchForToken:
    def test_tenant_comes_from_token(self, service, make_token):
        result = asyncio.run(service.search_for_token(make_token("doctor-7"), "chest pain"))
        assert [m.id for m in result.matches] == ["q1::patient::0"]

    def test_invalid_token_rejected_before_validation(self, service):
        with pytest.raises(AuthorizationError):
            asyncio.run(service.search_for_token("not-a-jwt", ""))

    def test_expired_token(self, service, make_token):
        with pytest.raises(AuthorizationError, match="expired"):
            asyncio.run(service.search_for_token(make_token(expires_in=-60), "chest pain"))


class TestKnowledgeSearch:
    def test_returns_public_items_only(self, service):
        result = asyncio.run(service.search_knowledge("chest pain", topic="chest pain"))
        assert result.count == 1
        assert result.matches[0].payload["url"] == "https://a"
        assert result.matches[0].payload["tenantId"] is None

    def test_unknown_topic(self, service):
        assert asyncio.run(service.search_knowledge("chest pain", topic="asthma")).count == 0
