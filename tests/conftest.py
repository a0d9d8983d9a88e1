"""
Shared test fixtures for the medical retrieval tests.
"""
import time
from typing import List, Optional

import jwt
import pytest

from medretrieval.auth import IdentityVerifier
from medretrieval.cache import TTLCache
from medretrieval.embeddings import HashingEmbeddings
from medretrieval.models import KnowledgeItem
from medretrieval.record_store import InMemoryRecordStore
from medretrieval.sources import SourceAdapter
from medretrieval.vector_store import VectorStore

TEST_SECRET = "medretrieval-test-secret-0123456789abcdef"
TEST_DIMENSION = 64


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeAdapter(SourceAdapter):
    """Adapter returning canned items, optionally slow or failing."""

    def __init__(self, name: str, label: str, items: Optional[List[KnowledgeItem]] = None,
                 delay: float = 0.0, error: Optional[Exception] = None):
        super().__init__(timeout=1.0)
        self.name = name
        self.label = label
        self.items = items or []
        self.delay = delay
        self.error = error
        self.calls = 0

    def fetch(self, query: str, max_results: int = 10) -> List[KnowledgeItem]:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.items)


def make_item(url: str, source: str = "PubMed", date: str = "", title: str = None, **fields) -> KnowledgeItem:
    return KnowledgeItem(
        id=fields.pop("id", f"{source}:{url}"),
        title=title if title is not None else f"Article {url}",
        url=url,
        source=source,
        date=date,
        **fields,
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def ttl_cache(fake_clock):
    """Fresh cache per test, driven by the fake clock."""
    return TTLCache(ttl_seconds=300, max_entries=50, clock=fake_clock)


@pytest.fixture
def hashing_embedder():
    return HashingEmbeddings(dimension=TEST_DIMENSION, passage_prefix="", query_prefix="")


@pytest.fixture
def vector_store():
    """Empty in-memory store sized for the hashing embedder."""
    return VectorStore(collection="test_docs", dimension=TEST_DIMENSION, distance="cosine")


@pytest.fixture
def record_store():
    """Two doctors, each with their own patients, reports and labs."""
    store = InMemoryRecordStore()
    store.add("doctor-42", "patient", {
        "id": "p1", "name": "Amira Hassan", "age": 54, "gender": "female",
        "conditions": ["type 2 diabetes", "hypertension"], "allergies": ["penicillin"],
    })
    store.add("doctor-42", "patient", {
        "id": "p2", "name": "Omar Said", "age": 61, "gender": "male",
        "conditions": ["chest pain", "coronary artery disease"],
    })
    store.add("doctor-42", "report", {
        "id": "r1", "patientId": "p2", "patientName": "Omar Said", "date": "2024-03-02",
        "title": "Cardiology consult", "diagnosis": "stable angina",
        "text": "Exertional chest pain relieved by rest. ECG without acute changes.",
    })
    store.add("doctor-42", "lab", {
        "id": "l1", "patientId": "p1", "patientName": "Amira Hassan", "date": "2024-02-10",
        "tests": [{"name": "HbA1c", "value": "8.1", "unit": "%", "normal": "4-5.6"}],
    })
    store.add("doctor-7", "patient", {
        "id": "q1", "name": "Layla Nour", "age": 47,
        "conditions": ["chest pain", "anxiety"],
    })
    return store


@pytest.fixture
def verifier():
    return IdentityVerifier(secret=TEST_SECRET, algorithm="HS256", jwks_url="", issuer="", audience="")


@pytest.fixture
def make_token():
    """Factory for HS256 tokens signed with the test secret."""
    def _make(tenant: Optional[str] = "doctor-42", expires_in: int = 3600, secret: str = TEST_SECRET, **claims):
        payload = {"exp": int(time.time()) + expires_in, **claims}
        if tenant is not None:
            payload["user_id"] = tenant
        return jwt.encode(payload, secret, algorithm="HS256")
    return _make


@pytest.fixture
def make_adapter():
    return FakeAdapter


@pytest.fixture
def item_factory():
    return make_item
