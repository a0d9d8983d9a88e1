"""
Data models shared by the aggregator, indexing pipeline and search service.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class KnowledgeItem(BaseModel):
    """A normalized reference to an external document."""

    id: str
    title: str = ""
    summary: str = ""
    url: str = ""
    source: str = ""
    date: str = ""
    tags: List[str] = Field(default_factory=list)
    priority: int = 0

    @property
    def dedup_key(self) -> str:
        return self.url or self.id or self.title


class CacheEntry(BaseModel):
    key: str
    data: List[KnowledgeItem]
    timestamp: float


class PointPayload(BaseModel):
    """Metadata stored with every vector point."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    type: str
    text: str
    source_ref: str = Field(default="", alias="sourceRef")
    date: str = ""
    tags: List[str] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class VectorPoint(BaseModel):
    id: str
    vector: List[float]
    payload: PointPayload


class FieldCondition(BaseModel):
    """Exact-match condition on a payload field."""

    key: str
    value: Any


class PointFilter(BaseModel):
    """All conditions in ``must`` have to match for a point to be eligible."""

    must: List[FieldCondition] = Field(default_factory=list)

    def matches(self, payload: Dict[str, Any]) -> bool:
        return all(payload.get(cond.key) == cond.value for cond in self.must)


class SearchQuery(BaseModel):
    """A search request already scoped to a verified tenant."""

    text: str
    tenant_id: str
    limit: int = 10
    offset: int = 0
    type_filter: Optional[str] = None
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    date: Optional[str] = None
    score_threshold: Optional[float] = None


class SearchMatch(BaseModel):
    id: str
    score: float
    payload: Dict[str, Any]


class SearchResult(BaseModel):
    count: int
    matches: List[SearchMatch]
