"""
Indexing Pipeline
Chunks tenant records and external knowledge items, embeds them in bounded
batches and upserts them into the vector store under deterministic ids.

Point ids:
- tenant records: ``{recordId}::{kind}::{chunkIndex}``
- knowledge items: first 32 hex chars of sha256(item id, else url)
Re-running either ingestion over unchanged input rewrites the same ids.
"""
import asyncio
import hashlib
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .aggregator import SourceAggregator, get_aggregator, normalize_query, parse_item_date
from .config import KNOWLEDGE_TYPE, settings
from .embeddings import EmbeddingService, get_embedding_service
from .exceptions import QueryValidationError, VectorStoreError
from .logging_config import get_logger, timed
from .models import KnowledgeItem, PointPayload, VectorPoint
from .record_store import RecordStore, get_record_store
from .vector_store import VectorStore, get_vector_store

log = get_logger("indexing")


def chunk_text(text: str, size: int = None) -> List[str]:
    """Collapse whitespace, then cut into fixed-size character chunks."""
    size = size or settings.chunk_size
    clean = re.sub(r"\s+", " ", str(text or "")).strip()
    return [clean[i: i + size] for i in range(0, len(clean), size)]


def format_date(value: Any) -> str:
    parsed = parse_item_date(str(value)) if value else None
    return parsed.strftime("%Y-%m-%d") if parsed else ""


def _join(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v not in (None, ""))
    return str(value)


def _lines(*lines: str) -> str:
    return "\n".join(line for line in lines if line)


def patient_text(record: Dict[str, Any]) -> str:
    return _lines(
        f"Patient: {record.get('name') or record.get('id') or ''}",
        f"Gender: {record['gender']}" if record.get("gender") else "",
        f"Age: {record['age']}" if record.get("age") else "",
        f"Allergies: {_join(record['allergies'])}" if record.get("allergies") else "",
        f"Conditions: {_join(record['conditions'])}" if record.get("conditions") else "",
        f"Notes: {record['notes']}" if record.get("notes") else "",
    )


def report_text(record: Dict[str, Any]) -> str:
    title = record.get("title") or record.get("type") or "Report"
    return _lines(
        f"Report: {title} on {format_date(record.get('date'))}",
        f"Patient: {record['patientName']}" if record.get("patientName") else "",
        f"Diagnosis: {record['diagnosis']}" if record.get("diagnosis") else "",
        str(record.get("text") or record.get("summary") or record.get("content") or ""),
    )


def _lab_test(test: Any) -> str:
    if not isinstance(test, dict):
        return str(test)
    return "{}: {} {} ({})".format(
        test.get("name", ""), test.get("value", ""), test.get("unit", ""), test.get("normal", "")
    )


def lab_text(record: Dict[str, Any]) -> str:
    tests = record.get("tests")
    if isinstance(tests, (list, tuple)):
        tests_line = "; ".join(_lab_test(t) for t in tests)
    else:
        tests_line = str(tests or "")
    return _lines(
        f"Lab Report on {format_date(record.get('date'))}",
        f"Patient: {record['patientName']}" if record.get("patientName") else "",
        f"Tests: {tests_line}" if tests_line else "",
        str(record.get("notes") or ""),
    )


TEXT_BUILDERS: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "patient": patient_text,
    "report": report_text,
    "lab": lab_text,
}


@dataclass
class Chunk:
    point_id: str
    text: str
    payload: PointPayload


def record_chunks(tenant_id: str, kind: str, record: Dict[str, Any], chunk_size: int = None) -> List[Chunk]:
    """Text chunks for one tenant record, each with its deterministic point id and payload."""
    text = TEXT_BUILDERS[kind](record)
    record_id = str(record.get("id") or "")
    if not record_id:
        # No natural key: derive one from the content so re-runs still match
        record_id = "h" + hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]

    if kind == "patient":
        patient_id, patient_name = record_id, record.get("name")
    else:
        patient_id = record.get("patientId") or record.get("patientID")
        patient_name = record.get("patientName")

    chunks = []
    for index, piece in enumerate(chunk_text(text, chunk_size)):
        payload = PointPayload(
            tenantId=tenant_id,
            type=kind,
            text=piece,
            sourceRef=record_id,
            date=format_date(record.get("date")),
            tags=[],
            recordId=record_id,
            patientId=str(patient_id) if patient_id else None,
            patientName=patient_name or None,
        )
        chunks.append(Chunk(f"{record_id}::{kind}::{index}", piece, payload))
    return chunks


def knowledge_point_id(item: KnowledgeItem) -> str:
    key = item.id or item.url
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]


def knowledge_chunk(item: KnowledgeItem, topic: str) -> Chunk:
    text = "\n\n".join(part for part in (item.title, item.summary) if part)
    payload = PointPayload(
        tenantId=None,
        type=KNOWLEDGE_TYPE,
        text=text,
        sourceRef=item.url,
        date=item.date,
        tags=list(item.tags),
        topic=topic,
        title=item.title,
        url=item.url,
        source=item.source,
    )
    return Chunk(knowledge_point_id(item), text, payload)


class IndexingPipeline:
    """Builds and refreshes the persistent semantic index."""

    def __init__(
        self,
        record_store: Optional[RecordStore] = None,
        embedder: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStore] = None,
        aggregator: Optional[SourceAggregator] = None,
        chunk_size: int = None,
        batch_size: int = None,
    ):
        self.record_store = record_store or get_record_store()
        self.embedder = embedder or get_embedding_service()
        self.vector_store = vector_store or get_vector_store()
        self.aggregator = aggregator or get_aggregator()
        self.chunk_size = chunk_size or settings.chunk_size
        self.batch_size = batch_size or settings.index_batch_size
        self.vector_store.ensure_collection(
            self.vector_store.collection, self.embedder.dimension, self.vector_store.distance
        )

    async def _embed_and_upsert(self, chunks: Sequence[Chunk]) -> int:
        """Embed and upsert one batch at a time; any failure aborts the whole call."""
        written = 0
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start: start + self.batch_size]
            vectors = await asyncio.to_thread(self.embedder.embed, [c.text for c in batch])
            points = [
                VectorPoint(id=c.point_id, vector=v, payload=c.payload)
                for c, v in zip(batch, vectors)
            ]
            try:
                written += await asyncio.to_thread(self.vector_store.upsert, points)
            except VectorStoreError:
                raise
            except Exception as e:
                raise VectorStoreError(f"Upsert failed after {written} points: {e}") from e
        return written

    async def _load_records(self, tenant_id: str) -> Dict[str, List[Dict[str, Any]]]:
        kinds = list(TEXT_BUILDERS)
        results = await asyncio.gather(
            *(asyncio.to_thread(self.record_store.list_records, tenant_id, kind) for kind in kinds)
        )
        records = dict(zip(kinds, results))
        records["report"] = sorted(
            records["report"], key=lambda r: format_date(r.get("date")), reverse=True
        )
        return records

    @timed(name="indexing.reindex")
    async def reindex(self, tenant_id: str) -> Dict[str, int]:
        """Re-index every patient, report and lab record owned by ``tenant_id``."""
        if not tenant_id:
            raise QueryValidationError("A tenant id is required for reindexing")

        records = await self._load_records(tenant_id)
        chunks: List[Chunk] = []
        for kind, rows in records.items():
            for record in rows:
                chunks.extend(record_chunks(tenant_id, kind, record, self.chunk_size))

        indexed = await self._embed_and_upsert(chunks)
        log.info(
            f"Reindexed {indexed} chunks ({len(records['patient'])} patients, "
            f"{len(records['report'])} reports, {len(records['lab'])} labs)"
        )
        return {
            "indexed": indexed,
            "patients": len(records["patient"]),
            "reports": len(records["report"]),
            "labs": len(records["lab"]),
        }

    @timed(name="indexing.ingest_topic")
    async def ingest_topic(self, topic: str) -> Dict[str, Any]:
        """Pull public knowledge for ``topic`` from every source and index it tenant-agnostically."""
        clean = normalize_query(topic)
        if not clean:
            raise QueryValidationError("Missing topic")

        items = await self.aggregator.collect(
            clean, max_per_source=settings.ingest_max_per_source, use_cache=False
        )
        by_url: Dict[str, KnowledgeItem] = {}
        for item in items:
            if item.url and item.url not in by_url:
                by_url[item.url] = item

        chunks = [knowledge_chunk(item, clean) for item in by_url.values()]
        count = await self._embed_and_upsert(chunks)
        log.info(f"Ingested {count} knowledge items for topic '{clean}'")
        return {"count": count, "topic": clean}


# Singleton instance
_pipeline = None


def get_indexing_pipeline() -> IndexingPipeline:
    """Get or create the indexing pipeline singleton."""
    global _pipeline
    if _pipeline is None:
        _pipeline = IndexingPipeline()
    return _pipeline
