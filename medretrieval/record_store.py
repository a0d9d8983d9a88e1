"""
Record Store
Read access to a tenant's patient, report and lab records.
"""
from collections import defaultdict
from typing import Any, Dict, List, Optional

import requests

from .config import RECORD_TYPES, settings
from .exceptions import RecordStoreError
from .logging_config import get_logger, timed

log = get_logger("record_store")


class RecordStore:
    """Tenant-scoped, read-only view over flat key/value record documents."""

    def list_records(self, tenant_id: str, kind: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError


def _check_kind(kind: str) -> None:
    if kind not in RECORD_TYPES:
        raise ValueError(f"Unknown record kind: {kind}")


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed store for development and tests."""

    def __init__(self):
        self._records: Dict[str, Dict[str, List[Dict[str, Any]]]] = {
            kind: defaultdict(list) for kind in RECORD_TYPES
        }

    def add(self, tenant_id: str, kind: str, record: Dict[str, Any]) -> None:
        _check_kind(kind)
        self._records[kind][tenant_id].append(dict(record))

    def list_records(self, tenant_id: str, kind: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        _check_kind(kind)
        records = [dict(r) for r in self._records[kind].get(tenant_id, [])]
        return records[:limit] if limit else records


def unwrap_value(value: Dict[str, Any]) -> Any:
    """Convert one Firestore typed value into a plain Python value."""
    if "stringValue" in value:
        return value["stringValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "timestampValue" in value:
        return value["timestampValue"]
    if "nullValue" in value:
        return None
    if "arrayValue" in value:
        return [unwrap_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return unwrap_fields(value["mapValue"].get("fields", {}))
    return value


def unwrap_fields(fields: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    return {key: unwrap_value(value) for key, value in fields.items()}


def unwrap_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten runQuery rows into records; the document id fills ``id`` when absent."""
    records = []
    for row in rows:
        document = row.get("document")
        if not document:
            continue
        record = unwrap_fields(document.get("fields", {}))
        if not record.get("id") and document.get("name"):
            record["id"] = document["name"].rsplit("/", 1)[-1]
        records.append(record)
    return records


def field_filter(field_path: str, op: str, value: str) -> Dict[str, Any]:
    return {"fieldFilter": {"field": {"fieldPath": field_path}, "op": op, "value": {"stringValue": value}}}


class FirestoreRecordStore(RecordStore):
    """Reads records through the Firestore REST ``runQuery`` endpoint."""

    # kind -> (collection, owner field)
    COLLECTIONS = {
        "patient": ("patients", "registeredBy"),
        "report": ("reports", "doctorUID"),
        "lab": ("labReports", "doctorUID"),
    }
    DEFAULT_LIMITS = {
        "patient": settings.patients_limit,
        "report": settings.reports_limit,
        "lab": settings.labs_limit,
    }

    def __init__(self, project_id: str = None, access_token: str = None, session: Optional[requests.Session] = None):
        self.project_id = project_id or settings.firestore_project_id
        if not self.project_id:
            raise RecordStoreError("FIRESTORE_PROJECT_ID is not configured")
        self.access_token = settings.firestore_access_token if access_token is None else access_token
        self.base_url = (
            f"https://firestore.googleapis.com/v1/projects/{self.project_id}/databases/(default)"
        )
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if self.access_token:
            self.session.headers.update({"Authorization": f"Bearer {self.access_token}"})

    def _run_query(self, structured_query: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            response = self.session.post(
                f"{self.base_url}/documents:runQuery",
                json={"structuredQuery": structured_query},
                timeout=30,
            )
        except requests.exceptions.RequestException as e:
            raise RecordStoreError(f"Firestore request failed: {e}") from e
        if response.status_code != 200:
            raise RecordStoreError(f"Firestore runQuery failed ({response.status_code}): {response.text[:200]}")
        return response.json()

    @timed(name="firestore.list_records")
    def list_records(self, tenant_id: str, kind: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        _check_kind(kind)
        collection, owner_field = self.COLLECTIONS[kind]
        query = {
            "from": [{"collectionId": collection}],
            "where": field_filter(owner_field, "EQUAL", tenant_id),
            "limit": limit or self.DEFAULT_LIMITS[kind],
        }

        if kind == "report":
            ordered = dict(query, orderBy=[{"field": {"fieldPath": "date"}, "direction": "DESCENDING"}])
            try:
                rows = self._run_query(ordered)
            except RecordStoreError as e:
                # Ordered queries need a composite index that may not exist
                log.warning(f"Ordered report query failed, retrying unordered: {e}")
                rows = self._run_query(query)
        elif kind == "lab":
            try:
                rows = self._run_query(query)
            except RecordStoreError as e:
                log.warning(f"Lab report query failed, treating as empty: {e}")
                return []
        else:
            rows = self._run_query(query)

        return unwrap_rows(rows)


def create_record_store(backend: str = None) -> RecordStore:
    backend = (backend or settings.record_store_backend).lower()
    if backend == "firestore":
        return FirestoreRecordStore()
    if backend == "memory":
        return InMemoryRecordStore()
    raise ValueError(f"Unknown record store backend: {backend}")


# Singleton instance
_record_store = None


def get_record_store() -> RecordStore:
    """Get or create the record store singleton."""
    global _record_store
    if _record_store is None:
        _record_store = create_record_store()
    return _record_store
