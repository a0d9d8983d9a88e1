"""
Tests for the record stores.
"""
import pytest
import requests
from unittest.mock import MagicMock, patch

from medretrieval.exceptions import RecordStoreError
from medretrieval.record_store import (
    FirestoreRecordStore,
    InMemoryRecordStore,
    create_record_store,
    unwrap_rows,
    unwrap_value,
)


def _response(payload, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


def _row(doc_id, **fields):
    return {"document": {
        "name": f"projects/demo/databases/(default)/documents/patients/{doc_id}",
        "fields": fields,
    }}


class TestInMemoryRecordStore:
    def test_records_scoped_by_tenant(self, record_store):
        assert [r["id"] for r in record_store.list_records("doctor-42", "patient")] == ["p1", "p2"]
        assert [r["id"] for r in record_store.list_records("doctor-7", "patient")] == ["q1"]
        assert record_store.list_records("nobody", "patient") == []

    def test_limit(self, record_store):
        assert len(record_store.list_records("doctor-42", "patient", limit=1)) == 1

    def test_unknown_kind(self, record_store):
        with pytest.raises(ValueError, match="Unknown record kind"):
            record_store.list_records("doctor-42", "invoice")

    def test_returns_copies(self, record_store):
        record_store.list_records("doctor-42", "patient")[0]["name"] = "changed"
        assert record_store.list_records("doctor-42", "patient")[0]["name"] == "Amira Hassan"


class TestFirestoreValues:
    def test_unwrap_nested_values(self):
        value = {"mapValue": {"fields": {
            "age": {"integerValue": "54"},
            "score": {"doubleValue": 1.5},
            "active": {"booleanValue": True},
            "tags": {"arrayValue": {"values": [{"stringValue": "a"}, {"stringValue": "b"}]}},
            "missing": {"nullValue": None},
        }}}
        assert unwrap_value(value) == {"age": 54, "score": 1.5, "active": True, "tags": ["a", "b"], "missing": None}

    def test_document_id_fills_missing_id(self):
        rows = [_row("abc", name={"stringValue": "Amira"}), {"readTime": "2024-01-01T00:00:00Z"}]
        assert unwrap_rows(rows) == [{"name": "Amira", "id": "abc"}]


class TestFirestoreRecordStore:
    def setup_method(self):
        self.store = FirestoreRecordStore(project_id="demo", access_token="token")

    def test_requires_project(self):
        with patch("medretrieval.record_store.settings") as mock_settings:
            mock_settings.firestore_project_id = ""
            with pytest.raises(RecordStoreError, match="FIRESTORE_PROJECT_ID"):
                FirestoreRecordStore(project_id=None)

    @patch.object(requests.Session, "post")
    def test_patient_query_filters_by_owner(self, mock_post):
        mock_post.return_value = _response([_row("p1", name={"stringValue": "Amira"})])

        records = self.store.list_records("doctor-42", "patient")

        assert records == [{"name": "Amira", "id": "p1"}]
        query = mock_post.call_args.kwargs["json"]["structuredQuery"]
        assert query["from"] == [{"collectionId": "patients"}]
        assert query["where"]["fieldFilter"]["field"]["fieldPath"] == "registeredBy"
        assert query["where"]["fieldFilter"]["value"] == {"stringValue": "doctor-42"}
        assert query["limit"] == 500
        assert mock_post.call_args.args[0].endswith("/projects/demo/databases/(default)/documents:runQuery")

    @patch.object(requests.Session, "post")
    def test_report_query_falls_back_to_unordered(self, mock_post):
        mock_post.side_effect = [
            _response({"error": "index required"}, status_code=400),
            _response([_row("r1", title={"stringValue": "Consult"})]),
        ]

        records = self.store.list_records("doctor-42", "report")

        assert records[0]["id"] == "r1"
        first, second = (c.kwargs["json"]["structuredQuery"] for c in mock_post.call_args_list)
        assert "orderBy" in first
        assert "orderBy" not in second

    @patch.object(requests.Session, "post")
    def test_lab_failure_is_empty(self, mock_post):
        mock_post.return_value = _response({"error": "denied"}, status_code=403)
        assert self.store.list_records("doctor-42", "lab") == []

    @patch.object(requests.Session, "post")
    def test_patient_failure_raises(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("unreachable")
        with pytest.raises(RecordStoreError, match="Firestore request failed"):
            self.store.list_records("doctor-42", "patient")


def test_factory():
    assert isinstance(create_record_store("memory"), InMemoryRecordStore)
    with pytest.raises(ValueError):
        create_record_store("mongo")
