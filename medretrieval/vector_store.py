"""
Vector Store Module
FAISS-backed point index with string ids, payloads and filtered search.

Points are addressed by their natural-key string id. Upserting an id that
already exists replaces its vector and payload, so re-running an ingestion
never grows the index. Filters are applied before offset/limit, so a filtered
search can only ever see points whose payload matches every clause.
"""
import json
import os
import threading
from typing import Any, Dict, List, Optional, Sequence

import faiss
import numpy as np

from .config import settings
from .exceptions import VectorStoreError
from .logging_config import get_logger, timed
from .models import PointFilter, SearchMatch, VectorPoint

log = get_logger("vector_store")

DISTANCES = ("cosine", "euclid")


class VectorStore:
    """One logical collection of (id, vector, payload) points held in FAISS."""

    def __init__(
        self,
        collection: str = None,
        dimension: Optional[int] = None,
        distance: str = None,
        index_path: Optional[str] = None,
    ):
        self.collection = collection or settings.vector_collection
        self.distance = (distance or settings.vector_distance).lower()
        if self.distance not in DISTANCES:
            raise VectorStoreError(f"Unsupported distance metric: {self.distance}")
        self.index_path = index_path
        self.dimension: Optional[int] = None
        self.index = None
        self._lock = threading.RLock()
        self._int_ids: Dict[str, int] = {}
        self._keys: Dict[int, str] = {}
        self._payloads: Dict[str, Dict[str, Any]] = {}
        self._next_int_id = 0

        if index_path and os.path.exists(index_path):
            self.load(index_path)
        if self.index is None and dimension:
            self.ensure_collection(self.collection, dimension, self.distance)

    def _new_index(self):
        if self.distance == "cosine":
            base = faiss.IndexFlatIP(self.dimension)
        else:
            base = faiss.IndexFlatL2(self.dimension)
        return faiss.IndexIDMap2(base)

    def ensure_collection(self, name: str, dimension: int, distance: str = "cosine") -> str:
        """Create the collection on first use; later calls must agree on its shape."""
        distance = distance.lower()
        with self._lock:
            if self.index is None:
                if distance not in DISTANCES:
                    raise VectorStoreError(f"Unsupported distance metric: {distance}")
                self.collection = name
                self.dimension = int(dimension)
                self.distance = distance
                self.index = self._new_index()
                log.info(f"Created collection '{name}' (dim={dimension}, distance={distance})")
                return name

            if name != self.collection:
                raise VectorStoreError(
                    f"Store holds collection '{self.collection}', not '{name}'"
                )
            if int(dimension) != self.dimension or distance != self.distance:
                raise VectorStoreError(
                    f"Collection '{name}' is dim={self.dimension}/{self.distance}, "
                    f"requested dim={dimension}/{distance}"
                )
            return name

    def _as_matrix(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        matrix = np.ascontiguousarray(np.asarray(vectors, dtype="float32"))
        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            raise VectorStoreError(
                f"Expected vectors of dim {self.dimension}, got shape {matrix.shape}"
            )
        if self.distance == "cosine":
            faiss.normalize_L2(matrix)
        return matrix

    def _score(self, raw: float) -> float:
        if self.distance == "cosine":
            return float(raw)
        return float(1 / (1 + raw))

    @timed(name="vector_store.upsert")
    def upsert(self, points: Sequence[VectorPoint]) -> int:
        """Insert or overwrite points by id. Returns the number of points written."""
        if not points:
            return 0
        if self.index is None:
            self.ensure_collection(self.collection, len(points[0].vector), self.distance)

        # Within one batch the last point for an id wins
        latest: Dict[str, VectorPoint] = {}
        for point in points:
            latest[point.id] = point
        batch = list(latest.values())

        with self._lock:
            matrix = self._as_matrix([p.vector for p in batch])
            existing = [self._int_ids[p.id] for p in batch if p.id in self._int_ids]
            if existing:
                self.index.remove_ids(np.asarray(existing, dtype="int64"))

            int_ids = []
            for point in batch:
                int_id = self._int_ids.get(point.id)
                if int_id is None:
                    int_id = self._next_int_id
                    self._next_int_id += 1
                    self._int_ids[point.id] = int_id
                    self._keys[int_id] = point.id
                int_ids.append(int_id)
                self._payloads[point.id] = point.payload.to_dict()

            self.index.add_with_ids(matrix, np.asarray(int_ids, dtype="int64"))

        log.debug(f"Upserted {len(batch)} points ({len(existing)} replaced). Total: {self.count()}")
        return len(batch)

    @timed(name="vector_store.search")
    def search(
        self,
        vector: Sequence[float],
        filter: Optional[PointFilter] = None,
        limit: int = 10,
        offset: int = 0,
        score_threshold: Optional[float] = None,
    ) -> List[SearchMatch]:
        """Nearest neighbours of ``vector`` among points matching ``filter``, best first."""
        with self._lock:
            if self.index is None or self.index.ntotal == 0:
                return []
            query = self._as_matrix([vector])
            raw_scores, int_ids = self.index.search(query, self.index.ntotal)

            eligible = []
            for raw, int_id in zip(raw_scores[0], int_ids[0]):
                if int_id < 0:
                    continue
                key = self._keys[int(int_id)]
                payload = self._payloads[key]
                if filter is not None and not filter.matches(payload):
                    continue
                score = self._score(raw)
                if score_threshold is not None and score < score_threshold:
                    continue
                eligible.append(SearchMatch(id=key, score=score, payload=dict(payload)))

        return eligible[offset: offset + limit]

    def get_payload(self, point_id: str) -> Optional[Dict[str, Any]]:
        payload = self._payloads.get(point_id)
        return dict(payload) if payload is not None else None

    def count(self, filter: Optional[PointFilter] = None) -> int:
        with self._lock:
            if filter is None:
                return len(self._payloads)
            return sum(1 for payload in self._payloads.values() if filter.matches(payload))

    def delete(self, point_ids: Sequence[str]) -> int:
        with self._lock:
            int_ids = [self._int_ids.pop(pid) for pid in point_ids if pid in self._int_ids]
            for int_id in int_ids:
                self._payloads.pop(self._keys.pop(int_id), None)
            if int_ids:
                self.index.remove_ids(np.asarray(int_ids, dtype="int64"))
        return len(int_ids)

    def save(self, path: Optional[str] = None) -> None:
        """Save the index and payloads to disk."""
        save_path = path or self.index_path
        if not save_path:
            raise ValueError("No path provided for saving")
        if self.index is None:
            raise VectorStoreError("Nothing to save: collection was never created")

        os.makedirs(save_path, exist_ok=True)
        with self._lock:
            faiss.write_index(self.index, os.path.join(save_path, "index.faiss"))
            state = {
                "collection": self.collection,
                "dimension": self.dimension,
                "distance": self.distance,
                "next_int_id": self._next_int_id,
                "ids": self._int_ids,
                "payloads": self._payloads,
            }
            with open(os.path.join(save_path, "points.json"), "w", encoding="utf-8") as f:
                json.dump(state, f, ensure_ascii=False)

        log.info(f"Saved collection '{self.collection}' ({self.count()} points) to {save_path}")

    def load(self, path: Optional[str] = None) -> None:
        """Load the index and payloads from disk."""
        load_path = path or self.index_path
        if not load_path:
            raise ValueError("No path provided for loading")

        index_file = os.path.join(load_path, "index.faiss")
        points_file = os.path.join(load_path, "points.json")
        if not (os.path.exists(index_file) and os.path.exists(points_file)):
            log.info(f"No saved collection at {load_path}")
            return

        with open(points_file, "r", encoding="utf-8") as f:
            state = json.load(f)
        with self._lock:
            self.index = faiss.read_index(index_file)
            self.collection = state["collection"]
            self.dimension = state["dimension"]
            self.distance = state["distance"]
            self._next_int_id = state["next_int_id"]
            self._int_ids = {key: int(value) for key, value in state["ids"].items()}
            self._keys = {value: key for key, value in self._int_ids.items()}
            self._payloads = state["payloads"]

        log.info(f"Loaded collection '{self.collection}' with {self.count()} points")

    def clear(self) -> None:
        """Remove every point but keep the collection definition."""
        with self._lock:
            if self.dimension is not None:
                self.index = self._new_index()
            self._int_ids.clear()
            self._keys.clear()
            self._payloads.clear()
        log.info("Vector store cleared")


# Singleton instance
_vector_store = None


def get_vector_store() -> VectorStore:
    """Get or create the vector store singleton."""
    global _vector_store
    if _vector_store is None:
        _vector_store = VectorStore(index_path=settings.vector_store_path)
    return _vector_store
