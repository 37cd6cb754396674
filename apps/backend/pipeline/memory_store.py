"""
In-process job store.

Same contract as PostgresJobStore for deployments without DATABASE_URL and
for tests. Writers hold a single RLock; readers take it only long enough to
snapshot the rows they need. Search vectors are built at upsert time, and a
lat-sorted list serves as the coarse spatial index.
"""
import bisect
import copy
import logging
import os
import threading
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from core.dedup import MUTABLE_FIELDS, compute_source_hash, decide
from core.text_index import (
    build_search_vector,
    fuzzy_matches,
    query_terms,
    rank,
    vector_matches,
    word_similarity,
)
from pipeline.job_store import FACET_COLUMNS, WRITE_COLUMNS

logger = logging.getLogger(__name__)

DEFAULT_MAX_JOBS = int(os.getenv("MEMORY_STORE_MAX_JOBS", "100000"))

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _published_ts(row: Dict) -> float:
    value = row.get("published_at")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return _EPOCH.timestamp()


class MemoryJobStore:
    """Lock-guarded in-process job store"""

    def __init__(self, max_jobs: int = DEFAULT_MAX_JOBS):
        self.max_jobs = max_jobs
        self._rows: Dict[int, Dict] = {}
        self._vectors: Dict[int, Dict[str, str]] = {}
        self._by_hash: Dict[str, int] = {}
        self._lat_index: List[Tuple[float, int]] = []
        self._next_id = 1
        self._lock = threading.RLock()

    def upsert(self, job: Dict) -> Tuple[str, Optional[int]]:
        """Insert, update or skip one candidate. Returns (action, job_id)."""
        source_hash = job.get("source_hash") or compute_source_hash(job)
        now = datetime.now(timezone.utc)

        with self._lock:
            job_id = self._by_hash.get(source_hash)
            existing = self._rows.get(job_id) if job_id is not None else None
            action = decide(existing, job)

            if action == "skip":
                return action, job_id

            if action == "update":
                for field in MUTABLE_FIELDS:
                    existing[field] = job.get(field)
                existing["updated_at"] = now
                self._vectors[job_id] = build_search_vector(existing)
                return action, job_id

            if len(self._rows) >= self.max_jobs:
                raise OverflowError(f"Memory job store is full ({self.max_jobs} rows)")

            job_id = self._next_id
            self._next_id += 1
            row = {column: job.get(column) for column in WRITE_COLUMNS}
            row.update({"id": job_id, "source_hash": source_hash, "created_at": now, "updated_at": now})
            self._rows[job_id] = row
            self._vectors[job_id] = build_search_vector(row)
            self._by_hash[source_hash] = job_id
            if row.get("lat") is not None and row.get("lon") is not None:
                bisect.insort(self._lat_index, (row["lat"], job_id))
            return action, job_id

    def upsert_many(self, jobs: Iterable[Dict]) -> Dict[str, int]:
        counts = {"inserted": 0, "updated": 0, "skipped": 0, "failed": 0}
        for job in jobs:
            try:
                action, _ = self.upsert(job)
            except OverflowError as e:
                counts["failed"] += 1
                logger.warning(f"[memory_store] Failed to upsert '{(job.get('title') or '')[:60]}': {e}")
                continue
            counts[{"insert": "inserted", "update": "updated", "skip": "skipped"}[action]] += 1
        return counts

    def get(self, job_id: int) -> Optional[Dict]:
        with self._lock:
            row = self._rows.get(job_id)
            return copy.deepcopy(row) if row else None

    def count(self) -> int:
        with self._lock:
            return len(self._rows)

    def hashes(self, source_id: Optional[int] = None) -> Set[str]:
        with self._lock:
            return {
                row["source_hash"] for row in self._rows.values()
                if source_id is None or row.get("source_id") == source_id
            }

    def _snapshot(self) -> List[Tuple[Dict, Dict[str, str]]]:
        with self._lock:
            return [(copy.deepcopy(row), self._vectors[job_id]) for job_id, row in self._rows.items()]

    def search(
        self,
        q: Optional[str],
        filters: Dict[str, str],
        sort: str,
        page: int,
        page_size: int,
    ) -> Dict:
        terms = query_terms(q) if q else []
        needle = q.casefold() if q else ""

        matched = []
        for row, vector in self._snapshot():
            if any(row.get(column) != value for column, value in filters.items()):
                continue
            if q and not (
                vector_matches(vector, terms)
                or needle in (row.get("title") or "").casefold()
                or fuzzy_matches(q, row)
            ):
                continue
            matched.append((row, vector))

        if sort == "relevance" and q:
            matched.sort(key=lambda rv: (
                -rank(rv[1], terms),
                -word_similarity(q, rv[0].get("title")),
                -_published_ts(rv[0]),
                -rv[0]["id"],
            ))
        elif sort == "closing_soon":
            matched.sort(key=lambda rv: (
                rv[0].get("apply_end_date") is None,
                rv[0].get("apply_end_date") or date.min,
                rv[0]["id"],
            ))
        else:
            matched.sort(key=lambda rv: (_published_ts(rv[0]), rv[0]["id"]), reverse=True)

        rows = [row for row, _ in matched]
        offset = (page - 1) * page_size

        return {
            "jobs": rows[offset:offset + page_size],
            "total": len(rows),
            "facets": {
                name: sorted({row[column] for row in rows if row.get(column) is not None})
                for name, column in FACET_COLUMNS
            },
        }

    def nearby_candidates(
        self,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
        status: str = "open",
    ) -> List[Dict]:
        with self._lock:
            start = bisect.bisect_left(self._lat_index, (min_lat, -1))
            end = bisect.bisect_right(self._lat_index, (max_lat, float("inf")))
            candidates = []
            for _, job_id in self._lat_index[start:end]:
                row = self._rows[job_id]
                if row.get("status") != status:
                    continue
                if min_lon <= row["lon"] <= max_lon:
                    candidates.append(copy.deepcopy(row))
            return candidates
