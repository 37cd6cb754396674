"""
PostgreSQL job store.

Every write goes through one INSERT ... ON CONFLICT (source_hash) statement
that also recomputes search_vector, so concurrent ingestion runs can never
create two rows for the same hash and the lexical index always reflects the
row it belongs to.
"""
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import RealDictCursor

from app.db_config import db_config
from core.dedup import MUTABLE_FIELDS, compute_source_hash
from core.errors import DuplicateConflict
from core.text_index import FIELD_WEIGHTS, TS_CONFIG, query_terms

logger = logging.getLogger(__name__)

WRITE_COLUMNS = (
    "source_id", "title", "organisation", "source_url", "official_notification_url", "source_hash",
    "category", "qualification", "status", "state", "district", "lat", "lon", "location_label",
    "vacancies", "description", "age_limit", "salary",
    "apply_start_date", "apply_end_date", "exam_date", "published_at",
)

# search_vector is internal and never returned
JOB_COLUMNS = ", ".join(("id",) + WRITE_COLUMNS + ("created_at", "updated_at"))

FACET_COLUMNS = (("states", "state"), ("categories", "category"), ("statuses", "status"))

SORT_ORDER = {
    "latest": "published_at DESC, id DESC",
    "closing_soon": "apply_end_date ASC NULLS LAST, id ASC",
}


def search_vector_sql(column_ref) -> str:
    """Weighted tsvector expression; column_ref maps a field name to its SQL reference"""
    return " || ".join(
        f"setweight(to_tsvector('{TS_CONFIG}', coalesce({column_ref(field)}, '')), '{label}')"
        for field, label in FIELD_WEIGHTS
    )


def _insert_ref(field: str) -> str:
    return f"%({field})s"


def _update_ref(field: str) -> str:
    return f"EXCLUDED.{field}" if field in MUTABLE_FIELDS else f"jobs.{field}"


UPSERT_SQL = f"""
    INSERT INTO jobs ({", ".join(WRITE_COLUMNS)}, search_vector)
    VALUES ({", ".join(_insert_ref(c) for c in WRITE_COLUMNS)}, {search_vector_sql(_insert_ref)})
    ON CONFLICT (source_hash) DO UPDATE SET
        {", ".join(f"{c} = EXCLUDED.{c}" for c in MUTABLE_FIELDS)},
        search_vector = {search_vector_sql(_update_ref)},
        updated_at = NOW()
    WHERE ({", ".join(f"jobs.{c}" for c in MUTABLE_FIELDS)})
        IS DISTINCT FROM ({", ".join(f"EXCLUDED.{c}" for c in MUTABLE_FIELDS)})
    RETURNING id, (xmax = 0) AS inserted
"""


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresJobStore:
    """Job store backed by the jobs table"""

    def __init__(self, conn_params: Optional[Dict] = None):
        self.conn_params = conn_params or db_config.get_connection_params()

    def _get_db_conn(self):
        return psycopg2.connect(**self.conn_params)

    def _upsert_row(self, cursor, job: Dict) -> Tuple[str, Optional[int]]:
        params = {column: job.get(column) for column in WRITE_COLUMNS}
        params["source_hash"] = job.get("source_hash") or compute_source_hash(job)
        cursor.execute(UPSERT_SQL, params)
        row = cursor.fetchone()
        if row is None:
            # Conflict matched but nothing changed
            return "skip", None
        return ("insert" if row["inserted"] else "update"), row["id"]

    def upsert(self, job: Dict) -> Tuple[str, Optional[int]]:
        """Insert, update or skip one candidate. Returns (action, job_id)."""
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                result = self._upsert_row(cursor, job)
            conn.commit()
            return result
        except psycopg2.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def upsert_many(self, jobs: Iterable[Dict]) -> Dict[str, int]:
        """
        Upsert candidates on one connection, committing per row.
        A failing row is rolled back and counted; the rest continue.
        """
        counts = {"inserted": 0, "updated": 0, "skipped": 0, "failed": 0}
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                for job in jobs:
                    try:
                        action = self._upsert_with_retry(conn, cursor, job)
                    except (psycopg2.DataError, psycopg2.IntegrityError, DuplicateConflict) as e:
                        conn.rollback()
                        counts["failed"] += 1
                        logger.warning(f"[job_store] Failed to upsert '{(job.get('title') or '')[:60]}': {e}")
                        continue
                    counts[{"insert": "inserted", "update": "updated", "skip": "skipped"}[action]] += 1
        finally:
            conn.close()
        return counts

    def _upsert_with_retry(self, conn, cursor, job: Dict) -> str:
        # ON CONFLICT settles concurrent writers; a unique violation here means
        # a racing insert committed between our snapshot and write, so retry once.
        for attempt in range(2):
            try:
                action, _ = self._upsert_row(cursor, job)
                conn.commit()
                return action
            except pg_errors.UniqueViolation as e:
                conn.rollback()
                if attempt:
                    raise DuplicateConflict(str(e)) from e
        raise DuplicateConflict(job.get("source_hash") or "")

    def _fetch_all(self, sql: str, params=()) -> List[Dict]:
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(sql, params)
                return [dict(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get(self, job_id: int) -> Optional[Dict]:
        rows = self._fetch_all(f"SELECT {JOB_COLUMNS} FROM jobs WHERE id = %s", (job_id,))
        return rows[0] if rows else None

    def count(self) -> int:
        return self._fetch_all("SELECT COUNT(*) AS count FROM jobs")[0]["count"]

    def hashes(self, source_id: Optional[int] = None) -> Set[str]:
        if source_id is None:
            rows = self._fetch_all("SELECT source_hash FROM jobs")
        else:
            rows = self._fetch_all("SELECT source_hash FROM jobs WHERE source_id = %s", (source_id,))
        return {row["source_hash"].strip() for row in rows}

    def _build_where(self, q: Optional[str], filters: Dict[str, str]) -> Tuple[str, list]:
        where_clauses = []
        params: list = []

        for column, value in filters.items():
            where_clauses.append(f"{column} = %s")
            params.append(value)

        if q:
            ts_text = " ".join(query_terms(q))
            where_clauses.append(
                "(search_vector @@ plainto_tsquery(%s, %s) OR title ILIKE %s "
                "OR %s <%% title OR %s <%% organisation)"
            )
            params.extend([TS_CONFIG, ts_text, f"%{escape_like(q)}%", q, q])

        where_sql = " AND ".join(where_clauses) if where_clauses else "TRUE"
        return where_sql, params

    def search(
        self,
        q: Optional[str],
        filters: Dict[str, str],
        sort: str,
        page: int,
        page_size: int,
    ) -> Dict:
        """
        Filtered, sorted page of jobs with total and facets of the filtered set.
        `filters` keys are trusted column names; values are matched exactly.
        """
        where_sql, params = self._build_where(q, filters)

        if sort == "relevance" and q:
            order_sql = (
                "ts_rank(search_vector, plainto_tsquery(%s, %s)) DESC, "
                "word_similarity(%s, title) DESC, published_at DESC, id DESC"
            )
            order_params = [TS_CONFIG, " ".join(query_terms(q)), q]
        else:
            order_sql = SORT_ORDER.get(sort, SORT_ORDER["latest"])
            order_params = []

        facet_sql = ", ".join(
            f"array_agg(DISTINCT {column} ORDER BY {column}) FILTER (WHERE {column} IS NOT NULL) AS {name}"
            for name, column in FACET_COLUMNS
        )

        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(f"SELECT COUNT(*) AS total, {facet_sql} FROM jobs WHERE {where_sql}", params)
                summary = cursor.fetchone()

                cursor.execute(
                    f"SELECT {JOB_COLUMNS} FROM jobs WHERE {where_sql} ORDER BY {order_sql} LIMIT %s OFFSET %s",
                    params + order_params + [page_size, (page - 1) * page_size],
                )
                jobs = [dict(row) for row in cursor.fetchall()]
        finally:
            conn.close()

        return {
            "jobs": jobs,
            "total": summary["total"],
            "facets": {name: list(summary[name] or []) for name, _ in FACET_COLUMNS},
        }

    def nearby_candidates(
        self,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
        status: str = "open",
    ) -> List[Dict]:
        """Jobs inside the lat/lon box (range index scan), unsorted"""
        return self._fetch_all(
            f"""
            SELECT {JOB_COLUMNS} FROM jobs
            WHERE status = %s
              AND lat IS NOT NULL AND lon IS NOT NULL
              AND lat BETWEEN %s AND %s
              AND lon BETWEEN %s AND %s
            """,
            (status, min_lat, max_lat, min_lon, max_lon),
        )
