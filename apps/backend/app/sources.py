"""
Source registry: operator-defined job sources and their run bookkeeping.

Definitions are validated with pydantic and usually come from a JSON file:

    {"sources": [{"name": "...", "base_url": "...", "type": "rss", "config": {...}}]}

The registry is keyed by the unique source name, so loading the same file
twice updates rows in place.
"""
import copy
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.db_config import db_config

logger = logging.getLogger(__name__)

SOURCE_COLUMNS = """
    id, name, base_url, type, config, active,
    last_run_at, last_run_status, last_run_message, created_at, updated_at
"""


class SourceConfig(BaseModel):
    # Unknown options are kept so adapters can grow without schema changes
    model_config = ConfigDict(extra="allow")

    # RSS
    titleField: Optional[str] = None
    linkField: Optional[str] = None
    descriptionField: Optional[str] = None
    # HTML
    listSelector: Optional[str] = None
    titleSelector: Optional[str] = None
    orgSelector: Optional[str] = None
    linkSelector: Optional[str] = None
    descriptionSelector: Optional[str] = None
    dateSelector: Optional[str] = None
    # PDF
    pdfUrls: Optional[List[str]] = None
    # Defaults applied by the normalizer
    defaultOrg: Optional[str] = None
    defaultState: Optional[str] = None
    defaultCategory: Optional[str] = None
    defaultDistrict: Optional[str] = None
    defaultQualification: Optional[str] = None


class SourceDefinition(BaseModel):
    name: str = Field(min_length=1)
    base_url: str
    type: Literal["rss", "html", "pdf"]
    config: SourceConfig = Field(default_factory=SourceConfig)
    active: bool = True

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return v

    @field_validator("type", mode="before")
    @classmethod
    def lowercase_type(cls, v):
        return v.lower() if isinstance(v, str) else v

    def config_dict(self) -> Dict:
        return self.config.model_dump(exclude_none=True)


class SourcesFile(BaseModel):
    sources: List[SourceDefinition]


def load_sources_file(path: str) -> List[SourceDefinition]:
    """
    Read and validate a JSON registry file.

    Raises:
        OSError: file unreadable
        ValueError: invalid JSON or an invalid source definition
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)

    if isinstance(data, list):
        data = {"sources": data}

    definitions = SourcesFile.model_validate(data).sources

    names = [d.name for d in definitions]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate source names in {path}: {', '.join(duplicates)}")

    logger.info(f"[sources] Loaded {len(definitions)} source definitions from {path}")
    return definitions


def _as_definition(definition: Union[SourceDefinition, Dict]) -> SourceDefinition:
    if isinstance(definition, SourceDefinition):
        return definition
    return SourceDefinition.model_validate(definition)


class MemorySourceRegistry:
    """In-process registry used when no database is configured"""

    def __init__(self):
        self._sources: Dict[int, Dict] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def upsert_source(self, definition: Union[SourceDefinition, Dict]) -> Dict:
        definition = _as_definition(definition)
        now = datetime.now(timezone.utc)
        with self._lock:
            row = next((s for s in self._sources.values() if s["name"] == definition.name), None)
            if row is None:
                row = {
                    "id": self._next_id,
                    "name": definition.name,
                    "last_run_at": None,
                    "last_run_status": None,
                    "last_run_message": None,
                    "created_at": now,
                }
                self._sources[row["id"]] = row
                self._next_id += 1
            row.update({
                "base_url": definition.base_url,
                "type": definition.type,
                "config": definition.config_dict(),
                "active": definition.active,
                "updated_at": now,
            })
            return copy.deepcopy(row)

    def sync(self, definitions: List[SourceDefinition]) -> List[Dict]:
        return [self.upsert_source(d) for d in definitions]

    def list_active(self) -> List[Dict]:
        with self._lock:
            return [copy.deepcopy(s) for _, s in sorted(self._sources.items()) if s["active"]]

    def list_all(self) -> List[Dict]:
        with self._lock:
            return [copy.deepcopy(s) for _, s in sorted(self._sources.items())]

    def get(self, source_id: int) -> Optional[Dict]:
        with self._lock:
            row = self._sources.get(source_id)
            return copy.deepcopy(row) if row else None

    def mark_run(self, source_id: int, status: str, message: Optional[str] = None):
        with self._lock:
            row = self._sources.get(source_id)
            if row is None:
                logger.warning(f"[sources] mark_run for unknown source {source_id}")
                return
            now = datetime.now(timezone.utc)
            row["last_run_at"] = now
            row["last_run_status"] = status
            row["last_run_message"] = message
            row["updated_at"] = now


class PostgresSourceRegistry:
    """Registry backed by the job_sources table"""

    def __init__(self, conn_params: Optional[Dict] = None):
        self.conn_params = conn_params or db_config.get_connection_params()

    def _get_db_conn(self):
        return psycopg2.connect(**self.conn_params)

    def upsert_source(self, definition: Union[SourceDefinition, Dict]) -> Dict:
        definition = _as_definition(definition)
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(f"""
                    INSERT INTO job_sources (name, base_url, type, config, active)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (name) DO UPDATE SET
                        base_url = EXCLUDED.base_url,
                        type = EXCLUDED.type,
                        config = EXCLUDED.config,
                        active = EXCLUDED.active,
                        updated_at = NOW()
                    RETURNING {SOURCE_COLUMNS}
                """, (
                    definition.name,
                    definition.base_url,
                    definition.type,
                    Json(definition.config_dict()),
                    definition.active,
                ))
                row = cursor.fetchone()
            conn.commit()
            return dict(row)
        except psycopg2.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def sync(self, definitions: List[SourceDefinition]) -> List[Dict]:
        return [self.upsert_source(d) for d in definitions]

    def _fetch(self, sql: str, params=()) -> List[Dict]:
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(sql, params)
                return [dict(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def list_active(self) -> List[Dict]:
        return self._fetch(f"SELECT {SOURCE_COLUMNS} FROM job_sources WHERE active ORDER BY id")

    def list_all(self) -> List[Dict]:
        return self._fetch(f"SELECT {SOURCE_COLUMNS} FROM job_sources ORDER BY id")

    def get(self, source_id: int) -> Optional[Dict]:
        rows = self._fetch(f"SELECT {SOURCE_COLUMNS} FROM job_sources WHERE id = %s", (source_id,))
        return rows[0] if rows else None

    def mark_run(self, source_id: int, status: str, message: Optional[str] = None):
        conn = self._get_db_conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("""
                    UPDATE job_sources
                    SET last_run_at = NOW(),
                        last_run_status = %s,
                        last_run_message = %s,
                        updated_at = NOW()
                    WHERE id = %s
                """, (status, (message or "")[:1000] or None, source_id))
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"[sources] Failed to record run for source {source_id}: {e}")
            raise
        finally:
            conn.close()


def create_source_registry():
    """Registry for the configured backend"""
    if db_config.is_db_enabled:
        return PostgresSourceRegistry()
    return MemorySourceRegistry()
