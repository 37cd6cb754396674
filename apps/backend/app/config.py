import os

import psycopg2

from app.db_config import db_config


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


GOVJOBS_ENV = os.getenv("GOVJOBS_ENV", "production").lower()

# Ingestion
INGEST_MAX_CONCURRENCY = _int_env("INGEST_MAX_CONCURRENCY", 3)
INGEST_FETCH_TIMEOUT = _float_env("INGEST_FETCH_TIMEOUT", 20.0)
INGEST_SOURCE_TIMEOUT = _float_env("INGEST_SOURCE_TIMEOUT", 120.0)
INGEST_MAX_RESPONSE_KB = _int_env("INGEST_MAX_RESPONSE_KB", 2048)
GOVJOBS_SOURCES_FILE = os.getenv("GOVJOBS_SOURCES_FILE")
# Run one ingestion pass when the API starts (useful with the in-process stores)
INGEST_ON_STARTUP = os.getenv("INGEST_ON_STARTUP", "false").lower() == "true"

# Reverse geocoding
LOCATIONIQ_API_KEY = os.getenv("LOCATIONIQ_API_KEY")
GEO_PROVIDER_TIMEOUT = _float_env("GEO_PROVIDER_TIMEOUT", 5.0)
GEO_CACHE_TTL_DAYS = _int_env("GEO_CACHE_TTL_DAYS", 30)
GEO_CACHE_MAX_ENTRIES = _int_env("GEO_CACHE_MAX_ENTRIES", 1000)

# Query engine
NEARBY_MAX_RADIUS_KM = _float_env("NEARBY_MAX_RADIUS_KM", 1000.0)


class Capabilities:
    @staticmethod
    def is_db_enabled() -> bool:
        """Check if a PostgreSQL database is configured"""
        return db_config.is_db_enabled

    @staticmethod
    def check_db_connection() -> bool:
        """Verify database connection with a trivial query"""
        if not Capabilities.is_db_enabled():
            return False

        conn_params = db_config.get_connection_params()
        if not conn_params:
            return False

        try:
            # Health checks use a 1 second connect timeout
            conn = psycopg2.connect(**{**conn_params, "connect_timeout": 1})
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchone()
            cursor.close()
            conn.close()
            return True
        except psycopg2.Error:
            return False

    @staticmethod
    def is_geocoding_enabled() -> bool:
        return bool(os.getenv("LOCATIONIQ_API_KEY"))

    @staticmethod
    def store_backend() -> str:
        return "postgres" if Capabilities.is_db_enabled() else "memory"

    @classmethod
    def get_status(cls) -> dict:
        backend = cls.store_backend()
        # In-process stores are always reachable
        db = cls.check_db_connection() if backend == "postgres" else True
        geocoding = cls.is_geocoding_enabled()

        if db and geocoding:
            status = "green"
        elif db:
            status = "amber"
        else:
            status = "red"

        return {
            "status": status,
            "components": {
                "db": db,
                "geocoding": geocoding,
                "store_backend": backend,
            },
        }


def get_env_presence() -> dict:
    known_vars = [
        "GOVJOBS_ENV",
        "DATABASE_URL",
        "GOVJOBS_SOURCES_FILE",
        "INGEST_ON_STARTUP",
        "INGEST_MAX_CONCURRENCY",
        "INGEST_FETCH_TIMEOUT",
        "INGEST_SOURCE_TIMEOUT",
        "INGEST_MAX_RESPONSE_KB",
        "LOCATIONIQ_API_KEY",
        "GEO_PROVIDER_TIMEOUT",
        "GEO_CACHE_TTL_DAYS",
        "GEO_CACHE_MAX_ENTRIES",
        "NEARBY_MAX_RADIUS_KM",
        "RATE_LIMIT_SEARCH",
        "RATE_LIMIT_GEO",
        "RATE_LIMIT_ENABLED",
        "MEMORY_STORE_MAX_JOBS",
        "DB_CONNECT_TIMEOUT",
        "CORS_ORIGINS",
    ]

    return {var: bool(os.getenv(var)) for var in known_vars}
