"""
Job storage for the ingestion pipeline.

Two interchangeable stores implement the same contract
(upsert / upsert_many / get / search / nearby_candidates / count / hashes):
PostgresJobStore when DATABASE_URL is configured, MemoryJobStore otherwise.
"""

__version__ = "1.0.0"


def create_job_store():
    """Store for the configured backend"""
    from app.db_config import db_config

    if db_config.is_db_enabled:
        from pipeline.job_store import PostgresJobStore
        return PostgresJobStore()

    from pipeline.memory_store import MemoryJobStore
    return MemoryJobStore()
