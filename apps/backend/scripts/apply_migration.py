#!/usr/bin/env python3
"""
Apply db/schema.sql to the configured PostgreSQL database and verify it.
The schema is idempotent, so this can be re-run safely.
"""
import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

import psycopg2  # type: ignore
from psycopg2.extras import RealDictCursor  # type: ignore

BACKEND_DIR = Path(__file__).parent.parent
SCHEMA_FILE = BACKEND_DIR / "db" / "schema.sql"

EXPECTED_TABLES = ["job_sources", "jobs", "geo_cache"]
EXPECTED_INDEXES = ["idx_jobs_fts", "idx_jobs_title_trgm", "idx_jobs_org_trgm", "idx_jobs_lat_lon"]


def get_db_connection(db_url: str = None):
    """Get database connection from --db-url or DATABASE_URL"""
    if db_url:
        print("📡 Connecting with --db-url")
        return psycopg2.connect(db_url, connect_timeout=10)

    sys.path.insert(0, str(BACKEND_DIR))
    from app.db_config import db_config

    conn_params = db_config.get_connection_params()
    if not conn_params:
        print("❌ Error: DATABASE_URL environment variable is not set")
        sys.exit(1)

    print(f"📡 Connecting to: {conn_params.get('host')}:{conn_params.get('port', 5432)}")
    return psycopg2.connect(**{**conn_params, "connect_timeout": 10})


def check_table_exists(cursor, table_name):
    cursor.execute("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_schema = 'public'
            AND table_name = %s
        ) as exists
    """, (table_name,))
    return cursor.fetchone()["exists"]


def check_index_exists(cursor, index_name):
    cursor.execute("""
        SELECT EXISTS (
            SELECT FROM pg_indexes
            WHERE schemaname = 'public'
            AND indexname = %s
        ) as exists
    """, (index_name,))
    return cursor.fetchone()["exists"]


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Apply the govjobs database schema")
    parser.add_argument("--db-url", type=str, help="PostgreSQL connection string (overrides DATABASE_URL)")
    parser.add_argument("--schema", type=str, default=str(SCHEMA_FILE), help="Path to schema SQL file")
    args = parser.parse_args()

    print("=" * 70)
    print("govjobs - Schema Migration")
    print("=" * 70)

    print("Step 1: Connecting to database...")
    try:
        conn = get_db_connection(args.db_url)
    except psycopg2.Error as e:
        print(f"❌ Failed to connect: {e}")
        sys.exit(1)
    cursor = conn.cursor(cursor_factory=RealDictCursor)
    print("✅ Connected successfully")

    print(f"Step 2: Applying {args.schema}...")
    sql = Path(args.schema).read_text(encoding="utf-8")
    try:
        cursor.execute(sql)
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        print(f"❌ Migration failed: {e}")
        sys.exit(1)
    print("✅ Schema applied")

    print("Step 3: Verifying migration...")
    verification_passed = True
    for table in EXPECTED_TABLES:
        if check_table_exists(cursor, table):
            print(f"✅ {table} table exists")
        else:
            print(f"❌ {table} table missing")
            verification_passed = False
    for index in EXPECTED_INDEXES:
        if check_index_exists(cursor, index):
            print(f"✅ {index} index exists")
        else:
            print(f"❌ {index} index missing")
            verification_passed = False

    cursor.close()
    conn.close()

    print("=" * 70)
    if verification_passed:
        print("✅ Migration completed successfully!")
    else:
        print("⚠️  Migration completed with warnings")
        sys.exit(2)


if __name__ == "__main__":
    main()
