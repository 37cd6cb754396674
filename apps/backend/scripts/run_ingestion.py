#!/usr/bin/env python3
"""
Run one ingestion pass over the active sources.

Usage:
    python scripts/run_ingestion.py --sources-file sources.json
    python scripts/run_ingestion.py --purge-geo-cache

Meant to be triggered by an external scheduler (cron, systemd timer, ...).
Exit status is 0 when every source succeeded or warned, 1 when any failed.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent.parent))
load_dotenv()

from app.config import GOVJOBS_SOURCES_FILE, INGEST_MAX_CONCURRENCY  # noqa: E402
from app.sources import create_source_registry, load_sources_file  # noqa: E402
from core.geocoder import create_geo_cache  # noqa: E402
from orchestrator import build_orchestrator  # noqa: E402

logger = logging.getLogger("run_ingestion")


def print_results(summary: dict):
    print("=" * 70)
    print(f"Sources: {summary['sources']}  Statuses: {summary['statuses']}")
    print("=" * 70)
    for result in summary["results"]:
        icon = {"ok": "✅", "warn": "⚠️ ", "fail": "❌"}.get(result["status"], "•")
        counts = result["counts"]
        print(
            f"{icon} {result['name']}: {result['message']} "
            f"[found={counts['found']} inserted={counts['inserted']} updated={counts['updated']} "
            f"skipped={counts['skipped']} rejected={counts['rejected']} failed={counts['failed']}] "
            f"{result['duration_ms']}ms"
        )
    print("-" * 70)
    print(f"Totals: {summary['totals']}")


async def run(args) -> int:
    registry = create_source_registry()

    sources_file = args.sources_file or GOVJOBS_SOURCES_FILE
    if sources_file:
        definitions = load_sources_file(sources_file)
        registry.sync(definitions)
        print(f"📋 Synced {len(definitions)} source definitions from {sources_file}")

    if args.purge_geo_cache:
        deleted = create_geo_cache().purge_stale()
        print(f"🧹 Purged {deleted} stale geo cache entries")

    if args.skip_ingestion:
        return 0

    orchestrator = build_orchestrator(registry=registry, max_concurrency=args.concurrency)
    summary = await orchestrator.run_once()
    print_results(summary)

    return 1 if summary["statuses"].get("fail") else 0


def main():
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Run one govjobs ingestion pass")
    parser.add_argument("--sources-file", type=str, help="JSON source registry to sync before running (default: GOVJOBS_SOURCES_FILE)")
    parser.add_argument("--concurrency", type=int, default=INGEST_MAX_CONCURRENCY, help="Max sources processed in parallel")
    parser.add_argument("--purge-geo-cache", action="store_true", help="Delete geo cache entries older than GEO_CACHE_TTL_DAYS")
    parser.add_argument("--skip-ingestion", action="store_true", help="Only sync sources / purge cache")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
