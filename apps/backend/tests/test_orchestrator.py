"""
Tests for the ingestion orchestrator.

Adapters are replaced by StaticAdapter, which serves canned listings per
source name, so these tests exercise normalization, dedup, store writes and
per-source failure isolation without the network.
"""
import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

import psycopg2
import pytest

from app.sources import MemorySourceRegistry
from core.errors import SourceFetchError
from crawler.base import ListingStream
from crawler.registry import AdapterRegistry
from orchestrator import IngestionOrchestrator
from pipeline.memory_store import MemoryJobStore

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class StaticAdapter:
    def __init__(self, source_type, listings_by_name, delay=0):
        self.source_type = source_type
        self.listings_by_name = listings_by_name
        self.delay = delay
        self.calls = 0

    async def listings(self, source):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        value = self.listings_by_name[source["name"]]
        if isinstance(value, Exception):
            raise value
        return ListingStream(lambda: list(value), source_id=source["id"])


def listing(title, link, **extra):
    return {"title": title, "link": link, **extra}


@pytest.fixture
def registry():
    registry = MemorySourceRegistry()
    registry.sync([
        {"name": "feed-a", "base_url": "https://a.example.gov.in/rss", "type": "rss"},
        {"name": "page-b", "base_url": "https://b.example.gov.in/jobs", "type": "html"},
    ])
    return registry


@pytest.fixture
def listings():
    return {
        "feed-a": [
            listing("Staff Nurse", "https://a.example.gov.in/n/1", description="Last Date: 30/06/2025"),
            listing("Pharmacist", "https://a.example.gov.in/n/2"),
        ],
        "page-b": [
            listing("Junior Clerk", "https://b.example.gov.in/j/1"),
        ],
    }


def build(registry, store, listings, **kwargs):
    adapters = AdapterRegistry()
    adapters.register(StaticAdapter("rss", listings))
    adapters.register(StaticAdapter("html", listings))
    return IngestionOrchestrator(registry, store, adapters=adapters, clock=lambda: FIXED_NOW, **kwargs)


@pytest.mark.asyncio
async def test_first_run_inserts(registry, listings):
    store = MemoryJobStore()
    summary = await build(registry, store, listings).run_once()

    assert summary["sources"] == 2
    assert summary["statuses"] == {"ok": 2}
    assert summary["totals"]["found"] == 3
    assert summary["totals"]["inserted"] == 3
    assert store.count() == 3


@pytest.mark.asyncio
async def test_rerun_is_idempotent(registry, listings):
    store = MemoryJobStore()
    orchestrator = build(registry, store, listings)

    await orchestrator.run_once()
    hashes = store.hashes()
    summary = await orchestrator.run_once()

    assert summary["totals"]["inserted"] == 0
    assert summary["totals"]["updated"] == 0
    assert summary["totals"]["skipped"] == 3
    assert store.count() == 3
    assert store.hashes() == hashes
    assert all(result["message"] == "No changes" for result in summary["results"])


@pytest.mark.asyncio
async def test_changed_mutable_field_updates_in_place(registry, listings):
    store = MemoryJobStore()
    orchestrator = build(registry, store, listings)
    await orchestrator.run_once()

    listings["feed-a"][1]["description"] = "Corrigendum: dates revised"
    summary = await orchestrator.run_once()

    assert summary["totals"]["updated"] == 1
    assert store.count() == 3


@pytest.mark.asyncio
async def test_failing_source_does_not_stop_others(registry, listings):
    listings["feed-a"] = SourceFetchError("HTTP 503 for https://a.example.gov.in/rss", source_id=1)
    store = MemoryJobStore()

    summary = await build(registry, store, listings).run_once()

    by_name = {result["name"]: result for result in summary["results"]}
    assert by_name["feed-a"]["status"] == "fail"
    assert "HTTP 503" in by_name["feed-a"]["message"]
    assert by_name["page-b"]["status"] == "ok"
    assert store.count() == 1


@pytest.mark.asyncio
async def test_unexpected_error_is_contained(registry, listings):
    listings["page-b"] = RuntimeError("boom")
    summary = await build(registry, MemoryJobStore(), listings).run_once()
    assert summary["statuses"] == {"ok": 1, "fail": 1}


@pytest.mark.asyncio
async def test_run_bookkeeping_recorded(registry, listings):
    listings["page-b"] = SourceFetchError("unreachable")
    await build(registry, MemoryJobStore(), listings).run_once()

    rows = {row["name"]: row for row in registry.list_all()}
    assert rows["feed-a"]["last_run_status"] == "ok"
    assert rows["feed-a"]["last_run_at"] is not None
    assert rows["page-b"]["last_run_status"] == "fail"
    assert rows["page-b"]["last_run_message"] == "unreachable"


@pytest.mark.asyncio
async def test_inactive_sources_skipped(registry, listings):
    registry.upsert_source({"name": "page-b", "base_url": "https://b.example.gov.in/jobs", "type": "html", "active": False})
    orchestrator = build(registry, MemoryJobStore(), listings)

    summary = await orchestrator.run_once()

    assert summary["sources"] == 1
    assert [result["name"] for result in summary["results"]] == ["feed-a"]


@pytest.mark.asyncio
async def test_no_active_sources():
    summary = await build(MemorySourceRegistry(), MemoryJobStore(), {}).run_once()
    assert summary["sources"] == 0
    assert summary["results"] == []
    assert summary["statuses"] == {}
    assert set(summary["totals"].values()) == {0}


@pytest.mark.asyncio
async def test_unknown_type_fails_that_source(registry, listings):
    registry.upsert_source({"name": "upsc", "base_url": "https://upsc.example.gov.in/a.pdf", "type": "pdf"})
    summary = await build(registry, MemoryJobStore(), listings).run_once()

    by_name = {result["name"]: result for result in summary["results"]}
    assert by_name["upsc"]["status"] == "fail"
    assert "Unknown source type" in by_name["upsc"]["message"]
    assert by_name["feed-a"]["status"] == "ok"


@pytest.mark.asyncio
async def test_empty_source_warns(registry, listings):
    listings["page-b"] = []
    summary = await build(registry, MemoryJobStore(), listings).run_once()
    by_name = {result["name"]: result for result in summary["results"]}
    assert by_name["page-b"]["status"] == "warn"
    assert by_name["page-b"]["message"] == "No listings found"


@pytest.mark.asyncio
async def test_rejected_and_in_run_duplicates_counted(registry, listings):
    listings["feed-a"] = [
        listing("Staff Nurse", "https://a.example.gov.in/n/1"),
        listing("  staff   nurse ", "https://a.example.gov.in/n/1/?utm_source=rss"),
        listing("   ", "https://a.example.gov.in/n/3"),
    ]
    store = MemoryJobStore()
    summary = await build(registry, store, listings).run_once()

    counts = {result["name"]: result for result in summary["results"]}["feed-a"]["counts"]
    assert counts["found"] == 3
    assert counts["inserted"] == 1
    assert counts["skipped"] == 1
    assert counts["rejected"] == 1


@pytest.mark.asyncio
async def test_slow_source_times_out(registry, listings):
    adapters = AdapterRegistry()
    adapters.register(StaticAdapter("rss", listings, delay=5))
    adapters.register(StaticAdapter("html", listings))
    orchestrator = IngestionOrchestrator(registry, MemoryJobStore(), adapters=adapters, source_timeout=0.05)

    summary = await orchestrator.run_once()

    by_name = {result["name"]: result for result in summary["results"]}
    assert by_name["feed-a"]["status"] == "fail"
    assert by_name["feed-a"]["message"].startswith("Timed out")
    assert by_name["page-b"]["status"] == "ok"


@pytest.mark.asyncio
async def test_bookkeeping_failure_is_logged_not_raised(listings):
    registry = MagicMock()
    registry.list_active.return_value = [
        {"id": 1, "name": "feed-a", "type": "rss", "base_url": "https://a.example.gov.in/rss", "config": {}},
    ]
    registry.mark_run.side_effect = psycopg2.OperationalError("db down")

    summary = await build(registry, MemoryJobStore(), listings).run_once()

    assert summary["statuses"] == {"ok": 1}


@pytest.mark.asyncio
async def test_published_at_uses_clock(registry, listings):
    store = MemoryJobStore()
    await build(registry, store, listings).run_once()
    assert all(store.get(job_id)["published_at"] == FIXED_NOW for job_id in (1, 2, 3))


def test_prepare_candidates_computes_hash(registry, listings):
    orchestrator = build(registry, MemoryJobStore(), listings)
    source = registry.list_active()[0]
    candidates, counts = orchestrator.prepare_candidates(listings["feed-a"], source)

    assert counts["found"] == 2
    assert all(len(candidate["source_hash"]) == 64 for candidate in candidates)
    assert candidates[0]["source_id"] == source["id"]
    assert candidates[0]["apply_end_date"].isoformat() == "2025-06-30"
