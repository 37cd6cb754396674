"""
Ingestion orchestrator: Registry -> Adapter -> Normalizer -> Dedup -> Store

Sources are independent units of work run with bounded concurrency. A
source that fails (network, parse, unknown type, timeout, or any other
error) is logged and recorded on its registry row; the remaining sources
still run. Periodic triggering is left to an external scheduler.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import psycopg2

from app.config import INGEST_MAX_CONCURRENCY, INGEST_SOURCE_TIMEOUT
from core.dedup import compute_source_hash
from core.errors import ListingRejected, SourceError
from core.normalize import normalize_listing
from crawler.registry import AdapterRegistry, build_default_registry

logger = logging.getLogger(__name__)

COUNT_KEYS = ("found", "inserted", "updated", "skipped", "rejected", "failed")


def _empty_counts() -> Dict[str, int]:
    return {key: 0 for key in COUNT_KEYS}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionOrchestrator:
    """Runs one ingestion pass over the active sources"""

    def __init__(
        self,
        registry,
        store,
        adapters: Optional[AdapterRegistry] = None,
        max_concurrency: int = INGEST_MAX_CONCURRENCY,
        source_timeout: float = INGEST_SOURCE_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.registry = registry
        self.store = store
        self.adapters = adapters or build_default_registry()
        self.max_concurrency = max(1, max_concurrency)
        self.source_timeout = source_timeout
        self.clock = clock

    def prepare_candidates(self, listings: Iterable[Dict], source: Dict) -> Tuple[List[Dict], Dict[str, int]]:
        """Normalize and hash listings; repeats of a hash within one run are skipped"""
        counts = _empty_counts()
        now = self.clock()
        seen = set()
        candidates = []

        for raw in listings:
            counts["found"] += 1
            try:
                candidate = normalize_listing(raw, source, now=now)
            except ListingRejected as e:
                counts["rejected"] += 1
                logger.debug(f"[orchestrator] Rejected listing from source {source.get('id')}: {e}")
                continue

            candidate["source_hash"] = compute_source_hash(candidate)
            if candidate["source_hash"] in seen:
                counts["skipped"] += 1
                continue
            seen.add(candidate["source_hash"])
            candidates.append(candidate)

        return candidates, counts

    async def _run_source(self, source: Dict) -> Dict[str, int]:
        adapter = self.adapters.get(source.get("type"))
        if adapter is None:
            raise SourceError(f"Unknown source type: {source.get('type')!r}", source_id=source.get("id"))

        stream = await adapter.listings(source)
        candidates, counts = self.prepare_candidates(stream, source)

        # Store writes block (psycopg2), keep them off the event loop
        write_counts = await asyncio.to_thread(self.store.upsert_many, candidates)
        for key, value in write_counts.items():
            counts[key] += value
        return counts

    async def ingest_source(self, source: Dict) -> Dict:
        """
        Ingest a single source.

        Returns:
            {'source_id', 'name', 'status': 'ok'|'warn'|'fail', 'message', 'counts', 'duration_ms'}
        """
        start_time = time.time()
        counts = _empty_counts()
        logger.info(f"[orchestrator] Starting ingestion: {source.get('name')} ({source.get('type')} {source.get('base_url')})")

        try:
            counts = await asyncio.wait_for(self._run_source(source), timeout=self.source_timeout)
            if counts["inserted"] > 0 or counts["updated"] > 0:
                status = "ok"
                message = f"Found {counts['found']}, inserted {counts['inserted']}, updated {counts['updated']}"
            elif counts["found"] == 0:
                status = "warn"
                message = "No listings found"
            elif counts["failed"] > 0 and counts["skipped"] == 0:
                status = "warn"
                message = f"All {counts['failed']} writes failed"
            else:
                status = "ok"
                message = "No changes"
        except asyncio.TimeoutError:
            status = "fail"
            message = f"Timed out after {self.source_timeout:g}s"
            logger.error(f"[orchestrator] Source {source.get('name')} timed out")
        except SourceError as e:
            status = "fail"
            message = str(e)[:500]
            logger.error(f"[orchestrator] Source {source.get('name')} failed: {e}")
        except Exception as e:
            # One broken source must not stop the pass
            status = "fail"
            message = f"Unexpected error: {e}"[:500]
            logger.error(f"[orchestrator] Unexpected error ingesting {source.get('name')}: {e}", exc_info=True)

        duration_ms = int((time.time() - start_time) * 1000)
        await self._record_run(source, status, message)

        logger.info(
            f"[orchestrator] Finished {source.get('name')}: {status} - {message} "
            f"(found={counts['found']} inserted={counts['inserted']} updated={counts['updated']} "
            f"skipped={counts['skipped']} rejected={counts['rejected']} failed={counts['failed']}, {duration_ms}ms)"
        )

        return {
            "source_id": source.get("id"),
            "name": source.get("name"),
            "status": status,
            "message": message,
            "counts": counts,
            "duration_ms": duration_ms,
        }

    async def _record_run(self, source: Dict, status: str, message: str):
        try:
            await asyncio.to_thread(self.registry.mark_run, source.get("id"), status, message)
        except psycopg2.Error as e:
            logger.error(f"[orchestrator] Could not record run for source {source.get('id')}: {e}")

    async def run_once(self) -> Dict:
        """Ingest every active source once"""
        sources = await asyncio.to_thread(self.registry.list_active)

        if not sources:
            logger.info("[orchestrator] No active sources")
            return {"sources": 0, "results": [], "totals": _empty_counts(), "statuses": {}}

        logger.info(f"[orchestrator] Running {len(sources)} active sources (concurrency {self.max_concurrency})")

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_with_semaphore(source: Dict) -> Dict:
            async with semaphore:
                return await self.ingest_source(source)

        results = await asyncio.gather(*(run_with_semaphore(s) for s in sources))

        totals = _empty_counts()
        statuses: Dict[str, int] = {}
        for result in results:
            for key in COUNT_KEYS:
                totals[key] += result["counts"][key]
            statuses[result["status"]] = statuses.get(result["status"], 0) + 1

        logger.info(f"[orchestrator] Pass complete: {statuses} totals={totals}")
        return {"sources": len(sources), "results": list(results), "totals": totals, "statuses": statuses}


def build_orchestrator(registry=None, store=None, **kwargs) -> IngestionOrchestrator:
    """Orchestrator wired to the configured backend"""
    if registry is None:
        from app.sources import create_source_registry
        registry = create_source_registry()
    if store is None:
        from pipeline import create_job_store
        store = create_job_store()
    return IngestionOrchestrator(registry, store, **kwargs)
