from fastapi import FastAPI, Query, HTTPException, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from typing import Optional
from contextlib import asynccontextmanager
import asyncio
import os
import logging
import traceback

# Settings in app.config are read at import time
load_dotenv()

from app.config import (
    Capabilities,
    get_env_presence,
    GOVJOBS_ENV,
    GOVJOBS_SOURCES_FILE,
    INGEST_ON_STARTUP,
)
from app.search import SearchService, get_search_service, search_service
from app.geo import router as geo_router
from app.rate_limit import limiter, RATE_LIMIT_SEARCH
from core.errors import InvalidQueryParameter
from slowapi.errors import RateLimitExceeded
from slowapi import _rate_limit_exceeded_handler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def _startup_ingestion():
    from app.sources import create_source_registry, load_sources_file
    from orchestrator import build_orchestrator

    registry = create_source_registry()
    if GOVJOBS_SOURCES_FILE:
        definitions = await asyncio.to_thread(load_sources_file, GOVJOBS_SOURCES_FILE)
        await asyncio.to_thread(registry.sync, definitions)

    # Share the API's store so in-process results are searchable
    orchestrator = build_orchestrator(registry=registry, store=search_service.store)
    summary = await orchestrator.run_once()
    logger.info(f"[govjobs] Startup ingestion: {summary['statuses']} totals={summary['totals']}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application lifecycle events."""
    logger.info(f"[govjobs] env: GOVJOBS_ENV={GOVJOBS_ENV}, store backend: {Capabilities.store_backend()}")

    ingestion_task = None
    if INGEST_ON_STARTUP:
        logger.info("[govjobs] INGEST_ON_STARTUP set, running one ingestion pass in the background")
        ingestion_task = asyncio.create_task(_startup_ingestion())

    yield

    if ingestion_task and not ingestion_task.done():
        ingestion_task.cancel()
        try:
            await ingestion_task
        except asyncio.CancelledError:
            logger.info("[govjobs] Startup ingestion cancelled on shutdown")


app = FastAPI(title="GovJobs API", version="0.1.0", lifespan=lifespan)

# Add rate limiter state
app.state.limiter = limiter

# Rate limit exceeded handler
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Error masking middleware
@app.middleware("http")
async def error_masking_middleware(request: Request, call_next):
    """Mask detailed errors in production; show full errors in dev."""
    try:
        response = await call_next(request)
        return response
    except HTTPException:
        raise
    except Exception as e:
        is_dev = os.getenv("GOVJOBS_ENV", "").lower() == "dev"

        logger.error(f"Unhandled error: {str(e)}")
        if is_dev:
            logger.error(traceback.format_exc())

        if is_dev:
            return JSONResponse(
                status_code=500,
                content={
                    "status": "error",
                    "error": str(e),
                    "traceback": traceback.format_exc()
                }
            )
        else:
            return JSONResponse(
                status_code=500,
                content={
                    "status": "error",
                    "error": "An internal error occurred. Please try again later."
                }
            )


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(geo_router)


@app.get("/api/healthz")
async def healthz():
    return Capabilities.get_status()


@app.get("/admin/config/env")
async def config_env():
    return get_env_presence()


@app.get("/api/jobs")
@limiter.limit(RATE_LIMIT_SEARCH)
async def search_jobs(
    request: Request,
    q: Optional[str] = Query(None, description="Free-text query (max 200 chars)"),
    state: Optional[str] = Query(None, description="Exact state"),
    district: Optional[str] = Query(None, description="Exact district"),
    category: Optional[str] = Query(None, description="Exact category"),
    qualification: Optional[str] = Query(None, description="Exact qualification"),
    status: Optional[str] = Query(None, description="open, upcoming, result_out or closed"),
    sort: Optional[str] = Query(None, description="Sort order: latest, closing_soon, relevance"),
    page: Optional[str] = Query(None, description="Page number (default 1)"),
    pageSize: Optional[str] = Query(None, description="Page size (default 20, max 100)"),
    service: SearchService = Depends(get_search_service),
):
    try:
        return await service.search(
            q=q,
            state=state,
            district=district,
            category=category,
            qualification=qualification,
            status=status,
            sort=sort,
            page=page,
            page_size=pageSize,
        )
    except InvalidQueryParameter as e:
        raise HTTPException(status_code=400, detail=e.message)


# Registered before /api/jobs/{job_id} so "nearby" is not taken for an id
@app.get("/api/jobs/nearby")
@limiter.limit(RATE_LIMIT_SEARCH)
async def nearby_jobs(
    request: Request,
    lat: Optional[str] = Query(None, description="Center latitude"),
    lon: Optional[str] = Query(None, description="Center longitude"),
    radiusKm: Optional[str] = Query(None, description="Radius in km"),
    limit: Optional[str] = Query(None, description="Max results (default 20, max 100)"),
    service: SearchService = Depends(get_search_service),
):
    try:
        return await service.nearby(lat=lat, lon=lon, radius_km=radiusKm, limit=limit)
    except InvalidQueryParameter as e:
        raise HTTPException(status_code=400, detail=e.message)


@app.get("/api/jobs/{job_id}")
async def get_job_by_id(job_id: str, service: SearchService = Depends(get_search_service)):
    """Get a single job by its numeric id."""
    try:
        job = await service.get_job(job_id)
    except InvalidQueryParameter as e:
        raise HTTPException(status_code=400, detail=e.message)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
