import asyncio
import logging
from typing import Any, Optional

from app.config import NEARBY_MAX_RADIUS_KM
from core.errors import InvalidQueryParameter
from core.spatial import bounding_box, haversine_km, parse_coordinates, parse_float
from core.text_index import clean_query

logger = logging.getLogger(__name__)

SORT_OPTIONS = ("latest", "closing_soon", "relevance")
STATUS_OPTIONS = ("open", "upcoming", "result_out", "closed")
FILTER_FIELDS = ("state", "district", "category", "qualification", "status")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
# Keeps OFFSET well inside bigint
MAX_PAGE = 10000
DEFAULT_NEARBY_LIMIT = 20
MAX_NEARBY_LIMIT = 100

# SERIAL is a 4-byte integer
MAX_JOB_ID = 2**31 - 1


def safe_int(value: Any, default: int) -> int:
    """Lenient positive-integer parse for paging parameters"""
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def parse_job_id(raw: Any) -> int:
    text = str(raw).strip() if raw is not None else ""
    if not text.isdigit() or not text.isascii():
        raise InvalidQueryParameter("id", "Invalid job id")
    job_id = int(text)
    if job_id < 1 or job_id > MAX_JOB_ID:
        raise InvalidQueryParameter("id", "Invalid job id")
    return job_id


class SearchService:
    """
    Read side of the job store: keyword/faceted search, "near me" radius
    queries and single-job lookup. Parameter validation happens here so
    malformed input never reaches the store.
    """

    def __init__(self, store=None, max_radius_km: float = NEARBY_MAX_RADIUS_KM):
        self._store = store
        self.max_radius_km = max_radius_km

    @property
    def store(self):
        if self._store is None:
            from pipeline import create_job_store
            self._store = create_job_store()
        return self._store

    def _normalize_filters(self, **raw: Optional[str]) -> dict[str, str]:
        filters = {}
        for field in FILTER_FIELDS:
            value = raw.get(field)
            if value is None:
                continue
            value = value.strip()
            if not value:
                continue
            if field == "status" and value not in STATUS_OPTIONS:
                raise InvalidQueryParameter("status", f"Invalid status: must be one of {', '.join(STATUS_OPTIONS)}")
            filters[field] = value
        return filters

    async def search(
        self,
        q: Optional[str] = None,
        state: Optional[str] = None,
        district: Optional[str] = None,
        category: Optional[str] = None,
        qualification: Optional[str] = None,
        status: Optional[str] = None,
        sort: Optional[str] = None,
        page: Any = 1,
        page_size: Any = DEFAULT_PAGE_SIZE,
    ) -> dict[str, Any]:
        sort = (sort or "latest").strip() or "latest"
        if sort not in SORT_OPTIONS:
            raise InvalidQueryParameter("sort", f"Invalid sort: must be one of {', '.join(SORT_OPTIONS)}")

        filters = self._normalize_filters(
            state=state, district=district, category=category, qualification=qualification, status=status
        )
        query = clean_query(q) or None
        if sort == "relevance" and not query:
            sort = "latest"

        page = min(safe_int(page, 1), MAX_PAGE)
        page_size = min(safe_int(page_size, DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)

        result = await asyncio.to_thread(self.store.search, query, filters, sort, page, page_size)

        logger.debug(f"[search] q={query!r} filters={filters} sort={sort} -> {result['total']} jobs")

        return {
            "jobs": result["jobs"],
            "total": result["total"],
            "page": page,
            "pageSize": page_size,
            "facets": result["facets"],
        }

    async def nearby(
        self,
        lat: Any,
        lon: Any,
        radius_km: Any,
        limit: Any = None,
    ) -> dict[str, Any]:
        lat, lon = parse_coordinates(lat, lon)
        radius = parse_float("radiusKm", radius_km)
        if radius < 0 or radius > self.max_radius_km:
            raise InvalidQueryParameter(
                "radiusKm", f"Invalid radiusKm: must be between 0 and {self.max_radius_km:g}"
            )
        limit = min(safe_int(limit, DEFAULT_NEARBY_LIMIT), MAX_NEARBY_LIMIT)

        min_lat, max_lat, min_lon, max_lon = bounding_box(lat, lon, radius)
        candidates = await asyncio.to_thread(
            self.store.nearby_candidates, min_lat, max_lat, min_lon, max_lon, "open"
        )

        jobs = []
        for job in candidates:
            distance = round(haversine_km(lat, lon, job["lat"], job["lon"]), 3)
            if distance <= radius:
                job["distanceKm"] = distance
                jobs.append(job)

        jobs.sort(key=lambda j: (j["distanceKm"], j["id"]))

        return {
            "jobs": jobs[:limit],
            "lat": lat,
            "lon": lon,
            "radiusKm": radius,
        }

    async def get_job(self, job_id: Any) -> Optional[dict[str, Any]]:
        """Look up one job; raises InvalidQueryParameter for malformed ids"""
        return await asyncio.to_thread(self.store.get, parse_job_id(job_id))


# Process-wide instance, store created on first use
search_service = SearchService()


def get_search_service() -> SearchService:
    return search_service
