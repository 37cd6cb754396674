"""
Reverse geocoding with a read-through cache.

Coordinates are rounded to 4 decimal places (about 11 m) to form the cache
key "lat:lon". On a miss the LocationIQ reverse endpoint is called with the
rounded coordinates and the normalized payload is stored under that key.

Entries older than GEO_CACHE_TTL_DAYS are misses and are removed by
purge_stale(). Concurrent misses for the same key both call the provider and
the last write wins.
"""

import asyncio
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import httpx
import psycopg2
from psycopg2.extras import Json, RealDictCursor

from app.config import (
    GEO_CACHE_MAX_ENTRIES,
    GEO_CACHE_TTL_DAYS,
    GEO_PROVIDER_TIMEOUT,
    LOCATIONIQ_API_KEY,
)
from app.db_config import db_config
from core.errors import GeoProviderError, GeoProviderUnavailable

logger = logging.getLogger(__name__)

LOCATIONIQ_REVERSE_URL = "https://us1.locationiq.com/v1/reverse"
KEY_PRECISION = 4


def round_coordinates(lat: float, lon: float) -> Tuple[float, float]:
    # + 0.0 turns -0.0 into 0.0 so both hit the same key
    return round(lat, KEY_PRECISION) + 0.0, round(lon, KEY_PRECISION) + 0.0


def cache_key(lat: float, lon: float) -> str:
    r_lat, r_lon = round_coordinates(lat, lon)
    return f"{r_lat:.{KEY_PRECISION}f}:{r_lon:.{KEY_PRECISION}f}"


def normalize_payload(data: Dict) -> Dict:
    """Reduce a LocationIQ reverse response to the fields the app shows"""
    address = data.get("address") or {}
    city = next((address[k] for k in ("city", "town", "village", "municipality") if address.get(k)), "")
    district = next((address[k] for k in ("county", "state_district", "district") if address.get(k)), "")
    return {
        "displayName": data.get("display_name") or "",
        "city": city,
        "district": district,
        "state": address.get("state") or "",
        "postcode": address.get("postcode") or "",
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryGeoCache:
    """Bounded FIFO cache with TTL, owned by one ReverseGeocoder"""

    def __init__(
        self,
        max_entries: int = GEO_CACHE_MAX_ENTRIES,
        ttl_days: int = GEO_CACHE_TTL_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.max_entries = max_entries
        self.ttl = timedelta(days=ttl_days)
        self.clock = clock
        self._entries: "OrderedDict[str, Tuple[Dict, datetime]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            payload, cached_at = entry
            if self.clock() - cached_at > self.ttl:
                del self._entries[key]
                return None
            return dict(payload)

    def set(self, key: str, payload: Dict):
        with self._lock:
            # Overwrite keeps the key unique and refreshes its FIFO position
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (dict(payload), self.clock())

    def purge_stale(self) -> int:
        with self._lock:
            cutoff = self.clock() - self.ttl
            stale = [k for k, (_, cached_at) in self._entries.items() if cached_at < cutoff]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def __len__(self):
        return len(self._entries)


class PostgresGeoCache:
    """Cache backed by the geo_cache table"""

    def __init__(self, conn_params: Optional[Dict] = None, ttl_days: int = GEO_CACHE_TTL_DAYS):
        self.conn_params = conn_params or db_config.get_connection_params()
        self.ttl_days = ttl_days

    def _get_db_conn(self):
        return psycopg2.connect(**self.conn_params)

    def get(self, key: str) -> Optional[Dict]:
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute("""
                    SELECT result FROM geo_cache
                    WHERE cache_key = %s AND cached_at > NOW() - make_interval(days => %s)
                """, (key, self.ttl_days))
                row = cursor.fetchone()
                return dict(row["result"]) if row else None
        finally:
            conn.close()

    def set(self, key: str, payload: Dict):
        conn = self._get_db_conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute("""
                    INSERT INTO geo_cache (cache_key, result, cached_at)
                    VALUES (%s, %s, NOW())
                    ON CONFLICT (cache_key) DO UPDATE SET
                        result = EXCLUDED.result,
                        cached_at = EXCLUDED.cached_at
                """, (key, Json(payload)))
            conn.commit()
        finally:
            conn.close()

    def purge_stale(self) -> int:
        conn = self._get_db_conn()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    "DELETE FROM geo_cache WHERE cached_at < NOW() - make_interval(days => %s)",
                    (self.ttl_days,),
                )
                deleted = cursor.rowcount
            conn.commit()
            return deleted
        finally:
            conn.close()


class ReverseGeocoder:
    """Read-through reverse geocoder in front of LocationIQ"""

    def __init__(
        self,
        cache,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        base_url: str = LOCATIONIQ_REVERSE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.cache = cache
        self.api_key = api_key
        self.timeout = timeout or GEO_PROVIDER_TIMEOUT
        self.base_url = base_url
        self.transport = transport

    async def _cache_get(self, key: str) -> Optional[Dict]:
        try:
            return await asyncio.to_thread(self.cache.get, key)
        except psycopg2.Error as e:
            logger.warning(f"[geocoder] Cache read failed for {key}, treating as miss: {e}")
            return None

    async def _cache_set(self, key: str, payload: Dict):
        try:
            await asyncio.to_thread(self.cache.set, key, payload)
        except psycopg2.Error as e:
            logger.warning(f"[geocoder] Cache write failed for {key}: {e}")

    async def _call_provider(self, lat: float, lon: float) -> Dict:
        params = {
            "key": self.api_key,
            "lat": lat,
            "lon": lon,
            "format": "json",
            "accept-language": "en",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.base_url, params=params)
        except httpx.TimeoutException as e:
            logger.warning(f"[geocoder] Provider timed out for {lat},{lon}: {e}")
            raise GeoProviderUnavailable("Reverse geocoding provider timed out") from e
        except httpx.TransportError as e:
            logger.warning(f"[geocoder] Provider unreachable for {lat},{lon}: {e}")
            raise GeoProviderUnavailable("Reverse geocoding provider unreachable") from e

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"[geocoder] Provider unavailable: HTTP {response.status_code}")
            raise GeoProviderUnavailable(f"Reverse geocoding provider returned {response.status_code}")
        if response.status_code != 200:
            logger.error(f"[geocoder] Provider error: HTTP {response.status_code}")
            raise GeoProviderError("Geocoding provider error", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise GeoProviderError("Geocoding provider returned invalid JSON", status_code=response.status_code) from e

    async def reverse(self, lat: float, lon: float) -> Dict:
        """
        Reverse geocode a coordinate.

        Raises:
            GeoProviderUnavailable: provider unconfigured, unreachable, timed out or overloaded
            GeoProviderError: provider rejected the request
        """
        key = cache_key(lat, lon)

        cached = await self._cache_get(key)
        if cached is not None:
            logger.debug(f"[geocoder] Cache hit for {key}")
            return {**cached, "cached": True}

        if not self.api_key:
            raise GeoProviderUnavailable("Reverse geocoding is not configured")

        r_lat, r_lon = round_coordinates(lat, lon)
        payload = normalize_payload(await self._call_provider(r_lat, r_lon))
        await self._cache_set(key, payload)
        logger.info(f"[geocoder] Cached reverse geocode for {key}")
        return payload

    def purge_stale(self) -> int:
        return self.cache.purge_stale()


# Process-wide instance, created on first use
_reverse_geocoder: Optional[ReverseGeocoder] = None


def create_geo_cache():
    if db_config.is_db_enabled:
        return PostgresGeoCache()
    return MemoryGeoCache()


def get_reverse_geocoder() -> ReverseGeocoder:
    """Get or create the process-wide reverse geocoder"""
    global _reverse_geocoder
    if _reverse_geocoder is None:
        _reverse_geocoder = ReverseGeocoder(create_geo_cache(), api_key=LOCATIONIQ_API_KEY)
    return _reverse_geocoder
