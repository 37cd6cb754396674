"""
Reverse geocoding endpoint.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.rate_limit import RATE_LIMIT_GEO, limiter
from core.errors import GeoProviderError, GeoProviderUnavailable, InvalidQueryParameter
from core.geocoder import ReverseGeocoder, get_reverse_geocoder
from core.spatial import parse_coordinates

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/geo", tags=["geo"])


@router.get("/reverse")
@limiter.limit(RATE_LIMIT_GEO)
async def reverse_geocode(
    request: Request,
    lat: Optional[str] = Query(None, description="Latitude in [-90, 90]"),
    lon: Optional[str] = Query(None, description="Longitude in [-180, 180]"),
    geocoder: ReverseGeocoder = Depends(get_reverse_geocoder),
):
    """Reverse geocode a coordinate through the cache"""
    try:
        lat_value, lon_value = parse_coordinates(lat, lon)
    except InvalidQueryParameter as e:
        raise HTTPException(status_code=400, detail=e.message)

    try:
        return await geocoder.reverse(lat_value, lon_value)
    except GeoProviderUnavailable as e:
        # Distinct from bad input so clients can offer "try again later"
        raise HTTPException(status_code=503, detail=str(e))
    except GeoProviderError as e:
        raise HTTPException(
            status_code=502,
            detail={"error": "Geocoding provider error", "providerStatus": e.status_code},
        )
