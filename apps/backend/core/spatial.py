"""
Great-circle distance and coarse bounding boxes for "near me" queries.
"""
import math
from typing import Any, Optional, Tuple

from core.errors import InvalidQueryParameter

EARTH_RADIUS_KM = 6371.0
BOX_PAD_KM = 0.001


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in km between two lat/lon points"""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bounding_box(lat: float, lon: float, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Return (min_lat, max_lat, min_lon, max_lon) enclosing the circle.

    The longitude half-width is the widest reach of the great circle,
    asin(sin(r/R) / cos(lat)), padded by BOX_PAD_KM to keep distances that
    round down to the radius. When the box touches a pole or crosses the
    antimeridian the full longitude range is returned instead of a wrapped
    box.
    """
    angular = (radius_km + BOX_PAD_KM) / EARTH_RADIUS_KM
    lat_delta = math.degrees(angular)
    min_lat = lat - lat_delta
    max_lat = lat + lat_delta

    if min_lat <= -90.0 or max_lat >= 90.0:
        return (max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    reach = math.sin(angular) / math.cos(math.radians(lat))
    if angular >= math.pi / 2 or reach >= 1.0:
        return (min_lat, max_lat, -180.0, 180.0)

    lon_delta = math.degrees(math.asin(reach))
    min_lon = lon - lon_delta
    max_lon = lon + lon_delta

    if min_lon < -180.0 or max_lon > 180.0:
        return (min_lat, max_lat, -180.0, 180.0)

    return (min_lat, max_lat, min_lon, max_lon)


def parse_float(param: str, value: Any, required: bool = True) -> Optional[float]:
    """Parse a query-string float, rejecting blanks, NaN and infinities"""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise InvalidQueryParameter(param, f"Missing required parameter: {param}")
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidQueryParameter(param, f"Invalid {param}: must be a number")
    if not math.isfinite(number):
        raise InvalidQueryParameter(param, f"Invalid {param}: must be a finite number")
    return number


def parse_coordinates(lat: Any, lon: Any) -> Tuple[float, float]:
    """Validate a lat/lon pair from query parameters"""
    lat_value = parse_float("lat", lat)
    lon_value = parse_float("lon", lon)
    if lat_value < -90.0 or lat_value > 90.0:
        raise InvalidQueryParameter("lat", "Invalid lat: must be in [-90, 90]")
    if lon_value < -180.0 or lon_value > 180.0:
        raise InvalidQueryParameter("lon", "Invalid lon: must be in [-180, 180]")
    return lat_value, lon_value
