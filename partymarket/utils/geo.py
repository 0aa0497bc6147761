"""
Geo helpers for profile locations.

PostGIS points reach us in whatever shape the driver hands back: WKT
(`POINT(lng lat)`), hex-encoded EWKB, or a GeoJSON-like mapping. Some rows
were also entered with latitude and longitude swapped, which we detect by
comparing against the reference point of the location's city.
"""

import json
import logging
import math
import re
import struct
from typing import Any, Optional

from ..config import COORDS_SWAP_THRESHOLD_KM

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371

# Reference points for the cities the marketplace serves.
# Matched as a substring of the lower-cased city label, first match wins.
CITY_COORDS: dict[str, dict[str, float]] = {
    "санкт-петербург": {"lat": 59.9343, "lng": 30.3351},
    "петербург": {"lat": 59.9343, "lng": 30.3351},
    "спб": {"lat": 59.9343, "lng": 30.3351},
    "москва": {"lat": 55.7558, "lng": 37.6173},
    "казань": {"lat": 55.7961, "lng": 49.1064},
    "новосибирск": {"lat": 55.0084, "lng": 82.9357},
    "екатеринбург": {"lat": 56.8389, "lng": 60.6057},
    "нижний новгород": {"lat": 56.2965, "lng": 43.9361},
    "самара": {"lat": 53.1959, "lng": 50.1002},
    "краснодар": {"lat": 45.0355, "lng": 38.9753},
    "сочи": {"lat": 43.5855, "lng": 39.7231},
    "ростов-на-дону": {"lat": 47.2357, "lng": 39.7015},
    "калининград": {"lat": 54.7104, "lng": 20.4522},
    "уфа": {"lat": 54.7388, "lng": 55.9721},
    "пермь": {"lat": 58.0105, "lng": 56.2502},
    "воронеж": {"lat": 51.6720, "lng": 39.1843},
}

WKT_POINT_RE = re.compile(r"POINT\s*\(\s*([\d.\-eE+]+)\s+([\d.\-eE+]+)\s*\)", re.IGNORECASE)

# Little-endian point with SRID flag: byte order + type (4 bytes) + SRID (4 bytes)
EWKB_POINT_PREFIX = "0101000020"
EWKB_COORDS_OFFSET = 18
EWKB_DOUBLE_HEX_LEN = 16


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometers"""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def find_city_coords(city_name: Optional[str]) -> Optional[dict[str, float]]:
    if not city_name:
        return None
    normalized = city_name.strip().lower()
    for name, coords in CITY_COORDS.items():
        if name in normalized:
            return coords
    return None


def parse_ewkb(hex_string: str) -> Optional[tuple[float, float]]:
    """
    Decode a hex EWKB point into (lat, lng).

    Layout: 18 hex chars of header, then longitude and latitude as
    little-endian 8-byte floats (16 hex chars each).
    Returns None if the string cannot be decoded.
    """
    try:
        start = EWKB_COORDS_OFFSET
        lng_hex = hex_string[start : start + EWKB_DOUBLE_HEX_LEN]
        lat_hex = hex_string[start + EWKB_DOUBLE_HEX_LEN : start + 2 * EWKB_DOUBLE_HEX_LEN]
        (lng,) = struct.unpack("<d", bytes.fromhex(lng_hex))
        (lat,) = struct.unpack("<d", bytes.fromhex(lat_hex))
    except (ValueError, TypeError, struct.error) as e:
        logger.debug(f"Failed to decode EWKB point {hex_string!r}: {e}")
        return None

    if math.isnan(lat) or math.isnan(lng):
        return None
    return lat, lng


def _coords_from_mapping(value: dict) -> Optional[tuple[float, float]]:
    coordinates = value.get("coordinates")
    if not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
        return None
    lng, lat = coordinates[0], coordinates[1]
    return float(lat), float(lng)


def parse_geo_location(value: Any) -> Optional[tuple[float, float]]:
    """
    Decode a stored geo point into (lat, lng).

    Accepts WKT, EWKB hex or a {"coordinates": [lng, lat]} mapping (also as
    a JSON string). Never raises; undecodable input yields None.
    """
    if not value:
        return None

    try:
        if isinstance(value, dict):
            return _coords_from_mapping(value)

        if isinstance(value, str):
            text = value.strip()
            match = WKT_POINT_RE.search(text)
            if match:
                return float(match.group(2)), float(match.group(1))
            if text.upper().startswith(EWKB_POINT_PREFIX):
                return parse_ewkb(text)
            if text.startswith("{"):
                return _coords_from_mapping(json.loads(text))
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Failed to parse geo location {value!r}: {e}")

    return None


def normalize_coords(
    lat: float,
    lng: float,
    city_name: Optional[str] = None,
    threshold_km: float = COORDS_SWAP_THRESHOLD_KM,
) -> tuple[float, float]:
    """
    Undo an accidental lat/lng swap.

    If the swapped pair lies more than `threshold_km` closer to the city's
    reference point than the pair as given, the swapped pair is returned.
    """
    target = find_city_coords(city_name)
    if not target:
        return lat, lng

    direct = haversine_km(lat, lng, target["lat"], target["lng"])
    swapped = haversine_km(lng, lat, target["lat"], target["lng"])

    if swapped + threshold_km < direct:
        return lng, lat
    return lat, lng
