"""Reverse geocoding of map points with a local SQLite cache."""

import sqlite3
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Tuple

from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

from .models import MapPoint

GeocodeFunc = Callable[[float, float], Optional[str]]

UNKNOWN_ADDRESS = "Unknown location"


def normalize_coordinates(lat: float, lon: float, precision: int = 5) -> Tuple[float, float]:
    """Normalize coordinates to a fixed precision for caching."""
    return (round(lat, precision), round(lon, precision))


def init_db(conn: sqlite3.Connection) -> None:
    """Create the cache table if it does not exist."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS address_cache (
            normalized_lat REAL NOT NULL,
            normalized_lon REAL NOT NULL,
            address TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (normalized_lat, normalized_lon)
        )
        """
    )
    conn.commit()


STREET_KEYS = ('road', 'pedestrian', 'footway', 'square', 'neighbourhood', 'suburb')
LOCALITY_KEYS = ('city', 'town', 'village', 'hamlet', 'municipality', 'county', 'state', 'country')


def _first(address: Dict, keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        if address.get(key):
            return address[key]
    return None


def format_address(address: Dict) -> Optional[str]:
    """
    Format a Nominatim address as a map point label.

    "Road 12, City" when the street is known, otherwise just the locality.
    """
    if not address:
        return None

    street = _first(address, STREET_KEYS)
    if street and address.get('house_number'):
        street = f"{street} {address['house_number']}"
    locality = _first(address, LOCALITY_KEYS)

    if street and locality:
        return f"{street}, {locality}"
    return street or locality


def build_geocode_client(
    user_agent: str = "geostamp",
    min_delay_seconds: float = 1,
) -> GeocodeFunc:
    """Create a Nominatim reverse geocoder honouring its usage policy rate limit."""
    geolocator = Nominatim(user_agent=user_agent)
    reverse = RateLimiter(geolocator.reverse, min_delay_seconds=min_delay_seconds)

    def reverse_geocode(lat: float, lon: float) -> Optional[str]:
        try:
            location = reverse((lat, lon), zoom=18, language='en', addressdetails=True)
        except Exception:
            return None
        if location is None:
            return None
        raw = location.raw if isinstance(location.raw, dict) else {}
        return format_address(raw.get('address', {})) or location.address

    return reverse_geocode


def lookup_cache(
    conn: sqlite3.Connection,
    normalized_lat: float,
    normalized_lon: float,
) -> Optional[str]:
    row = conn.execute(
        """
        SELECT address
        FROM address_cache
        WHERE normalized_lat = ? AND normalized_lon = ?
        """,
        (normalized_lat, normalized_lon),
    ).fetchone()
    return row[0] if row else None


def upsert_cache(
    conn: sqlite3.Connection,
    normalized_lat: float,
    normalized_lon: float,
    address: str,
) -> None:
    conn.execute(
        """
        INSERT INTO address_cache (normalized_lat, normalized_lon, address, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(normalized_lat, normalized_lon)
        DO UPDATE SET address = excluded.address, updated_at = excluded.updated_at
        """,
        (normalized_lat, normalized_lon, address, datetime.now(timezone.utc).isoformat()),
    )
    conn.commit()


def resolve_address(
    conn: sqlite3.Connection,
    lat: float,
    lon: float,
    geocode_func: GeocodeFunc,
    precision: int = 5,
) -> Tuple[Optional[str], Tuple[float, float], bool]:
    """
    Resolve an address with caching.

    Failed lookups (None or an exception) are not cached so they can be
    retried on the next run.

    Returns:
        (address, normalized coordinates, cache hit)
    """
    normalized_lat, normalized_lon = normalize_coordinates(lat, lon, precision)
    cached = lookup_cache(conn, normalized_lat, normalized_lon)
    if cached is not None:
        return cached, (normalized_lat, normalized_lon), True

    try:
        address = geocode_func(lat, lon)
    except Exception:
        address = None
    if address is not None:
        upsert_cache(conn, normalized_lat, normalized_lon, address)
    return address, (normalized_lat, normalized_lon), False


def fill_addresses(
    conn: sqlite3.Connection,
    points: Iterable[MapPoint],
    geocode_func: Optional[GeocodeFunc] = None,
) -> Dict[str, int]:
    """Set the address of every point, returning cache hit/miss counts."""
    if geocode_func is None:
        geocode_func = build_geocode_client()
    init_db(conn)

    cache_hits = 0
    cache_misses = 0
    for point in points:
        address, _, hit = resolve_address(
            conn,
            point.coordinate.latitude,
            point.coordinate.longitude,
            geocode_func,
        )
        if hit:
            cache_hits += 1
        else:
            cache_misses += 1
        point.address = address or UNKNOWN_ADDRESS

    return {"cache_hits": cache_hits, "cache_misses": cache_misses}
