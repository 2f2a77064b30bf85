import sqlite3
from datetime import datetime

from geostamp import geocode
from geostamp.models import Coordinate, MapPoint


def test_normalize_coordinates_precision():
    lat, lon = geocode.normalize_coordinates(37.7749295, -122.4194155, precision=5)
    assert lat == 37.77493
    assert lon == -122.41942


def test_cache_hit_miss(tmp_path):
    db_path = tmp_path / "cache.sqlite"
    conn = sqlite3.connect(db_path)
    geocode.init_db(conn)

    calls = []

    def fake_geocode(lat, lon):
        calls.append((lat, lon))
        return "Rynok Square, Lviv"

    address, normalized, hit = geocode.resolve_address(conn, 49.8397, 24.0297, fake_geocode)
    assert address == "Rynok Square, Lviv"
    assert normalized == geocode.normalize_coordinates(49.8397, 24.0297)
    assert hit is False

    address, _, hit = geocode.resolve_address(conn, 49.8397, 24.0297, fake_geocode)
    assert address == "Rynok Square, Lviv"
    assert hit is True
    assert calls == [(49.8397, 24.0297)]

    conn.close()


def test_failed_lookup_not_cached(tmp_path):
    conn = sqlite3.connect(tmp_path / "cache.sqlite")
    geocode.init_db(conn)

    calls = []

    def flaky_geocode(lat, lon):
        calls.append((lat, lon))
        if len(calls) == 1:
            raise TimeoutError("network down")
        return "Testville"

    address, _, hit = geocode.resolve_address(conn, 1.0, 2.0, flaky_geocode)
    assert address is None
    assert hit is False
    assert conn.execute("SELECT COUNT(*) FROM address_cache").fetchone()[0] == 0

    address, _, hit = geocode.resolve_address(conn, 1.0, 2.0, flaky_geocode)
    assert address == "Testville"
    assert hit is False
    assert len(calls) == 2

    conn.close()


def test_fill_addresses_updates_points(tmp_path):
    conn = sqlite3.connect(tmp_path / "cache.sqlite")
    points = [
        MapPoint(Coordinate(10.0, 20.0), datetime(2024, 1, 1)),
        MapPoint(Coordinate(10.0, 20.0), datetime(2024, 1, 1)),
        MapPoint(Coordinate(-5.0, 5.0), datetime(2024, 1, 1)),
    ]

    def fake_geocode(lat, lon):
        return None if lat < 0 else "Testville"

    stats = geocode.fill_addresses(conn, points, fake_geocode)
    conn.close()

    assert stats == {"cache_hits": 1, "cache_misses": 2}
    assert [point.address for point in points] == ["Testville", "Testville", geocode.UNKNOWN_ADDRESS]


def test_format_address():
    assert geocode.format_address({}) is None
    assert geocode.format_address({"road": "Main St", "city": "Springfield"}) == "Main St, Springfield"
    assert geocode.format_address({"city": "Springfield"}) == "Springfield"


def test_format_address_with_house_number():
    address = {"road": "Rynok Square", "house_number": "1", "city": "Lviv", "country": "Ukraine"}
    assert geocode.format_address(address) == "Rynok Square 1, Lviv"
    assert geocode.format_address({"hamlet": "Nowhere", "country": "Iceland"}) == "Nowhere"
    assert geocode.format_address({"country": "Iceland"}) == "Iceland"
