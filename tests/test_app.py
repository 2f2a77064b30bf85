import argparse
from datetime import datetime

import pytest

from geostamp import app, encoder


def test_parse_size():
    assert app.parse_size("640x480") == (640, 480)
    with pytest.raises(argparse.ArgumentTypeError):
        app.parse_size("640")
    with pytest.raises(argparse.ArgumentTypeError):
        app.parse_size("0x10")


def test_build_points_parses_coordinates():
    start = datetime(2024, 3, 15, 14, 30)
    points = app.build_points(["49.8397, 24.0297", "-33.87 -151.21"], start)

    assert [(p.coordinate.latitude, p.coordinate.longitude) for p in points] == [
        (49.8397, 24.0297),
        (-33.87, -151.21),
    ]
    assert all(point.start_date == start for point in points)


def test_build_points_rejects_bad_input():
    with pytest.raises(ValueError):
        app.build_points(["north"], datetime(2024, 1, 1))
    with pytest.raises(ValueError):
        app.build_points(["95, 10"], datetime(2024, 1, 1))


def test_main_writes_stamped_photos(tmp_path, capsys):
    out_dir = tmp_path / "photos"

    app.main([
        "--point", "49.8397,24.0297",
        "--point=-33.87,-151.21",
        "--start", "2024-03-15T14:30:00",
        "--count", "2",
        "--size", "32x24",
        "--out", str(out_dir),
        "--verify",
    ])

    files = sorted(out_dir.iterdir())
    assert [path.name for path in files] == [
        "point-01-01.jpg",
        "point-01-02.jpg",
        "point-02-01.jpg",
        "point-02-02.jpg",
    ]

    first = encoder.read_embedded_metadata(files[0].read_bytes())
    assert first["Exif"]["DateTimeOriginal"] == "2024:03:15 14:30:00"
    assert first["GPS"]["GPSLatitudeRef"] == "N"
    last = encoder.read_embedded_metadata(files[-1].read_bytes())
    assert last["GPS"]["GPSLatitudeRef"] == "S"
    assert last["GPS"]["GPSLongitudeRef"] == "W"

    output = capsys.readouterr().out
    assert "Created 4 photos for 2 point(s)" in output
    assert "✗" not in output


def test_main_requires_a_point(tmp_path):
    with pytest.raises(SystemExit):
        app.main(["--out", str(tmp_path)])
