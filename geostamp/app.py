#!/usr/bin/env python3
"""
GeoStamp - placeholder photo generator
Creates solid-color JPEGs stamped with GPS and EXIF metadata for given points
"""

import argparse
import os
import random
import re
import sqlite3
from datetime import datetime
from typing import List, Optional, Tuple

from .encoder import read_embedded_metadata
from .generator import DEFAULT_SIZE, GenerationError, generate_for_points
from .geocode import UNKNOWN_ADDRESS, fill_addresses
from .models import (
    PENDING_ADDRESS,
    GeneratedImage,
    ImagesCountRange,
    MapPoint,
    parse_coordinate,
    random_coordinate,
)

DEFAULT_DB = 'geostamp_cache.sqlite'


def parse_size(text: str) -> Tuple[int, int]:
    """Parse a WIDTHxHEIGHT string."""
    match = re.fullmatch(r"\s*(\d+)\s*[xX]\s*(\d+)\s*", text)
    if not match:
        raise argparse.ArgumentTypeError(f"Size must look like 100x100, got {text!r}")
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError(f"Size must be positive, got {text!r}")
    return (width, height)


def parse_start(text: str) -> datetime:
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Start must be an ISO date-time, got {text!r}") from None


def _sanitize_stem(stem: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "-", stem).strip("-_")
    return cleaned or "point"


def build_points(
    coordinates: List[str],
    start: datetime,
    use_random: bool = False,
    rng: Optional[random.Random] = None,
) -> List[MapPoint]:
    """Turn --point values (and --random) into map points sharing one start date."""
    points = [MapPoint(parse_coordinate(text), start) for text in coordinates]
    if use_random:
        points.append(MapPoint(random_coordinate(rng), start))
    return points


def save_images(
    images: List[GeneratedImage],
    points: List[MapPoint],
    output_dir: str,
    verify: bool = False,
) -> List[str]:
    """
    Write generated images into output_dir.

    Files are named after the point they belong to (address when known,
    otherwise its index) plus a running number per point.

    Returns:
        List of written file paths
    """
    os.makedirs(output_dir, exist_ok=True)
    labels = {}
    for index, point in enumerate(points, start=1):
        if point.address not in (PENDING_ADDRESS, UNKNOWN_ADDRESS):
            labels[point.id] = f"{index:02d}-{_sanitize_stem(point.address)}"
        else:
            labels[point.id] = f"point-{index:02d}"

    written = []
    counters = {}
    for image in images:
        counters[image.point_id] = counters.get(image.point_id, 0) + 1
        label = labels.get(image.point_id, "point")
        filename = f"{label}-{counters[image.point_id]:02d}.jpg"
        path = os.path.join(output_dir, filename)
        with open(path, 'wb') as handle:
            handle.write(image.jpeg_data)
        written.append(path)

        if verify:
            embedded = read_embedded_metadata(image.jpeg_data)
            if embedded["GPS"] and embedded["Exif"]:
                print(f"  ✓ {filename} {embedded['Exif']['DateTimeOriginal']}")
            else:
                print(f"  ✗ {filename} (no GPS/EXIF metadata)")
        elif not image.metadata_embedded:
            print(f"Warning: {filename} was saved without GPS/EXIF metadata")
        else:
            print(f"  ✓ {filename}")

    return written


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Generate placeholder JPEGs stamped with GPS and EXIF metadata",
    )
    parser.add_argument(
        '--point',
        action='append',
        default=[],
        metavar='LAT,LON',
        help='Coordinate to stamp, repeatable (use --point=-33.87,151.21 for negative values)',
    )
    parser.add_argument(
        '--random',
        action='store_true',
        help='Add one random coordinate',
    )
    parser.add_argument(
        '--start',
        type=parse_start,
        default=None,
        help='Time of the first photo, ISO format (default: now)',
    )
    count_group = parser.add_mutually_exclusive_group()
    count_group.add_argument(
        '--count',
        type=int,
        default=None,
        help='Images per point',
    )
    count_group.add_argument(
        '--count-range',
        choices=[option.value for option in ImagesCountRange],
        default=ImagesCountRange.LOW.value,
        help='Random number of images per point (default: low)',
    )
    parser.add_argument(
        '--size',
        type=parse_size,
        default=DEFAULT_SIZE,
        help='Image size as WIDTHxHEIGHT (default: 100x100)',
    )
    parser.add_argument(
        '--out',
        default='generated_photos',
        help='Output directory (default: generated_photos)',
    )
    parser.add_argument(
        '--geocode',
        action='store_true',
        help='Look up point addresses (Nominatim) for file names',
    )
    parser.add_argument(
        '--db',
        default=DEFAULT_DB,
        help=f'SQLite address cache path (default: {DEFAULT_DB})',
    )
    parser.add_argument(
        '--verify',
        action='store_true',
        help='Re-read every written image and report its metadata',
    )

    args = parser.parse_args(argv)

    if args.count is not None and args.count < 1:
        raise SystemExit(f"Error: --count must be at least 1, got {args.count}")

    start = args.start or datetime.now().replace(microsecond=0)
    try:
        points = build_points(args.point, start, use_random=args.random)
    except ValueError as exc:
        raise SystemExit(f"Error: {exc}")

    if not points:
        raise SystemExit("Error: give at least one --point or use --random")

    print("\n📍 GeoStamp - placeholder photo generator\n")

    if args.geocode:
        print("Looking up addresses (reverse geocoding)...")
        conn = sqlite3.connect(args.db)
        try:
            stats = fill_addresses(conn, points)
        finally:
            conn.close()
        print(
            "Address cache hits: {hits}, misses: {misses}".format(
                hits=stats["cache_hits"],
                misses=stats["cache_misses"],
            )
        )

    count = args.count if args.count is not None else ImagesCountRange(args.count_range)
    try:
        images = generate_for_points(points, count, size=args.size)
    except GenerationError as exc:
        raise SystemExit(f"Error: {exc}")

    print(f"Writing images to: {args.out}")
    written = save_images(images, points, args.out, verify=args.verify)
    print(f"\n✅ Created {len(written)} photos for {len(points)} point(s)")


if __name__ == '__main__':
    main()
