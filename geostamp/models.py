"""Value types shared by the generator, the CLI and the geocoder."""

import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from PIL import Image

PENDING_ADDRESS = "Loading..."


@dataclass(frozen=True)
class Coordinate:
    """A point in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class ImageMetadata:
    coordinate: Coordinate
    date: datetime


@dataclass(frozen=True)
class GenerationParams:
    """Everything needed for one call to a generator.

    Args:
        count: Number of images to produce (>= 1)
        size: Canvas (width, height) in pixels
        metadata: Coordinate and timestamp stamped on every image
        point_id: Optional grouping identifier carried onto each result
    """

    count: int
    size: Tuple[int, int]
    metadata: ImageMetadata
    point_id: Optional[uuid.UUID] = None

    def __post_init__(self) -> None:
        if self.count < 1:
            raise ValueError(f"Image count must be at least 1, got {self.count}")
        width, height = self.size
        if width <= 0 or height <= 0:
            raise ValueError(f"Image size must be positive, got {width}x{height}")


@dataclass(frozen=True, eq=False)
class GeneratedImage:
    image: Image.Image
    jpeg_data: bytes
    point_id: Optional[uuid.UUID]
    date: datetime
    metadata_embedded: bool = True
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class MapPoint:
    """A user-picked location; the address is filled in by reverse geocoding."""

    coordinate: Coordinate
    start_date: datetime
    address: str = PENDING_ADDRESS
    id: uuid.UUID = field(default_factory=uuid.uuid4)


class ImagesCountRange(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def title(self) -> str:
        low, high = self.range
        return f"{low}–{high}"

    @property
    def range(self) -> Tuple[int, int]:
        return {
            ImagesCountRange.LOW: (1, 3),
            ImagesCountRange.MEDIUM: (3, 5),
            ImagesCountRange.HIGH: (5, 10),
        }[self]

    def pick(self, rng: Optional[random.Random] = None) -> int:
        """Pick an image count uniformly from the range, bounds included."""
        rng = rng or random
        low, high = self.range
        return rng.randint(low, high)


def parse_coordinate(text: str) -> Coordinate:
    """Parse "lat, lon" (comma and/or whitespace separated) into a Coordinate."""
    parts = text.replace(',', ' ').split()
    if len(parts) != 2:
        raise ValueError(f"Expected 'latitude, longitude', got {text!r}")
    try:
        latitude, longitude = float(parts[0]), float(parts[1])
    except ValueError:
        raise ValueError(f"Coordinates must be numbers, got {text!r}") from None
    return Coordinate(latitude, longitude)


def random_coordinate(rng: Optional[random.Random] = None) -> Coordinate:
    rng = rng or random
    return Coordinate(
        round(rng.uniform(-90, 90), 6),
        round(rng.uniform(-180, 180), 6),
    )
