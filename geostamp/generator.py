"""Generate placeholder JPEGs stamped with GPS and EXIF metadata."""

import io
import random
from datetime import timedelta, tzinfo
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from PIL import Image

from .encoder import (
    MetadataInjectionError,
    RasterSerializationFailed,
    embed_metadata,
    serialize_baseline,
)
from .metadata import build_exif_block, build_gps_block
from .models import (
    GeneratedImage,
    GenerationParams,
    ImageMetadata,
    ImagesCountRange,
    MapPoint,
)
from .raster import PALETTE, make_blank_image

DEFAULT_SIZE = (100, 100)

# Time between consecutive photos of a multi-point batch
MIN_OFFSET_MINUTES = 1
MAX_OFFSET_MINUTES = 15

RasterFunc = Callable[[Tuple[int, int], Optional[random.Random]], Optional[Image.Image]]
EmbedFunc = Callable[[bytes, Dict, Dict], bytes]


class GenerationError(Exception):
    code = "GENERATION_FAILED"


class NoOutputProduced(GenerationError):
    """Every attempt in a generate call failed before a JPEG existed."""

    code = "NO_OUTPUT_PRODUCED"

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"No image could be produced in {attempts} attempt(s)")


class ImageGenerating(Protocol):
    def generate(self, params: GenerationParams) -> List[GeneratedImage]:
        ...


def _default_raster(size: Tuple[int, int], rng: Optional[random.Random]) -> Optional[Image.Image]:
    return make_blank_image(size, rng=rng)


def _decode(jpeg_data: bytes, fallback: Image.Image) -> Image.Image:
    try:
        with Image.open(io.BytesIO(jpeg_data)) as img:
            img.load()
            return img.copy()
    except (OSError, ValueError):
        return fallback


class ImageGenerator:
    """
    Produce solid-color JPEGs carrying the GPS/EXIF fields of params.metadata.

    Each image is generated independently. When metadata injection fails the
    plain baseline JPEG is kept and the result is flagged with
    metadata_embedded=False; when serialization fails the image is skipped.

    Args:
        raster_func: Builds the blank raster for a size (random color)
        serialize_func: Raster to baseline JPEG bytes
        embed_func: Injects GPS/EXIF fields into baseline JPEG bytes
        rng: Random source for palette picks
        tz: Time zone for formatting the timestamps (local when None)
    """

    def __init__(
        self,
        raster_func: Optional[RasterFunc] = None,
        serialize_func: Optional[Callable[[Image.Image], bytes]] = None,
        embed_func: Optional[EmbedFunc] = None,
        rng: Optional[random.Random] = None,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self.raster_func = raster_func or _default_raster
        self.serialize_func = serialize_func or serialize_baseline
        self.embed_func = embed_func or embed_metadata
        self.rng = rng
        self.tz = tz

    def generate(self, params: GenerationParams) -> List[GeneratedImage]:
        metadata = params.metadata
        gps = build_gps_block(metadata.coordinate, metadata.date, self.tz)
        exif = build_exif_block(metadata.date, self.tz)

        result = []
        for _ in range(params.count):
            raster = self.raster_func(params.size, self.rng)
            if raster is None:
                continue

            try:
                baseline = self.serialize_func(raster)
            except RasterSerializationFailed:
                continue

            try:
                data = self.embed_func(baseline, gps, exif)
                embedded = True
            except MetadataInjectionError:
                data = baseline
                embedded = False

            result.append(
                GeneratedImage(
                    image=_decode(data, raster),
                    jpeg_data=data,
                    point_id=params.point_id,
                    date=metadata.date,
                    metadata_embedded=embedded,
                )
            )

        if not result:
            raise NoOutputProduced(params.count)
        return result


class StaticImageGenerator:
    """Deterministic stand-in: the same blue image, count times."""

    def __init__(self, color: Tuple[int, int, int] = PALETTE['blue'], tz: Optional[tzinfo] = None) -> None:
        self.color = color
        self.tz = tz

    def generate(self, params: GenerationParams) -> List[GeneratedImage]:
        metadata = params.metadata
        raster = Image.new('RGB', params.size, color=self.color)
        data = embed_metadata(
            serialize_baseline(raster),
            build_gps_block(metadata.coordinate, metadata.date, self.tz),
            build_exif_block(metadata.date, self.tz),
        )
        return [
            GeneratedImage(
                image=raster,
                jpeg_data=data,
                point_id=params.point_id,
                date=metadata.date,
            )
            for _ in range(params.count)
        ]


def generate_images(
    params: GenerationParams,
    generator: Optional[ImageGenerating] = None,
) -> List[GeneratedImage]:
    """Run a generator (the real one by default) for one set of params."""
    if generator is None:
        generator = ImageGenerator()
    return generator.generate(params)


def generate_for_points(
    points: Iterable[MapPoint],
    count: Union[ImagesCountRange, int],
    generator: Optional[ImageGenerating] = None,
    size: Tuple[int, int] = DEFAULT_SIZE,
    rng: Optional[random.Random] = None,
) -> List[GeneratedImage]:
    """
    Generate images for several points, spacing their timestamps apart.

    For each point a count is picked (from the range, or the fixed number) and
    one image per step is generated with a fresh ImageMetadata. Every image is
    stamped a random 1-15 minutes after the previous one; the first image of a
    point is never earlier than the point's start_date. Results keep their
    point_id and date, so pairing never depends on position in the returned
    list.

    Raises:
        NoOutputProduced: if not a single image could be produced
    """
    if generator is None:
        generator = ImageGenerator(rng=rng)
    rng = rng or random

    result = []
    attempts = 0
    date = None
    for point in points:
        total = count.pick(rng) if isinstance(count, ImagesCountRange) else count
        for index in range(total):
            if date is None:
                date = point.start_date
            else:
                date = date + timedelta(minutes=rng.randint(MIN_OFFSET_MINUTES, MAX_OFFSET_MINUTES))
                if index == 0 and date < point.start_date:
                    date = point.start_date
            params = GenerationParams(
                count=1,
                size=size,
                metadata=ImageMetadata(point.coordinate, date),
                point_id=point.id,
            )
            attempts += 1
            try:
                result.extend(generator.generate(params))
            except NoOutputProduced:
                continue

    if attempts and not result:
        raise NoOutputProduced(attempts)
    return result
