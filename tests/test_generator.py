import io
import random
import uuid
from datetime import datetime, timedelta

import pytest
from PIL import Image

from geostamp import encoder, generator
from geostamp.models import (
    Coordinate,
    GenerationParams,
    ImageMetadata,
    ImagesCountRange,
    MapPoint,
)
from geostamp.raster import PALETTE, make_blank_image

TIMESTAMP = datetime(2024, 3, 15, 14, 30, 0)


def _params(count=3, point_id=None, size=(24, 16)):
    return GenerationParams(
        count=count,
        size=size,
        metadata=ImageMetadata(Coordinate(49.8397, 24.0297), TIMESTAMP),
        point_id=point_id,
    )


def test_generate_returns_count_images_with_metadata():
    point_id = uuid.uuid4()
    images = generator.ImageGenerator(rng=random.Random(1)).generate(_params(5, point_id))

    assert len(images) == 5
    assert len({image.id for image in images}) == 5
    for image in images:
        assert image.metadata_embedded
        assert image.point_id == point_id
        assert image.date == TIMESTAMP
        assert image.image.size == (24, 16)
        embedded = encoder.read_embedded_metadata(image.jpeg_data)
        assert embedded["GPS"]["GPSDateStamp"] == "2024:03:15"
        assert embedded["Exif"]["DateTimeOriginal"] == "2024:03:15 14:30:00"


def test_injection_failure_falls_back_to_baseline():
    def failing_embed(_data, _gps, _exif):
        raise encoder.SourceUnreadable("boom")

    images = generator.ImageGenerator(embed_func=failing_embed).generate(_params(2))

    assert len(images) == 2
    for image in images:
        assert image.metadata_embedded is False
        with Image.open(io.BytesIO(image.jpeg_data)) as img:
            img.load()
            assert img.format == "JPEG"
        assert encoder.read_embedded_metadata(image.jpeg_data) == {"GPS": {}, "Exif": {}}


def test_destination_failure_falls_back(monkeypatch):
    def broken_insert(*_args, **_kwargs):
        raise ValueError("no space")

    monkeypatch.setattr(encoder, "insert_exif_segment", broken_insert)
    images = generator.generate_images(_params(1))

    assert len(images) == 1
    assert images[0].metadata_embedded is False
    assert images[0].jpeg_data[:2] == b"\xff\xd8"


def test_serialization_failures_reduce_count():
    calls = []

    def flaky_serialize(raster):
        calls.append(raster)
        if len(calls) % 2:
            raise encoder.RasterSerializationFailed("odd attempt")
        return encoder.serialize_baseline(raster)

    images = generator.ImageGenerator(serialize_func=flaky_serialize).generate(_params(4))

    assert len(calls) == 4
    assert len(images) == 2


def test_all_attempts_failing_raises():
    def failing_serialize(_raster):
        raise encoder.RasterSerializationFailed("nope")

    with pytest.raises(generator.NoOutputProduced) as excinfo:
        generator.ImageGenerator(serialize_func=failing_serialize).generate(_params(3))
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value, generator.GenerationError)


def test_raster_allocation_failure_counts_as_failed_attempt():
    with pytest.raises(generator.NoOutputProduced):
        generator.ImageGenerator(raster_func=lambda _size, _rng: None).generate(_params(2))


def test_static_generator_is_deterministic():
    double = generator.StaticImageGenerator()
    first = double.generate(_params(3))
    second = double.generate(_params(3))

    assert len(first) == 3
    assert {image.jpeg_data for image in first + second} == {first[0].jpeg_data}
    assert first[0].image.getpixel((0, 0)) == PALETTE['blue']


def test_generate_images_accepts_injected_generator():
    images = generator.generate_images(_params(2), generator=generator.StaticImageGenerator())
    assert len(images) == 2


def test_params_are_not_mutated():
    params = _params(2)
    generator.ImageGenerator().generate(params)
    assert params == _params(2)


def test_blank_image_is_solid_and_sized():
    image = make_blank_image((7, 5), color=PALETTE['teal'])
    assert image.size == (7, 5)
    assert image.mode == "RGB"
    assert image.getcolors() == [(35, PALETTE['teal'])]


def test_blank_image_random_color_comes_from_palette():
    image = make_blank_image((3, 3), rng=random.Random(7))
    assert image.getpixel((1, 1)) in PALETTE.values()


def test_invalid_params_rejected():
    metadata = ImageMetadata(Coordinate(0, 0), TIMESTAMP)
    with pytest.raises(ValueError):
        GenerationParams(count=0, size=(10, 10), metadata=metadata)
    with pytest.raises(ValueError):
        GenerationParams(count=1, size=(0, 10), metadata=metadata)
    with pytest.raises(ValueError):
        Coordinate(91, 0)


def test_generate_for_points_spaces_timestamps():
    first = MapPoint(Coordinate(10, 10), TIMESTAMP)
    second = MapPoint(Coordinate(-10, -10), TIMESTAMP)

    images = generator.generate_for_points(
        [first, second],
        3,
        generator=generator.StaticImageGenerator(),
        rng=random.Random(3),
    )

    assert len(images) == 6
    assert [image.point_id for image in images] == [first.id] * 3 + [second.id] * 3
    assert images[0].date == TIMESTAMP
    for previous, current in zip(images, images[1:]):
        gap = current.date - previous.date
        assert timedelta(minutes=1) <= gap <= timedelta(minutes=15)
    embedded = encoder.read_embedded_metadata(images[-1].jpeg_data)
    assert embedded["GPS"]["GPSLatitudeRef"] == "S"
    assert embedded["Exif"]["DateTimeOriginal"] == images[-1].date.strftime('%Y:%m:%d %H:%M:%S')


def test_generate_for_points_respects_later_start_date():
    later = TIMESTAMP + timedelta(days=1)
    points = [MapPoint(Coordinate(1, 1), TIMESTAMP), MapPoint(Coordinate(2, 2), later)]

    images = generator.generate_for_points(
        points, 1, generator=generator.StaticImageGenerator(), rng=random.Random(0)
    )

    assert [image.date for image in images] == [TIMESTAMP, later]


def test_generate_for_points_uses_count_range():
    images = generator.generate_for_points(
        [MapPoint(Coordinate(5, 5), TIMESTAMP)],
        ImagesCountRange.HIGH,
        generator=generator.StaticImageGenerator(),
        rng=random.Random(11),
    )
    assert 5 <= len(images) <= 10


def test_count_range_bounds():
    rng = random.Random(5)
    picks = {ImagesCountRange.MEDIUM.pick(rng) for _ in range(200)}
    assert picks == {3, 4, 5}
    assert ImagesCountRange.LOW.title == "1–3"


def test_malformed_metadata_field_falls_back():
    def embed_with_bad_time(data, gps, exif):
        return encoder.embed_metadata(data, dict(gps, GPSTimeStamp="noon"), exif)

    images = generator.ImageGenerator(embed_func=embed_with_bad_time).generate(_params(2))

    assert len(images) == 2
    assert all(image.metadata_embedded is False for image in images)
    assert encoder.read_embedded_metadata(images[0].jpeg_data) == {"GPS": {}, "Exif": {}}
