"""JPEG serialization and GPS/EXIF injection.

Encoding happens in two steps so callers can fall back to the plain JPEG when
injection fails:

1. ``serialize_baseline`` turns a Pillow image into baseline JPEG bytes at
   maximum quality.
2. ``embed_metadata`` opens those bytes, replaces the GPS and EXIF IFDs of the
   existing EXIF dictionary and splices the dumped EXIF segment back in with
   ``insert_exif_segment``. The JFIF header, the other segments and the
   compressed sample data are copied unchanged.
"""

import copy
import io
import struct
from typing import Dict, List, Tuple

import piexif
from PIL import Image

from .metadata import (
    decimal_to_dms,
    dms_to_decimal,
    format_time_stamp,
    parse_time_stamp,
)

JPEG_QUALITY = 100

SOI = b"\xff\xd8"
APP0 = b"\xff\xe0"
APP1 = b"\xff\xe1"
EXIF_HEADER = b"Exif\x00\x00"


class EncodingError(Exception):
    """Base class for failures while producing a JPEG buffer."""

    code = "ENCODING_FAILED"


class RasterSerializationFailed(EncodingError):
    """The raster could not be turned into JPEG bytes; there is nothing to fall back to."""

    code = "RASTER_SERIALIZATION_FAILED"


class MetadataInjectionError(EncodingError):
    """Metadata could not be written; the baseline JPEG is still usable."""

    code = "METADATA_INJECTION_FAILED"


class SourceUnreadable(MetadataInjectionError):
    code = "SOURCE_UNREADABLE"


class DestinationWriteFailed(MetadataInjectionError):
    code = "DESTINATION_WRITE_FAILED"


def _empty_metadata() -> Dict:
    return {"0th": {}, "Exif": {}, "GPS": {}, "Interop": {}, "1st": {}, "thumbnail": None}


def serialize_baseline(raster: Image.Image) -> bytes:
    """Encode a raster as a non-progressive JPEG at maximum quality."""
    buffer = io.BytesIO()
    try:
        raster.save(
            buffer,
            format='JPEG',
            quality=JPEG_QUALITY,
            subsampling=0,
            progressive=False,
        )
    except (OSError, ValueError, KeyError) as exc:
        raise RasterSerializationFailed(f"Could not serialize raster: {exc}") from exc
    return buffer.getvalue()


def gps_to_ifd(gps: Dict) -> Dict[int, object]:
    """Convert builder GPS fields into a piexif GPS IFD."""
    return {
        piexif.GPSIFD.GPSLatitudeRef: gps['GPSLatitudeRef'].encode('ascii'),
        piexif.GPSIFD.GPSLatitude: decimal_to_dms(gps['GPSLatitude']),
        piexif.GPSIFD.GPSLongitudeRef: gps['GPSLongitudeRef'].encode('ascii'),
        piexif.GPSIFD.GPSLongitude: decimal_to_dms(gps['GPSLongitude']),
        piexif.GPSIFD.GPSAltitudeRef: gps['GPSAltitudeRef'],
        piexif.GPSIFD.GPSTimeStamp: parse_time_stamp(gps['GPSTimeStamp']),
        piexif.GPSIFD.GPSDateStamp: gps['GPSDateStamp'].encode('ascii'),
    }


def exif_to_ifd(exif: Dict) -> Dict[int, object]:
    """Convert builder EXIF fields into a piexif Exif IFD."""
    return {
        piexif.ExifIFD.DateTimeOriginal: exif['DateTimeOriginal'].encode('ascii'),
        piexif.ExifIFD.DateTimeDigitized: exif['DateTimeDigitized'].encode('ascii'),
    }


def _split_segments(jpeg_data: bytes) -> Tuple[List[bytes], bytes]:
    """Split JPEG bytes into the marker segments before SOS and the remainder."""
    if jpeg_data[:2] != SOI:
        raise ValueError("Data does not start with a JPEG SOI marker")

    segments = []
    pos = 2
    while pos < len(jpeg_data):
        if jpeg_data[pos] != 0xFF:
            raise ValueError(f"Expected a marker at offset {pos}")
        marker = jpeg_data[pos + 1]
        if marker == 0xFF:
            # fill byte
            pos += 1
            continue
        if marker in (0xDA, 0xD9):
            return segments, jpeg_data[pos:]
        (length,) = struct.unpack('>H', jpeg_data[pos + 2:pos + 4])
        end = pos + 2 + length
        if length < 2 or end > len(jpeg_data):
            raise ValueError(f"Truncated segment at offset {pos}")
        segments.append(jpeg_data[pos:end])
        pos = end

    raise ValueError("No image data found")


def insert_exif_segment(jpeg_data: bytes, exif_bytes: bytes) -> bytes:
    """
    Put an EXIF APP1 segment into jpeg_data, replacing any existing one.

    The new segment goes right after the JFIF APP0 segment (or after SOI when
    there is none). Every other segment and the scan data are kept as is.
    """
    if not exif_bytes.startswith(EXIF_HEADER):
        raise ValueError("Given data is not EXIF data")
    if len(exif_bytes) + 2 > 0xFFFF:
        raise ValueError(f"EXIF data too large for one segment: {len(exif_bytes)} bytes")

    segments, scan = _split_segments(jpeg_data)
    kept = [
        segment for segment in segments
        if not (segment[:2] == APP1 and segment[4:10] == EXIF_HEADER)
    ]
    app1 = APP1 + struct.pack('>H', len(exif_bytes) + 2) + exif_bytes
    position = 1 if kept and kept[0][:2] == APP0 else 0
    kept.insert(position, app1)
    return SOI + b"".join(kept) + scan


def embed_metadata(jpeg_data: bytes, gps: Dict, exif: Dict) -> bytes:
    """
    Return a copy of jpeg_data with its GPS and EXIF IFDs replaced.

    Args:
        jpeg_data: Baseline JPEG bytes
        gps: Fields from build_gps_block
        exif: Fields from build_exif_block

    Returns:
        JPEG bytes carrying the new metadata

    Raises:
        SourceUnreadable: jpeg_data cannot be opened or its metadata parsed
        DestinationWriteFailed: the updated metadata cannot be written back
    """
    try:
        with Image.open(io.BytesIO(jpeg_data)) as source:
            container_format = source.format
            existing = source.info.get('exif')
    except (OSError, ValueError) as exc:
        raise SourceUnreadable(f"Could not open image data: {exc}") from exc

    if not container_format:
        raise SourceUnreadable("Image data has no container format")

    try:
        metadata = piexif.load(existing) if existing else _empty_metadata()
    except (ValueError, struct.error, piexif.InvalidImageDataError) as exc:
        raise SourceUnreadable(f"Could not read existing metadata: {exc}") from exc

    if container_format != 'JPEG':
        raise DestinationWriteFailed(f"Cannot write metadata into {container_format} data")

    updated = copy.deepcopy(metadata)
    try:
        updated["GPS"] = gps_to_ifd(gps)
        updated["Exif"] = exif_to_ifd(exif)
        exif_bytes = piexif.dump(updated)
        return insert_exif_segment(jpeg_data, exif_bytes)
    except (
        AttributeError,
        IndexError,
        KeyError,
        TypeError,
        ValueError,
        struct.error,
        piexif.InvalidImageDataError,
    ) as exc:
        raise DestinationWriteFailed(f"Could not write metadata: {exc}") from exc


def encode(raster: Image.Image, gps: Dict, exif: Dict) -> bytes:
    """Serialize a raster and embed GPS/EXIF metadata in one go."""
    return embed_metadata(serialize_baseline(raster), gps, exif)


def read_embedded_metadata(jpeg_data: bytes) -> Dict[str, Dict]:
    """
    Read back the GPS and EXIF fields this module writes.

    Only the fields produced by build_gps_block and build_exif_block are
    returned, in the same form. Missing IFDs give empty dictionaries.
    """
    try:
        exif_dict = piexif.load(jpeg_data)
    except (ValueError, struct.error, piexif.InvalidImageDataError):
        return {"GPS": {}, "Exif": {}}

    gps_info = exif_dict.get("GPS") or {}
    exif_info = exif_dict.get("Exif") or {}

    gps = {}
    if piexif.GPSIFD.GPSLatitude in gps_info:
        gps['GPSLatitude'] = dms_to_decimal(gps_info[piexif.GPSIFD.GPSLatitude])
    if piexif.GPSIFD.GPSLatitudeRef in gps_info:
        gps['GPSLatitudeRef'] = gps_info[piexif.GPSIFD.GPSLatitudeRef].decode('ascii')
    if piexif.GPSIFD.GPSLongitude in gps_info:
        gps['GPSLongitude'] = dms_to_decimal(gps_info[piexif.GPSIFD.GPSLongitude])
    if piexif.GPSIFD.GPSLongitudeRef in gps_info:
        gps['GPSLongitudeRef'] = gps_info[piexif.GPSIFD.GPSLongitudeRef].decode('ascii')
    if piexif.GPSIFD.GPSAltitudeRef in gps_info:
        gps['GPSAltitudeRef'] = gps_info[piexif.GPSIFD.GPSAltitudeRef]
    if piexif.GPSIFD.GPSTimeStamp in gps_info:
        gps['GPSTimeStamp'] = format_time_stamp(gps_info[piexif.GPSIFD.GPSTimeStamp])
    if piexif.GPSIFD.GPSDateStamp in gps_info:
        gps['GPSDateStamp'] = gps_info[piexif.GPSIFD.GPSDateStamp].decode('ascii')

    exif = {}
    for key in ('DateTimeOriginal', 'DateTimeDigitized'):
        tag = getattr(piexif.ExifIFD, key)
        if tag in exif_info:
            exif[key] = exif_info[tag].decode('ascii')

    return {"GPS": gps, "Exif": exif}
