"""Build GPS and EXIF field mappings from a coordinate and a timestamp."""

from datetime import datetime, tzinfo
from typing import Dict, Optional, Tuple, Union

from .models import Coordinate

GPS_DATE_FORMAT = '%Y:%m:%d'
GPS_TIME_FORMAT = '%H:%M:%S'
EXIF_DATETIME_FORMAT = '%Y:%m:%d %H:%M:%S'

# Seconds are stored with four decimal places (about 3 mm at the equator)
DMS_SECONDS_DENOMINATOR = 10000

Field = Union[str, int, float]
Rational = Tuple[int, int]


def localize(timestamp: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """
    Express a timestamp in the time zone its fields are formatted in.

    Naive timestamps are local wall clock time. With tz=None the result is in
    the local zone, otherwise in tz.
    """
    if tz is None and timestamp.tzinfo is None:
        return timestamp
    return timestamp.astimezone(tz)


def build_gps_block(
    coordinate: Coordinate,
    timestamp: datetime,
    tz: Optional[tzinfo] = None,
) -> Dict[str, Field]:
    """Build the GPS fields: unsigned magnitudes plus hemisphere letters."""
    moment = localize(timestamp, tz)
    return {
        'GPSLatitude': abs(coordinate.latitude),
        'GPSLatitudeRef': 'N' if coordinate.latitude >= 0 else 'S',
        'GPSLongitude': abs(coordinate.longitude),
        'GPSLongitudeRef': 'E' if coordinate.longitude >= 0 else 'W',
        'GPSAltitudeRef': 0,
        'GPSTimeStamp': moment.strftime(GPS_TIME_FORMAT),
        'GPSDateStamp': moment.strftime(GPS_DATE_FORMAT),
    }


def build_exif_block(timestamp: datetime, tz: Optional[tzinfo] = None) -> Dict[str, str]:
    """Build the EXIF capture fields; original and digitized are always equal."""
    formatted = localize(timestamp, tz).strftime(EXIF_DATETIME_FORMAT)
    return {
        'DateTimeOriginal': formatted,
        'DateTimeDigitized': formatted,
    }


def decimal_to_dms(decimal: float) -> Tuple[Rational, Rational, Rational]:
    """Convert a magnitude in decimal degrees to EXIF degree/minute/second rationals."""
    decimal = abs(decimal)
    degrees = int(decimal)
    minutes_decimal = (decimal - degrees) * 60
    minutes = int(minutes_decimal)
    seconds = round((minutes_decimal - minutes) * 60 * DMS_SECONDS_DENOMINATOR)
    # rounding may reach a full minute; carry so every part stays below 60
    if seconds >= 60 * DMS_SECONDS_DENOMINATOR:
        seconds -= 60 * DMS_SECONDS_DENOMINATOR
        minutes += 1
    if minutes >= 60:
        minutes -= 60
        degrees += 1
    return ((degrees, 1), (minutes, 1), (seconds, DMS_SECONDS_DENOMINATOR))


def dms_to_decimal(dms) -> float:
    """Convert EXIF degree/minute/second rationals back to decimal degrees."""
    return (
        dms[0][0] / dms[0][1]
        + dms[1][0] / (dms[1][1] * 60)
        + dms[2][0] / (dms[2][1] * 3600)
    )


def parse_time_stamp(value: str) -> Tuple[Rational, Rational, Rational]:
    """Turn an HH:MM:SS string into the three rationals GPSTimeStamp stores."""
    hours, minutes, seconds = (int(part) for part in value.split(':'))
    return ((hours, 1), (minutes, 1), (seconds, 1))


def format_time_stamp(rationals) -> str:
    """Format GPSTimeStamp rationals as HH:MM:SS."""
    hours, minutes, seconds = (int(num / den) for num, den in rationals)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
