from __future__ import annotations

import io
import logging
from typing import Any

from PIL import ExifTags, Image, UnidentifiedImageError

from visual_dataset.domain.models import Coordinates

logger = logging.getLogger(__name__)

GPS_LATITUDE_REF = 1
GPS_LATITUDE = 2
GPS_LONGITUDE_REF = 3
GPS_LONGITUDE = 4


def _dms_to_degrees(dms: Any, ref: Any) -> float:
    degrees, minutes, seconds = (float(v) for v in dms)
    value = degrees + minutes / 60.0 + seconds / 3600.0
    if str(ref or "").strip().upper() in {"S", "W"}:
        value = -value
    return value


def read_exif_coordinates(content: bytes) -> Coordinates | None:
    """Return the GPS position stored in a photo's EXIF block, if any.

    GPS is optional metadata: unreadable images, missing tags and malformed
    values all come back as ``None``.
    """
    try:
        with Image.open(io.BytesIO(content)) as image:
            gps = image.getexif().get_ifd(ExifTags.IFD.GPSInfo)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.info("gps.exif_unreadable error=%s", exc)
        return None

    if not gps or GPS_LATITUDE not in gps or GPS_LONGITUDE not in gps:
        logger.info("gps.exif_missing")
        return None

    try:
        latitude = _dms_to_degrees(gps[GPS_LATITUDE], gps.get(GPS_LATITUDE_REF))
        longitude = _dms_to_degrees(gps[GPS_LONGITUDE], gps.get(GPS_LONGITUDE_REF))
    except (TypeError, ValueError, ZeroDivisionError) as exc:
        logger.info("gps.exif_malformed error=%s", exc)
        return None

    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        logger.info("gps.exif_out_of_range lat=%s lng=%s", latitude, longitude)
        return None
    return Coordinates(latitude=round(latitude, 6), longitude=round(longitude, 6))
