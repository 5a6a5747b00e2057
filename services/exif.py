"""
services/exif.py — Extracción best-effort de EXIF con Pillow.

Devuelve None si la imagen no trae EXIF o no se puede leer; nunca rompe la
subida de una foto.

Uso:
    from services.exif import extract_exif
    exif = extract_exif(raw_bytes)   # ExifData | None
"""

import io
import logging

from PIL import Image, UnidentifiedImageError

from models.entities import ExifCameraSettings, ExifData, ExifLocation

logger = logging.getLogger(__name__)

# Tags EXIF (ver PIL.ExifTags)
_TAG_DATETIME = 306
_TAG_MAKE = 271
_TAG_MODEL = 272
_IFD_EXIF = 0x8769
_IFD_GPS = 0x8825
_TAG_DATETIME_ORIGINAL = 36867
_TAG_EXPOSURE_TIME = 33434
_TAG_FNUMBER = 33437
_TAG_ISO = 34855

# Tags dentro del IFD GPS
_GPS_LAT_REF = 1
_GPS_LAT = 2
_GPS_LON_REF = 3
_GPS_LON = 4


def _dms_to_decimal(dms, ref: str) -> float:
    degrees, minutes, seconds = dms
    decimal = float(degrees) + float(minutes) / 60 + float(seconds) / 3600
    if ref in ("S", "W"):
        decimal = -decimal
    return decimal


def _location(gps: dict) -> ExifLocation | None:
    lat, lat_ref = gps.get(_GPS_LAT), gps.get(_GPS_LAT_REF)
    lon, lon_ref = gps.get(_GPS_LON), gps.get(_GPS_LON_REF)
    if not all([lat, lat_ref, lon, lon_ref]):
        return None
    try:
        return ExifLocation(
            latitude=_dms_to_decimal(lat, lat_ref),
            longitude=_dms_to_decimal(lon, lon_ref),
        )
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def _camera_settings(exif_ifd: dict) -> ExifCameraSettings | None:
    fnumber = exif_ifd.get(_TAG_FNUMBER)
    exposure = exif_ifd.get(_TAG_EXPOSURE_TIME)
    iso = exif_ifd.get(_TAG_ISO)
    if fnumber is None and exposure is None and iso is None:
        return None

    shutter = None
    if exposure:
        exposure = float(exposure)
        shutter = f"1/{round(1 / exposure)}" if 0 < exposure < 1 else f"{exposure:g}s"

    return ExifCameraSettings(
        aperture=f"f/{float(fnumber):g}" if fnumber else None,
        shutter=shutter,
        iso=str(iso) if iso is not None else None,
    )


def extract_exif(data: bytes) -> ExifData | None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            exif = img.getexif()
            if not exif:
                return None
            exif_ifd = dict(exif.get_ifd(_IFD_EXIF))
            gps_ifd = dict(exif.get_ifd(_IFD_GPS))

            make = str(exif.get(_TAG_MAKE, "")).strip("\x00 ")
            model = str(exif.get(_TAG_MODEL, "")).strip("\x00 ")
            camera = " ".join(part for part in (make, model) if part) or None
            date = exif_ifd.get(_TAG_DATETIME_ORIGINAL) or exif.get(_TAG_DATETIME)

            result = ExifData(
                date=str(date) if date else None,
                location=_location(gps_ifd),
                camera=camera,
                settings=_camera_settings(exif_ifd),
            )
    except (UnidentifiedImageError, OSError, ValueError, TypeError, ZeroDivisionError) as exc:
        logger.debug("[UPLOAD] No se pudo leer EXIF: %s", exc)
        return None

    if result == ExifData():
        return None
    return result
