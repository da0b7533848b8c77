"""Evidence extraction: image normalization and capture metadata.

Every input file becomes an ``EvidenceImage``: a base64 JPEG that fits the
dimension and size budgets, plus whatever EXIF metadata could be read.
Metadata extraction is best-effort. A file that cannot be decoded raises
``PreprocessError``.

Example:
    >>> images = preprocess_directory(Path("./datasets/alice"))
    >>> images[0].exif.capture_time
    '2024-06-01T10:00:00Z'
"""

from __future__ import annotations

import base64
import io
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from PIL import Image, UnidentifiedImageError
from PIL.ExifTags import TAGS
from pillow_heif import register_heif_opener

from bioblueprint.config import PreprocessSettings
from bioblueprint.models import EvidenceImage, ExifData, GpsCoordinate

logger = logging.getLogger(__name__)

# Lets Image.open decode HEIC/HEIF files.
register_heif_opener()

SUPPORTED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".heic", ".webp"})

EXIF_IFD_POINTER = 0x8769
GPS_IFD_POINTER = 0x8825

# GPS IFD tag ids
GPS_LATITUDE_REF = 1
GPS_LATITUDE = 2
GPS_LONGITUDE_REF = 3
GPS_LONGITUDE = 4

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"
DATE_FIELDS = ("DateTimeOriginal", "DateTimeDigitized", "DateTime")


class PreprocessError(Exception):
    """An input image could not be normalized.

    Attributes:
        filename: Name of the offending file.
        cause: The underlying exception.
    """

    def __init__(self, filename: str, cause: Exception) -> None:
        super().__init__(f"Failed to preprocess {filename}: {cause}")
        self.filename = filename
        self.cause = cause


def is_supported_image(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS


# =============================================================================
# EXIF Extraction
# =============================================================================


def _rational(value: Any) -> float:
    """Convert an EXIF rational (IFDRational or a (num, den) pair) to float."""
    if isinstance(value, tuple) and len(value) == 2:
        return float(value[0]) / float(value[1])
    return float(value)


def dms_to_decimal(dms: Any, ref: Any) -> float:
    """Convert degrees/minutes/seconds to signed decimal degrees.

    Args:
        dms: Three EXIF rationals.
        ref: Hemisphere reference: N/S for latitude, E/W for longitude.

    Returns:
        Decimal degrees, negative for S and W.
    """
    degrees, minutes, seconds = (_rational(part) for part in dms)
    decimal = degrees + minutes / 60.0 + seconds / 3600.0

    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    if str(ref).strip().upper() in ("S", "W"):
        decimal = -decimal

    return decimal


def parse_exif_datetime(value: Any) -> str | None:
    """Convert "YYYY:MM:DD HH:MM:SS" to an ISO-8601 UTC string."""
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.strptime(value.strip().rstrip("\x00"), EXIF_DATETIME_FORMAT)
    except ValueError:
        logger.debug(f"Could not parse EXIF datetime: {value!r}")
        return None
    return parsed.replace(tzinfo=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _extract_gps(gps_info: dict[int, Any]) -> GpsCoordinate | None:
    lat = gps_info.get(GPS_LATITUDE)
    lat_ref = gps_info.get(GPS_LATITUDE_REF)
    lon = gps_info.get(GPS_LONGITUDE)
    lon_ref = gps_info.get(GPS_LONGITUDE_REF)

    if not all([lat, lat_ref, lon, lon_ref]):
        return None

    try:
        return GpsCoordinate(
            latitude=dms_to_decimal(lat, lat_ref),
            longitude=dms_to_decimal(lon, lon_ref),
        )
    except (ValueError, TypeError, ZeroDivisionError) as e:
        logger.debug(f"Error parsing GPS data: {e}")
        return None


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).replace("\x00", "").strip()
    return text or None


def extract_exif(img: Image.Image) -> ExifData | None:
    """Read capture time, GPS, camera and orientation from an open image.

    Returns:
        ExifData, or None when the image carries none of these fields.
    """
    exif = img.getexif()
    if not exif:
        return None

    tags = {TAGS.get(k, k): v for k, v in exif.items()}
    tags.update({TAGS.get(k, k): v for k, v in exif.get_ifd(EXIF_IFD_POINTER).items()})

    capture_time = None
    for field in DATE_FIELDS:
        capture_time = parse_exif_datetime(tags.get(field))
        if capture_time:
            break

    camera = " ".join(p for p in (_clean(tags.get("Make")), _clean(tags.get("Model"))) if p)

    orientation = tags.get("Orientation")
    data = ExifData(
        capture_time=capture_time,
        gps=_extract_gps(dict(exif.get_ifd(GPS_IFD_POINTER))),
        camera=camera or None,
        orientation=int(orientation) if isinstance(orientation, int) else None,
    )
    return None if data.is_empty else data


# =============================================================================
# Normalization
# =============================================================================


def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def normalize_image(path: Path, settings: PreprocessSettings | None = None) -> EvidenceImage:
    """Normalize one image file.

    The image is converted to RGB, resized to fit within the maximum
    dimension and JPEG-encoded. While the payload exceeds the size target and
    the quality is above the floor, quality is lowered by one step and the
    image re-encoded.

    Args:
        path: Image file.
        settings: Dimension, size and quality budgets.

    Returns:
        The normalized evidence image.

    Raises:
        PreprocessError: If the file cannot be read or decoded.
    """
    settings = settings or PreprocessSettings()
    path = Path(path)

    try:
        original_size = path.stat().st_size
        with Image.open(path) as img:
            try:
                exif = extract_exif(img)
            except Exception as e:
                logger.debug(f"Failed to extract EXIF from {path.name}: {e}")
                exif = None

            frame = img.convert("RGB") if img.mode != "RGB" else img.copy()
    except (OSError, UnidentifiedImageError, ValueError) as e:
        raise PreprocessError(path.name, e) from e

    frame.thumbnail((settings.max_dimension, settings.max_dimension), Image.Resampling.LANCZOS)

    quality = settings.quality
    payload = _encode_jpeg(frame, quality)
    while len(payload) > settings.max_size_bytes and quality > settings.min_quality:
        quality = max(settings.min_quality, quality - settings.quality_step)
        payload = _encode_jpeg(frame, quality)

    logger.debug(
        f"Normalized {path.name}: {original_size / 1024:.1f} KB -> "
        f"{len(payload) / 1024:.1f} KB (quality {quality})"
    )

    return EvidenceImage(
        filename=path.name,
        base64=base64.b64encode(payload).decode("ascii"),
        size_kb=round(len(payload) / 1024, 1),
        original_size_kb=round(original_size / 1024, 1),
        exif=exif,
    )


def list_images(directory: Path) -> list[Path]:
    """Supported image files directly inside ``directory``, in name order."""
    return sorted(p for p in Path(directory).iterdir() if is_supported_image(p))


def preprocess_directory(
    directory: Path,
    settings: PreprocessSettings | None = None,
) -> list[EvidenceImage]:
    """Normalize every supported image in a directory.

    Files that fail are logged and skipped.

    Args:
        directory: Directory holding the images.
        settings: Normalization budgets.

    Returns:
        Evidence images in file-name order.
    """
    images = []
    for path in list_images(directory):
        try:
            images.append(normalize_image(path, settings))
        except PreprocessError as e:
            logger.warning(str(e))

    logger.info(f"Preprocessed {len(images)} images from {directory}")
    return images
