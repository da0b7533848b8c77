"""Request shaping shared by the inference phases.

Builds the per-image annotation lines, the interleaved text/image content
blocks and the EXIF summary block appended to scan and analysis requests.
"""

from __future__ import annotations

from datetime import datetime, timezone

from bioblueprint.ai.client import ContentBlock, ImageBlock, TextBlock
from bioblueprint.models import EvidenceImage, ExifData


def format_exif_annotation(exif: ExifData | None) -> str:
    """One-line EXIF suffix for an image header, or "" when nothing is known."""
    if exif is None:
        return ""

    parts = []
    if exif.capture_time:
        parts.append(f"Taken: {exif.capture_time}")
    if exif.gps:
        parts.append(f"GPS: {exif.gps.latitude:.6f}, {exif.gps.longitude:.6f}")
    if exif.camera:
        parts.append(f"Camera: {exif.camera}")

    return f" | EXIF: {', '.join(parts)}" if parts else ""


def image_header(index: int, image: EvidenceImage) -> str:
    return f"\n--- Image {index} ({image.filename}){format_exif_annotation(image.exif)} ---"


def build_image_blocks(images: list[EvidenceImage]) -> list[ContentBlock]:
    """Interleave a header line and the payload for every image, in order."""
    blocks: list[ContentBlock] = []
    for index, image in enumerate(images):
        blocks.append(TextBlock(image_header(index, image)))
        blocks.append(ImageBlock(image.base64))
    return blocks


def _capture_sort_key(item: tuple[int, EvidenceImage]) -> tuple[datetime, int]:
    index, image = item
    parsed = image.exif.capture_datetime() if image.exif else None
    return (parsed or datetime.max.replace(tzinfo=timezone.utc), index)


def build_exif_summary(images: list[EvidenceImage]) -> str:
    """Summarize GPS fixes and capture times across the batch.

    GPS fixes are listed by image index. Capture times are listed
    chronologically, followed by the covered date range.

    Args:
        images: The evidence batch.

    Returns:
        The summary block, or "" when no image has GPS or a capture time.
    """
    with_gps = [(i, img) for i, img in enumerate(images) if img.has_gps]
    with_time = [(i, img) for i, img in enumerate(images) if img.has_capture_time]

    if not with_gps and not with_time:
        return ""

    lines = ["", "", "## EXIF Metadata (Use for inference):"]

    if with_gps:
        lines.extend(["", "GPS Locations:"])
        for index, img in with_gps:
            gps = img.exif.gps
            lines.append(f"- Image {index}: {gps.latitude:.6f}, {gps.longitude:.6f}")

    if with_time:
        lines.extend(["", "Capture Times:"])
        ordered = sorted(with_time, key=_capture_sort_key)
        for index, img in ordered:
            lines.append(f"- Image {index}: {img.exif.capture_time}")

        earliest = ordered[0][1].exif.capture_date
        latest = ordered[-1][1].exif.capture_date
        lines.extend(["", f"Time Range: {earliest} to {latest}"])

    return "\n".join(lines) + "\n"
