"""Phase 1: quick scan.

Tags every image, reads its text and dates, and finds topics that recur
across images. The provider's cross-reference confidences are brought into
their occurrence bands locally, so a topic seen once can never steer the
deep analysis.
"""

from __future__ import annotations

from collections import Counter

from bioblueprint.ai.client import ContentBlock, TextBlock
from bioblueprint.ai.content import build_exif_summary, build_image_blocks
from bioblueprint.ai.phase import AnalysisPhase
from bioblueprint.ai.prompts import SCANNER_SYSTEM_PROMPT
from bioblueprint.analysis.confidence import calibrate_cross_references, corroborated_indices
from bioblueprint.models import (
    EvidenceImage,
    ImageTextExtraction,
    ScanPriority,
    ScanResult,
    TagCategory,
)


class EvidenceScanner(AnalysisPhase):
    """Single-round scan over the whole batch."""

    name = "scan"
    system_prompt = SCANNER_SYSTEM_PROMPT

    def build_request(self, images: list[EvidenceImage]) -> list[ContentBlock]:
        blocks: list[ContentBlock] = [
            TextBlock(f"Quickly scan the following {len(images)} images:")
        ]
        blocks.extend(build_image_blocks(images))

        exif_summary = build_exif_summary(images)
        if exif_summary:
            blocks.append(TextBlock(exif_summary))

        return blocks

    def run(self, images: list[EvidenceImage]) -> ScanResult:
        """Scan the batch and normalize the summary.

        Args:
            images: Evidence batch, at least one image.

        Returns:
            Per-image scan records and a normalized batch summary.

        Raises:
            EmptyResponseError: If the provider returned no text.
            ResponseFormatError: If no usable JSON object was returned.
        """
        self.logger.info(f"Scanning {len(images)} images...")
        data = self._request_json(self.build_request(images), self.settings.scan_max_tokens)
        result = self._validate(ScanResult, data)
        return normalize_scan(result, images)


def normalize_scan(result: ScanResult, images: list[EvidenceImage]) -> ScanResult:
    """Fill in and calibrate the scan summary.

    - ``total_images`` is the batch size.
    - The category distribution carries all ten categories. Categories the
      provider left out are counted from the per-image tags.
    - The high-priority list is derived from the records when absent.
    - Text extractions are derived from the records when absent.
    - Cross-reference confidences are calibrated by occurrence count.

    Args:
        result: Validated provider output.
        images: The batch that was scanned.

    Returns:
        A new ScanResult.
    """
    summary = result.summary
    records = result.scan_results

    tag_counts = Counter(tag.category for scan in records for tag in scan.tags)
    distribution = {
        category: summary.category_distribution.get(category, tag_counts.get(category, 0))
        for category in TagCategory
    }

    high_priority = summary.high_priority_images or [
        scan.image_index for scan in records if scan.priority == ScanPriority.HIGH
    ]

    extracted = summary.all_text_extracted or [
        ImageTextExtraction(image_index=scan.image_index, texts=[t.text for t in scan.text_detected])
        for scan in records
        if scan.text_detected
    ]

    references = calibrate_cross_references(
        summary.cross_references,
        corroborated_indices(images, records),
    )

    normalized = summary.model_copy(
        update={
            "total_images": len(images),
            "category_distribution": distribution,
            "high_priority_images": high_priority,
            "all_text_extracted": extracted,
            "cross_references": references,
        }
    )
    return result.model_copy(update={"summary": normalized})
