"""Phase 2: deep analysis.

Turns the scan into the full confidence-annotated profile tree. The request
restates the scan summary, the focus topics and the EXIF summary ahead of
the images.
"""

from __future__ import annotations

from bioblueprint.ai.client import ContentBlock, TextBlock
from bioblueprint.ai.content import build_exif_summary, build_image_blocks
from bioblueprint.ai.phase import AnalysisPhase
from bioblueprint.ai.prompts import ANALYZER_SYSTEM_PROMPT, ANALYZER_USER_PROMPT
from bioblueprint.models import AnalysisTree, CrossReference, EvidenceImage, ScanResult


def format_topic_details(references: list[CrossReference]) -> str:
    """One line per cross-reference: topic, supporting images and confidence."""
    if not references:
        return "- (none)"
    return "\n".join(
        f"- {ref.topic}: images {sorted(set(ref.images))}, confidence {ref.confidence:.2f}"
        for ref in references
    )


class DeepAnalyzer(AnalysisPhase):
    """Single-round analysis producing the open-schema profile tree."""

    name = "analyze"
    system_prompt = ANALYZER_SYSTEM_PROMPT

    def build_request(
        self,
        images: list[EvidenceImage],
        scan: ScanResult,
        focus: list[str],
    ) -> list[ContentBlock]:
        instruction = ANALYZER_USER_PROMPT.format(
            total_images=len(images),
            high_priority=", ".join(str(i) for i in scan.summary.high_priority_images) or "none",
            focus_topics=", ".join(focus) or "none",
            topic_details=format_topic_details(scan.summary.cross_references),
            exif_summary=build_exif_summary(images),
        )
        blocks: list[ContentBlock] = [TextBlock(instruction)]
        blocks.extend(build_image_blocks(images))
        return blocks

    def run(
        self,
        images: list[EvidenceImage],
        scan: ScanResult,
        focus: list[str],
    ) -> AnalysisTree:
        """Produce the profile tree.

        Args:
            images: Evidence batch.
            scan: Normalized scan result.
            focus: Topics that should steer the analysis.

        Returns:
            The confidence-annotated tree, as decoded.

        Raises:
            EmptyResponseError: If the provider returned no text.
            ResponseFormatError: If no usable JSON object was returned.
        """
        self.logger.info(f"Deep analysis over {len(images)} images, {len(focus)} focus topics")
        return self._request_json(
            self.build_request(images, scan, focus),
            self.settings.analyze_max_tokens,
        )
