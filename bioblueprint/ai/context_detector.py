"""Phase 0: context classification.

Classifies every image along the fixed taxonomy (source, domain,
interaction, layout, ownership, app, visible text, privacy) in a single
inference round and aggregates a batch summary.
"""

from __future__ import annotations

from bioblueprint.ai.client import ContentBlock, TextBlock
from bioblueprint.ai.content import build_image_blocks
from bioblueprint.ai.phase import AnalysisPhase
from bioblueprint.ai.prompts import CONTEXT_DETECTION_SYSTEM_PROMPT
from bioblueprint.models import ContextDetectionResult, ContextSummary, EvidenceImage


class ContextDetector(AnalysisPhase):
    """Single-round context classifier."""

    name = "context"
    system_prompt = CONTEXT_DETECTION_SYSTEM_PROMPT

    def build_request(self, images: list[EvidenceImage]) -> list[ContentBlock]:
        blocks: list[ContentBlock] = [
            TextBlock(f"Analyze the context of the following {len(images)} images:")
        ]
        blocks.extend(build_image_blocks(images))
        return blocks

    def run(self, images: list[EvidenceImage]) -> ContextDetectionResult:
        """Classify the batch.

        When the provider omits the batch summary it is computed from the
        per-image records.

        Args:
            images: Evidence batch, at least one image.

        Returns:
            Per-image contexts and the batch summary.

        Raises:
            EmptyResponseError: If the provider returned no text.
            ResponseFormatError: If no usable JSON object was returned.
        """
        self.logger.info(f"Detecting context for {len(images)} images...")
        data = self._request_json(self.build_request(images), self.settings.context_max_tokens)
        result = self._validate(ContextDetectionResult, data)

        if "summary" not in data:
            result = result.model_copy(
                update={"summary": ContextSummary.from_images(result.images)}
            )

        return result
