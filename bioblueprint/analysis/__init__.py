"""Pure transforms over analysis results: confidence filtering and known-info merge."""

from bioblueprint.analysis.confidence import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    FOCUS_TOPIC_THRESHOLD,
    SYNTHESIS_CONFIDENCE_THRESHOLD,
    calibrate_confidence,
    calibrate_cross_references,
    filter_by_confidence,
    focus_topics,
    is_confidence_value,
)
from bioblueprint.analysis.known_info import (
    PROMPTABLE_FIELDS,
    PromptableField,
    apply_known_info,
    missing_identity_fields,
)

__all__ = [
    "DEFAULT_CONFIDENCE_THRESHOLD",
    "SYNTHESIS_CONFIDENCE_THRESHOLD",
    "FOCUS_TOPIC_THRESHOLD",
    "filter_by_confidence",
    "is_confidence_value",
    "calibrate_confidence",
    "calibrate_cross_references",
    "focus_topics",
    "PROMPTABLE_FIELDS",
    "PromptableField",
    "apply_known_info",
    "missing_identity_fields",
]
