"""Confidence filtering and cross-reference calibration.

Everything here is pure: no I/O, no provider calls, and inputs are never
mutated.

The deep-analysis tree is open JSON. A node is either a confidence value
(a mapping with both ``value`` and ``confidence`` keys), a list of nodes, or
a mapping of further nodes. ``filter_by_confidence`` walks that shape once,
so new sections or field names never need filter changes.
"""

from __future__ import annotations

from typing import Any, Iterable

from bioblueprint.models import AnalysisTree, CrossReference, EvidenceImage, ImageScan

# Generic threshold, available to callers
DEFAULT_CONFIDENCE_THRESHOLD = 0.6

# Applied by the orchestrator between deep analysis and synthesis
SYNTHESIS_CONFIDENCE_THRESHOLD = 0.8

# Cross-references above this steer the deep-analysis phase
FOCUS_TOPIC_THRESHOLD = 0.7

# Occurrence bands for cross-reference confidence
SINGLE_OCCURRENCE_CAP = 0.6
FEW_OCCURRENCES_RANGE = (0.7, 0.8)
MANY_OCCURRENCES_FLOOR = 0.85
MANY_OCCURRENCES_MIN_COUNT = 4
CORROBORATION_BOOST = 0.05

_ABSENT = object()


def is_confidence_value(node: Any) -> bool:
    """True if ``node`` is a confidence-value leaf."""
    return isinstance(node, dict) and "value" in node and "confidence" in node


def _confidence_of(node: dict[str, Any]) -> float:
    try:
        return float(node["confidence"])
    except (TypeError, ValueError):
        # Unreadable confidence never clears a threshold
        return float("-inf")


def _filter_node(node: Any, threshold: float) -> Any:
    if node is None:
        return _ABSENT

    if isinstance(node, list):
        kept = [f for f in (_filter_node(item, threshold) for item in node) if f is not _ABSENT]
        return kept if kept else _ABSENT

    if isinstance(node, dict):
        if is_confidence_value(node):
            return node if _confidence_of(node) >= threshold else _ABSENT

        filtered = {}
        for key, value in node.items():
            child = _filter_node(value, threshold)
            if child is _ABSENT:
                continue
            filtered[key] = child
        return filtered if filtered else _ABSENT

    return node


def filter_by_confidence(
    tree: AnalysisTree | None,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> AnalysisTree:
    """Prune low-confidence leaves and collapse emptied containers.

    Depth-first over the tree:

    - ``None`` is dropped.
    - Lists keep the elements that survive filtering and are dropped when
      nothing survives.
    - Confidence values are dropped when ``confidence < threshold`` and kept
      unchanged otherwise (their internals are not inspected).
    - Other mappings keep the properties that survive and are dropped when
      none do.
    - Scalars pass through.

    The result is a structural subset of the input with no empty containers,
    and filtering it again at the same threshold returns it unchanged.

    Args:
        tree: Analysis tree to filter.
        threshold: Minimum confidence a leaf needs to be kept.

    Returns:
        The filtered tree, or an empty dict when everything was pruned.
    """
    result = _filter_node(tree, threshold)
    if result is _ABSENT or not isinstance(result, dict):
        return {}
    return result


# =============================================================================
# Cross-Reference Calibration
# =============================================================================


def corroborated_indices(
    images: list[EvidenceImage],
    scans: Iterable[ImageScan],
) -> set[int]:
    """Indices of images carrying a GPS fix or OCR-detected text."""
    indices = {i for i, img in enumerate(images) if img.has_gps}
    indices.update(scan.image_index for scan in scans if scan.has_text)
    return indices


def calibrate_confidence(
    confidence: float,
    occurrences: int,
    corroborated: bool = False,
) -> float:
    """Bring a cross-reference confidence into its occurrence band.

    - 1 occurrence: capped at 0.6, never boosted.
    - 2-3 occurrences: clamped to 0.7-0.8.
    - 4+ occurrences: raised to at least 0.85.

    Multi-image topics gain a fixed boost when corroborated by GPS or OCR
    evidence. The result never exceeds 1.0.

    Args:
        confidence: Confidence reported by the provider.
        occurrences: Number of distinct supporting images.
        corroborated: Whether any supporting image has GPS or OCR evidence.

    Returns:
        Calibrated confidence in [0, 1].
    """
    confidence = max(0.0, min(1.0, confidence))

    if occurrences <= 1:
        return min(confidence, SINGLE_OCCURRENCE_CAP)

    if occurrences < MANY_OCCURRENCES_MIN_COUNT:
        low, high = FEW_OCCURRENCES_RANGE
        calibrated = max(low, min(high, confidence))
    else:
        calibrated = max(MANY_OCCURRENCES_FLOOR, confidence)

    if corroborated:
        calibrated += CORROBORATION_BOOST

    return round(min(1.0, calibrated), 4)


def calibrate_cross_references(
    references: list[CrossReference],
    corroborated: set[int],
) -> list[CrossReference]:
    """Return copies of ``references`` with calibrated confidences.

    Args:
        references: Cross-references reported by the scan.
        corroborated: Image indices with GPS or OCR evidence.

    Returns:
        New CrossReference objects, in input order.
    """
    calibrated = []
    for ref in references:
        boosted = any(i in corroborated for i in ref.images)
        confidence = calibrate_confidence(ref.confidence, ref.occurrences, boosted)
        calibrated.append(ref.model_copy(update={"confidence": confidence}))
    return calibrated


def focus_topics(
    references: list[CrossReference],
    threshold: float = FOCUS_TOPIC_THRESHOLD,
) -> list[str]:
    """Topics whose confidence strictly exceeds ``threshold``, in input order."""
    return [ref.topic for ref in references if ref.confidence > threshold]
