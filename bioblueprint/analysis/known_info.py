"""Known-info merge with provenance tracking.

User-declared facts always win over inferred ones. After the merge every
declared identity field reads ``{"value": ..., "source": "user_input"}``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from bioblueprint.models import Blueprint, FieldSource, KnownInfo, TrackedField

# Known-info wire name -> identity card field
IDENTITY_FIELD_MAP: dict[str, str] = {
    "gender": "gender",
    "username": "username",
    "name": "name",
    "ageRange": "age",
    "location": "location",
    "occupation": "occupation",
}

# How far an inferred identity value is trusted when deciding what to ask for
INFERRED_FIELD_CONFIDENCE: dict[str, float] = {
    "gender": 0.9,
    "location": 0.8,
    "ageRange": 0.7,
    "occupation": 0.7,
}

MISSING_FIELD_THRESHOLD = 0.8


@dataclass(frozen=True)
class PromptableField:
    """An identity field the user can be asked to fill in."""

    key: str
    label: str
    required: bool
    examples: list[str] = field(default_factory=list)


PROMPTABLE_FIELDS: list[PromptableField] = [
    PromptableField("gender", "Gender (Male/Female/Other)", True, ["Male", "Female"]),
    PromptableField("username", "Username/Handle", False, ["@handle", "handle"]),
    PromptableField("name", "Name", False, ["Alex", "Sam"]),
    PromptableField("ageRange", "Age Range", False, ["25-35", "28-35"]),
    PromptableField("location", "Location", False, ["Austin, TX", "Palo Alto, CA"]),
    PromptableField("occupation", "Occupation", False, ["Software Engineer", "Teacher"]),
]


def identity_card(blueprint: Blueprint | None) -> dict[str, Any] | None:
    """Return ``profile.identity_card`` if the blueprint has one."""
    if not isinstance(blueprint, dict):
        return None
    profile = blueprint.get("profile")
    if not isinstance(profile, dict):
        return None
    card = profile.get("identity_card")
    return card if isinstance(card, dict) else None


def apply_known_info(blueprint: Blueprint, known: KnownInfo | None) -> Blueprint:
    """Overlay user-declared identity fields onto a synthesized blueprint.

    Each populated known field replaces the matching identity card field with
    a ``user_input`` tracked value, whatever was inferred before. Applying the
    same known info twice gives the same result.

    Args:
        blueprint: Synthesized blueprint, modified in place.
        known: User-declared facts.

    Returns:
        The same blueprint object.
    """
    card = identity_card(blueprint)
    if card is None or known is None:
        return blueprint

    for known_key, value in known.populated().items():
        card_key = IDENTITY_FIELD_MAP.get(known_key)
        if card_key is None:
            continue
        card[card_key] = TrackedField[str](value=value, source=FieldSource.USER_INPUT).to_wire()

    return blueprint


def _inferred_confidence(card: dict[str, Any] | None, key: str) -> float | None:
    if card is None:
        return None
    card_key = IDENTITY_FIELD_MAP[key]
    if not card.get(card_key):
        return None
    return INFERRED_FIELD_CONFIDENCE.get(key)


def missing_identity_fields(
    known: KnownInfo | None,
    blueprint: Blueprint | None,
) -> list[PromptableField]:
    """List identity fields that are neither declared nor confidently inferred.

    Args:
        known: User-declared facts, if any.
        blueprint: Synthesized blueprint, if any.

    Returns:
        Promptable fields still missing, in display order.
    """
    declared = known.populated() if known else {}
    card = identity_card(blueprint)

    missing = []
    for prompt_field in PROMPTABLE_FIELDS:
        if declared.get(prompt_field.key):
            continue
        confidence = _inferred_confidence(card, prompt_field.key)
        if confidence is not None and confidence >= MISSING_FIELD_THRESHOLD:
            continue
        missing.append(prompt_field)

    return missing
