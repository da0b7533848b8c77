"""Phase 3: blueprint synthesis.

Converts the filtered analysis tree into the narrative blueprint. The
returned document always carries a fresh UUID and a normalized character
name, and never carries confidence or evidence metadata.
"""

from __future__ import annotations

import json
import re
import uuid
from typing import Any

from bioblueprint.ai.client import ContentBlock, TextBlock
from bioblueprint.ai.phase import AnalysisPhase
from bioblueprint.ai.prompts import SYNTHESIZER_SYSTEM_PROMPT, SYNTHESIZER_USER_PROMPT
from bioblueprint.analysis.known_info import identity_card
from bioblueprint.models import AnalysisTree, Blueprint, ContextSummary, KnownInfo

METADATA_KEYS = frozenset({"confidence", "evidence"})

MIN_NAME_TOKENS = 2
MAX_NAME_TOKENS = 4
FALLBACK_NAME_TOKENS = ["anonymous", "profile"]

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


# =============================================================================
# Output Normalization
# =============================================================================


def strip_metadata(node: Any) -> Any:
    """Recursively drop confidence/evidence keys.

    A mapping left holding only ``value`` collapses to that value.
    """
    if isinstance(node, list):
        return [strip_metadata(item) for item in node]
    if not isinstance(node, dict):
        return node

    stripped = {k: strip_metadata(v) for k, v in node.items() if k not in METADATA_KEYS}
    if set(stripped) == {"value"} and set(node) != {"value"}:
        return stripped["value"]
    return stripped


def _name_tokens(text: Any) -> list[str]:
    if not isinstance(text, str):
        return []
    return _TOKEN_PATTERN.findall(text.lower())


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("value")
    if isinstance(value, list):
        return _plain(value[0]) if value else None
    return value


def derive_character_name(blueprint: Blueprint) -> str:
    """Build a name from location, top interest and occupation.

    Takes the city part of the location, the last word of the first interest
    and the last word of the occupation, e.g. ``plano_climbing_engineer``.
    """
    card = identity_card(blueprint) or {}
    tokens: list[str] = []

    location = _name_tokens(str(_plain(card.get("location")) or "").split(",")[0])
    tokens.extend(location[:1])

    interest = _name_tokens(_plain(card.get("interests")))
    tokens.extend(interest[-1:])

    occupation = _name_tokens(_plain(card.get("occupation")))
    tokens.extend(occupation[-1:])

    tokens = [t for i, t in enumerate(tokens) if t not in tokens[:i]]
    if len(tokens) < MIN_NAME_TOKENS:
        tokens.extend(FALLBACK_NAME_TOKENS[len(tokens):])

    return "_".join(tokens[:MAX_NAME_TOKENS])


def normalize_character_name(name: Any, blueprint: Blueprint) -> str:
    """Lowercase, underscore-joined, 2-4 tokens.

    Names with fewer than two usable tokens are replaced by one derived from
    the identity card. Longer names are truncated.
    """
    tokens = _name_tokens(name)
    if len(tokens) < MIN_NAME_TOKENS:
        return derive_character_name(blueprint)
    return "_".join(tokens[:MAX_NAME_TOKENS])


def finalize_blueprint(raw: dict[str, Any]) -> Blueprint:
    """Strip metadata, attach a fresh id and normalize the character name."""
    blueprint = strip_metadata(raw)
    if not isinstance(blueprint, dict):
        blueprint = {}

    blueprint["id"] = str(uuid.uuid4())
    blueprint["character_name"] = normalize_character_name(
        blueprint.get("character_name"), blueprint
    )
    return blueprint


# =============================================================================
# Phase
# =============================================================================


def build_synthesis_payload(
    tree: AnalysisTree,
    known: KnownInfo | None = None,
    context: ContextSummary | None = None,
) -> dict[str, Any]:
    """Attach the known-info and context side channels to the filtered tree."""
    payload = dict(tree)
    if known is not None and not known.is_empty:
        payload["_knownInfo"] = known.populated()
    if context is not None:
        payload["_context"] = context.to_wire()
    return payload


class Synthesizer(AnalysisPhase):
    """Single-round conversion to the narrative blueprint."""

    name = "synthesize"
    system_prompt = SYNTHESIZER_SYSTEM_PROMPT

    def build_request(
        self,
        tree: AnalysisTree,
        known: KnownInfo | None = None,
        context: ContextSummary | None = None,
    ) -> list[ContentBlock]:
        payload = build_synthesis_payload(tree, known, context)
        text = SYNTHESIZER_USER_PROMPT.format(
            payload=json.dumps(payload, indent=2, ensure_ascii=False)
        )
        return [TextBlock(text)]

    def run(
        self,
        tree: AnalysisTree,
        known: KnownInfo | None = None,
        context: ContextSummary | None = None,
    ) -> Blueprint:
        """Synthesize the blueprint.

        Args:
            tree: Confidence-filtered analysis tree.
            known: User-declared facts, passed through verbatim.
            context: Batch context summary, when context detection ran.

        Returns:
            The finalized blueprint.

        Raises:
            EmptyResponseError: If the provider returned no text.
            ResponseFormatError: If no usable JSON object was returned.
        """
        self.logger.info(f"Synthesizing blueprint from {len(tree)} sections")
        raw = self._request_json(
            self.build_request(tree, known, context),
            self.settings.synthesize_max_tokens,
        )
        return finalize_blueprint(raw)
