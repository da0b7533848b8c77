"""Common plumbing for a single-round inference phase."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from bioblueprint.ai.client import (
    ContentBlock,
    InferenceProvider,
    ResponseFormatError,
    generate_json,
)
from bioblueprint.config import AISettings

M = TypeVar("M", bound=BaseModel)


class AnalysisPhase:
    """One inference round: shape a request, call the provider, decode JSON.

    Subclasses set ``name`` and ``system_prompt`` and build their own
    content blocks.
    """

    name: str = "phase"
    system_prompt: str = ""

    def __init__(
        self,
        provider: InferenceProvider,
        settings: AISettings | None = None,
        raw_response_dir: Path | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.provider = provider
        self.settings = settings or AISettings()
        self.raw_response_dir = raw_response_dir or Path("/tmp")
        self.logger = logger or logging.getLogger(__name__)

    def _request_json(self, blocks: list[ContentBlock], max_output_tokens: int) -> dict[str, Any]:
        return generate_json(
            self.provider,
            phase=self.name,
            system_instruction=self.system_prompt,
            blocks=blocks,
            max_output_tokens=max_output_tokens,
            raw_response_dir=self.raw_response_dir,
        )

    def _validate(self, model: type[M], data: dict[str, Any]) -> M:
        """Validate decoded JSON against the phase's result model.

        Raises:
            ResponseFormatError: If the object does not have the expected shape.
        """
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ResponseFormatError(
                f"{self.name} response does not match the expected schema: {e}",
                phase=self.name,
            )
