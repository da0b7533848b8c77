"""Inference client for BioBlueprint.

This module is the only place that talks to the Gemini API. It defines the
provider contract used by the analysis phases (a system instruction plus an
ordered list of text and image blocks in, text out), the Gemini
implementation of that contract, and the decoder boundary that turns a
free-form response into one JSON object.

Transport failures (rate limits, server errors) are retried with exponential
backoff. Response failures (empty text, no JSON, malformed JSON) are never
retried: they propagate to the orchestrator and abort the run.
"""

from __future__ import annotations

import base64
import json
import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol, TypeVar, Union

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from bioblueprint.config import (
    AISettings,
    APIKeyNotFoundError,
    ConfigurationError,
    get_api_key,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Exceptions
# =============================================================================


class AIClientError(Exception):
    """Base exception for AI client errors."""

    pass


class APIKeyMissingError(AIClientError):
    """Raised when API key is not configured or rejected."""

    pass


class RateLimitError(AIClientError):
    """Raised when rate limit is exceeded.

    Attributes:
        retry_after: Suggested wait time in seconds, if known.
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ModelNotAvailableError(AIClientError):
    """Raised when the requested model is not available."""

    pass


class AIRequestError(AIClientError):
    """Generic AI request failure."""

    pass


class ResponseError(AIClientError):
    """Base class for responses that cannot be turned into a JSON object.

    Attributes:
        phase: Name of the analysis phase that issued the request.
    """

    def __init__(self, message: str, phase: str | None = None) -> None:
        super().__init__(message)
        self.phase = phase


class EmptyResponseError(ResponseError):
    """Raised when the provider returned no text content."""

    pass


class ResponseFormatError(ResponseError):
    """Raised when no JSON object can be located in the response text."""

    pass


class ResponseParseError(ResponseFormatError):
    """Raised when a JSON object was located but is malformed.

    Attributes:
        raw_path: Where the raw response text was saved, if saving worked.
    """

    def __init__(
        self,
        message: str,
        phase: str | None = None,
        raw_path: Path | None = None,
    ) -> None:
        super().__init__(message, phase=phase)
        self.raw_path = raw_path


# =============================================================================
# Content Blocks
# =============================================================================


@dataclass(frozen=True)
class TextBlock:
    """A text segment of a user turn."""

    text: str


@dataclass(frozen=True)
class ImageBlock:
    """An image segment of a user turn, as base64-encoded bytes."""

    data: str = field(repr=False)
    media_type: str = "image/jpeg"


ContentBlock = Union[TextBlock, ImageBlock]


class InferenceProvider(Protocol):
    """Anything that can answer one multimodal user turn with text."""

    def infer(
        self,
        system_instruction: str,
        blocks: list[ContentBlock],
        max_output_tokens: int,
    ) -> str:
        """Return the provider's text response (possibly empty)."""
        ...


# =============================================================================
# Response Data Class
# =============================================================================


@dataclass
class AIResponse:
    """Response from a generation request.

    Attributes:
        text: The generated text response.
        model: The model that generated the response.
        prompt_tokens: Number of tokens in the prompt (if available).
        completion_tokens: Number of tokens in the completion (if available).
        finish_reason: Why generation stopped (if available).
    """

    text: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    finish_reason: str | None = None


# =============================================================================
# Gemini Client
# =============================================================================


class GeminiClient:
    """Inference provider backed by Google's Gemini API.

    Handles authentication, request formatting and retries with exponential
    backoff. There is no request timeout: a hung call blocks its caller.

    Example:
        ```python
        client = GeminiClient()
        text = client.infer("You are...", [TextBlock("Describe this"), image], 8000)
        ```
    """

    def __init__(
        self,
        api_key: str | None = None,
        settings: AISettings | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Gemini API key. Resolved from configuration if None.
            settings: AI settings. Uses defaults if None.

        Raises:
            APIKeyMissingError: If no API key is available.
        """
        self.settings = settings or AISettings()

        if api_key is None:
            try:
                api_key = get_api_key()
            except (APIKeyNotFoundError, ConfigurationError) as e:
                raise APIKeyMissingError(str(e))

        self._client = genai.Client(api_key=api_key)
        logger.debug(f"Gemini client initialized with model: {self.settings.model_name}")

    @property
    def model_name(self) -> str:
        return self.settings.model_name

    def infer(
        self,
        system_instruction: str,
        blocks: list[ContentBlock],
        max_output_tokens: int,
    ) -> str:
        return self.generate(system_instruction, blocks, max_output_tokens).text

    def generate(
        self,
        system_instruction: str,
        blocks: list[ContentBlock],
        max_output_tokens: int,
    ) -> AIResponse:
        """Send one user turn and return the response with usage metadata.

        Args:
            system_instruction: System instruction for the model.
            blocks: Ordered text and image segments of the user turn.
            max_output_tokens: Output token budget.

        Returns:
            AIResponse; ``text`` is empty when the model produced no text.

        Raises:
            AIClientError: On transport failures after retries.
        """
        contents = [types.Content(role="user", parts=[self._to_part(b) for b in blocks])]
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            max_output_tokens=max_output_tokens,
            temperature=self.settings.temperature,
        )

        def do_generate() -> Any:
            return self._client.models.generate_content(
                model=self.settings.model_name,
                contents=contents,
                config=config,
            )

        response = self._with_retry(do_generate)
        return self._parse_response(response)

    # =========================================================================
    # Private Methods
    # =========================================================================

    @staticmethod
    def _to_part(block: ContentBlock) -> types.Part:
        if isinstance(block, ImageBlock):
            return types.Part.from_bytes(
                data=base64.b64decode(block.data),
                mime_type=block.media_type,
            )
        return types.Part.from_text(text=block.text)

    def _with_retry(self, func: Callable[[], T]) -> T:
        """Execute a request, retrying rate limits and server errors.

        Does NOT retry auth errors, missing models or bad requests.

        Args:
            func: Request to execute.

        Returns:
            Result of the request.

        Raises:
            Appropriate AIClientError subclass on failure.
        """
        retries = self.settings.max_retries

        for attempt in range(retries + 1):
            try:
                return func()

            except genai_errors.APIError as e:
                code = getattr(e, "code", None) or 0
                retryable = code == 429 or code >= 500

                if retryable and attempt < retries:
                    wait_time = self._calculate_backoff(attempt)
                    logger.warning(
                        f"Gemini returned {code}, waiting {wait_time:.1f}s "
                        f"(attempt {attempt + 1}/{retries + 1})"
                    )
                    time.sleep(wait_time)
                    continue

                raise self._map_api_error(e, code, attempts=attempt + 1)

        raise AIRequestError("Request failed for unknown reason")

    @staticmethod
    def _map_api_error(error: Exception, code: int, attempts: int) -> AIClientError:
        if code == 429:
            return RateLimitError(f"Rate limit exceeded after {attempts} attempts: {error}")
        if code in (401, 403):
            return APIKeyMissingError(f"Authentication failed - check API key: {error}")
        if code == 404:
            return ModelNotAvailableError(f"Model not available: {error}")
        if code >= 500:
            return AIRequestError(f"Server error after {attempts} attempts: {error}")
        return AIRequestError(f"Invalid request: {error}")

    @staticmethod
    def _calculate_backoff(attempt: int) -> float:
        """Exponential backoff (1s, 2s, 4s, ...) with ±25% jitter, capped at 60s."""
        delay = 1.0 * (2**attempt)
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return min(delay + jitter, 60.0)

    def _parse_response(self, response: Any) -> AIResponse:
        finish_reason = None
        candidates = getattr(response, "candidates", None) or []
        if candidates and getattr(candidates[0], "finish_reason", None) is not None:
            reason = candidates[0].finish_reason
            finish_reason = getattr(reason, "name", str(reason))

        prompt_tokens = None
        completion_tokens = None
        metadata = getattr(response, "usage_metadata", None)
        if metadata is not None:
            prompt_tokens = getattr(metadata, "prompt_token_count", None)
            completion_tokens = getattr(metadata, "candidates_token_count", None)

        return AIResponse(
            text=response.text or "",
            model=self.settings.model_name,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            finish_reason=finish_reason,
        )


# =============================================================================
# JSON Decoder Boundary
# =============================================================================


def extract_json_object(text: str) -> str:
    """Return the first balanced ``{...}`` object found in free-form text.

    Braces inside JSON strings (including escaped quotes) are ignored when
    matching. Markdown fences and surrounding prose are skipped.

    Args:
        text: Raw response text.

    Returns:
        The substring spanning the first complete JSON object.

    Raises:
        ResponseFormatError: If no balanced object is present.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)

    raise ResponseFormatError("No JSON object found in response")


def save_raw_response(text: str, phase: str, directory: Path) -> Path | None:
    """Write a raw provider response to disk for postmortem.

    Args:
        text: Raw response text.
        phase: Phase name, used in the file name.
        directory: Target directory.

    Returns:
        Path written, or None if writing failed.
    """
    path = directory / f"{phase}_raw_response.txt"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path
    except OSError as e:
        logger.warning(f"Could not save raw {phase} response: {e}")
        return None


def generate_json(
    provider: InferenceProvider,
    phase: str,
    system_instruction: str,
    blocks: list[ContentBlock],
    max_output_tokens: int,
    raw_response_dir: Path,
) -> dict[str, Any]:
    """Run one inference round and decode its JSON object.

    Args:
        provider: Inference provider to call.
        phase: Phase name for error messages and raw dumps.
        system_instruction: System instruction for the round.
        blocks: Ordered user-turn content.
        max_output_tokens: Output token budget.
        raw_response_dir: Where unparseable responses are saved.

    Returns:
        The decoded JSON object.

    Raises:
        EmptyResponseError: If the provider returned no text.
        ResponseFormatError: If no JSON object is present.
        ResponseParseError: If the located object is malformed.
    """
    text = provider.infer(system_instruction, blocks, max_output_tokens)
    if not text or not text.strip():
        raise EmptyResponseError(f"No text response from {phase}", phase=phase)

    try:
        candidate = extract_json_object(text)
    except ResponseFormatError:
        raise ResponseFormatError(f"No JSON found in {phase} response", phase=phase)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raw_path = save_raw_response(text, phase, raw_response_dir)
        logger.error(f"JSON parse error in {phase} response. Raw response saved to {raw_path}")
        raise ResponseParseError(
            f"Failed to parse {phase} response: {e}", phase=phase, raw_path=raw_path
        )

    return parsed
