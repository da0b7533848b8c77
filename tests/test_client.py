"""Tests for the Gemini client and the JSON decoder boundary (no real API calls)."""

from __future__ import annotations

import base64
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from google.genai import errors as genai_errors

from bioblueprint.ai.client import (
    AIRequestError,
    APIKeyMissingError,
    EmptyResponseError,
    GeminiClient,
    ImageBlock,
    ModelNotAvailableError,
    RateLimitError,
    ResponseFormatError,
    ResponseParseError,
    TextBlock,
    extract_json_object,
    generate_json,
)
from bioblueprint.config import AISettings, APIKeyNotFoundError

from conftest import FakeProvider


class FakeAPIError(genai_errors.APIError):
    """APIError with only a status code."""

    def __init__(self, code: int) -> None:
        Exception.__init__(self, f"HTTP {code}")
        self.code = code
        self.status = "ERROR"
        self.message = f"HTTP {code}"
        self.details = {}
        self.response = None

    def __str__(self) -> str:
        return self.message


def mock_response(text: str | None) -> MagicMock:
    response = MagicMock()
    response.text = text
    response.candidates = []
    response.usage_metadata.prompt_token_count = 120
    response.usage_metadata.candidates_token_count = 40
    return response


# =============================================================================
# JSON Extraction Tests
# =============================================================================


class TestExtractJsonObject:
    """Tests for extract_json_object()."""

    def test_plain_object(self) -> None:
        """Test a bare object is returned as-is."""
        assert extract_json_object('{"a": 1}') == '{"a": 1}'

    def test_skips_prose_and_fences(self) -> None:
        """Test surrounding prose and markdown fences are ignored."""
        text = 'Sure!\n```json\n{"a": {"b": [1, 2]}}\n```\nAnything else?'
        assert extract_json_object(text) == '{"a": {"b": [1, 2]}}'

    def test_braces_inside_strings(self) -> None:
        """Test braces and escaped quotes inside strings do not confuse matching."""
        text = 'x {"text": "a } b { \\" }", "n": 1} trailing }'
        assert extract_json_object(text) == '{"text": "a } b { \\" }", "n": 1}'

    def test_first_object_wins(self) -> None:
        """Test only the first complete object is returned."""
        assert extract_json_object('{"a": 1} {"b": 2}') == '{"a": 1}'

    def test_no_object_raises(self) -> None:
        """Test text without an object raises ResponseFormatError."""
        with pytest.raises(ResponseFormatError):
            extract_json_object("I cannot help with that.")

    def test_unbalanced_raises(self) -> None:
        """Test an object that never closes raises ResponseFormatError."""
        with pytest.raises(ResponseFormatError):
            extract_json_object('{"a": {"b": 1}')


class TestGenerateJson:
    """Tests for generate_json()."""

    def test_decodes_object(self, tmp_path: Path) -> None:
        """Test a valid response is decoded."""
        provider = FakeProvider([{"ok": True}])

        result = generate_json(provider, "scan", "sys", [TextBlock("hi")], 16000, tmp_path)

        assert result == {"ok": True}
        assert provider.calls[0][0] == "sys"
        assert provider.calls[0][2] == 16000

    @pytest.mark.parametrize("text", ["", "   \n"])
    def test_empty_response(self, text: str, tmp_path: Path) -> None:
        """Test blank text raises EmptyResponseError carrying the phase."""
        with pytest.raises(EmptyResponseError) as exc_info:
            generate_json(FakeProvider([text]), "context", "sys", [], 8000, tmp_path)
        assert exc_info.value.phase == "context"

    def test_no_json(self, tmp_path: Path) -> None:
        """Test prose-only text raises ResponseFormatError and saves nothing."""
        with pytest.raises(ResponseFormatError) as exc_info:
            generate_json(FakeProvider(["no json here"]), "scan", "sys", [], 100, tmp_path)

        assert not isinstance(exc_info.value, ResponseParseError)
        assert list(tmp_path.iterdir()) == []

    def test_malformed_json_saves_raw(self, tmp_path: Path) -> None:
        """Test malformed JSON is saved for diagnosis before raising."""
        raw = 'prefix {"a": 1,} suffix'

        with pytest.raises(ResponseParseError) as exc_info:
            generate_json(FakeProvider([raw]), "analyze", "sys", [], 100, tmp_path)

        saved = tmp_path / "analyze_raw_response.txt"
        assert exc_info.value.raw_path == saved
        assert saved.read_text(encoding="utf-8") == raw


# =============================================================================
# GeminiClient Tests
# =============================================================================


class TestGeminiClient:
    """Tests for GeminiClient with the SDK mocked out."""

    def test_initialization_with_key(self) -> None:
        """Test the SDK client is created with the given key."""
        with patch("bioblueprint.ai.client.genai") as mock_genai:
            client = GeminiClient(api_key="test-key-1234567890")

            mock_genai.Client.assert_called_once_with(api_key="test-key-1234567890")
            assert client.model_name == "gemini-2.5-pro"

    def test_initialization_without_key_raises(self) -> None:
        """Test a missing key surfaces as APIKeyMissingError."""
        with patch("bioblueprint.ai.client.genai"), patch(
            "bioblueprint.ai.client.get_api_key",
            side_effect=APIKeyNotFoundError("none"),
        ):
            with pytest.raises(APIKeyMissingError):
                GeminiClient()

    def test_infer_sends_one_user_turn(self) -> None:
        """Test blocks become parts of one user turn with the configured budget."""
        with patch("bioblueprint.ai.client.genai") as mock_genai:
            sdk = mock_genai.Client.return_value
            sdk.models.generate_content.return_value = mock_response('{"a": 1}')

            client = GeminiClient(api_key="k" * 30, settings=AISettings(model_name="m-1"))
            image = ImageBlock(base64.b64encode(b"\xff\xd8jpeg").decode("ascii"))
            text = client.infer("system", [TextBlock("hello"), image], 8000)

            assert text == '{"a": 1}'
            kwargs = sdk.models.generate_content.call_args.kwargs
            assert kwargs["model"] == "m-1"
            assert len(kwargs["contents"]) == 1
            assert kwargs["contents"][0].role == "user"
            assert len(kwargs["contents"][0].parts) == 2
            assert kwargs["config"].max_output_tokens == 8000
            assert kwargs["config"].system_instruction == "system"

    def test_none_text_becomes_empty(self) -> None:
        """Test a response without text yields an empty string."""
        with patch("bioblueprint.ai.client.genai") as mock_genai:
            sdk = mock_genai.Client.return_value
            sdk.models.generate_content.return_value = mock_response(None)

            client = GeminiClient(api_key="k" * 30)
            assert client.infer("s", [TextBlock("x")], 100) == ""

    def test_retries_server_errors(self) -> None:
        """Test 5xx errors are retried with backoff and then succeed."""
        with patch("bioblueprint.ai.client.genai") as mock_genai, patch(
            "bioblueprint.ai.client.time.sleep"
        ) as mock_sleep:
            sdk = mock_genai.Client.return_value
            sdk.models.generate_content.side_effect = [
                FakeAPIError(503),
                FakeAPIError(429),
                mock_response("ok"),
            ]

            client = GeminiClient(api_key="k" * 30, settings=AISettings(max_retries=3))

            assert client.infer("s", [TextBlock("x")], 100) == "ok"
            assert sdk.models.generate_content.call_count == 3
            assert mock_sleep.call_count == 2

    def test_rate_limit_exhausted(self) -> None:
        """Test persistent 429s raise RateLimitError after all attempts."""
        with patch("bioblueprint.ai.client.genai") as mock_genai, patch(
            "bioblueprint.ai.client.time.sleep"
        ):
            sdk = mock_genai.Client.return_value
            sdk.models.generate_content.side_effect = FakeAPIError(429)

            client = GeminiClient(api_key="k" * 30, settings=AISettings(max_retries=2))

            with pytest.raises(RateLimitError):
                client.infer("s", [TextBlock("x")], 100)
            assert sdk.models.generate_content.call_count == 3

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (401, APIKeyMissingError),
            (403, APIKeyMissingError),
            (404, ModelNotAvailableError),
            (400, AIRequestError),
        ],
    )
    def test_client_errors_not_retried(self, code: int, expected: type) -> None:
        """Test auth, missing-model and bad-request errors fail immediately."""
        with patch("bioblueprint.ai.client.genai") as mock_genai, patch(
            "bioblueprint.ai.client.time.sleep"
        ) as mock_sleep:
            sdk = mock_genai.Client.return_value
            sdk.models.generate_content.side_effect = FakeAPIError(code)

            client = GeminiClient(api_key="k" * 30)

            with pytest.raises(expected):
                client.infer("s", [TextBlock("x")], 100)
            assert sdk.models.generate_content.call_count == 1
            mock_sleep.assert_not_called()

    def test_backoff_grows_and_caps(self) -> None:
        """Test backoff roughly doubles per attempt and never exceeds 60s."""
        assert 0.75 <= GeminiClient._calculate_backoff(0) <= 1.25
        assert 3.0 <= GeminiClient._calculate_backoff(2) <= 5.0
        assert GeminiClient._calculate_backoff(10) <= 60.0
