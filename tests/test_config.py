"""Tests for configuration loading and API key storage."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from bioblueprint.config import (
    AISettings,
    APIKeyManager,
    APIKeyNotFoundError,
    AppConfig,
    ConfigurationError,
    KeyStorageBackend,
    PipelineSettings,
    PreprocessSettings,
    get_api_key,
    get_config,
)

VALID_KEY = "AIzaSyTestKey1234567890"


class TestSettings:
    """Tests for configuration defaults and validation."""

    def test_defaults(self) -> None:
        """Test the documented defaults."""
        config = AppConfig()

        assert config.ai.context_max_tokens == 8000
        assert config.ai.scan_max_tokens == 16000
        assert config.pipeline.default_confidence_threshold == 0.6
        assert config.pipeline.synthesis_confidence_threshold == 0.8
        assert config.pipeline.focus_topic_threshold == 0.7
        assert config.pipeline.max_images_per_job == 50
        assert config.pipeline.max_image_bytes == 10 * 1024 * 1024
        assert config.pipeline.task_retention_seconds == 3600.0
        assert config.preprocess.max_dimension == 1024
        assert config.preprocess.max_size_bytes == 200 * 1024

    def test_quality_floor_above_start_rejected(self) -> None:
        """Test min_quality may not exceed quality."""
        with pytest.raises(ValidationError):
            PreprocessSettings(quality=40, min_quality=60)

    @pytest.mark.parametrize("value", [-0.1, 1.5])
    def test_threshold_range(self, value: float) -> None:
        """Test thresholds outside [0, 1] are rejected."""
        with pytest.raises(ValidationError):
            PipelineSettings(synthesis_confidence_threshold=value)

    def test_retries_bounded(self) -> None:
        """Test retry counts are bounded."""
        with pytest.raises(ValidationError):
            AISettings(max_retries=50)


class TestYamlConfig:
    """Tests for YAML loading and saving."""

    def test_round_trip(self, tmp_path: Path) -> None:
        """Test a saved config loads back unchanged."""
        config = AppConfig(
            ai=AISettings(model_name="gemini-test", temperature=0.2),
            pipeline=PipelineSettings(raw_response_dir=tmp_path / "raw", max_workers=4),
            datasets_root=tmp_path / "sets",
        )
        path = tmp_path / "nested" / "config.yaml"

        config.save_to_yaml(path)

        assert AppConfig.load_from_yaml(path) == config

    def test_partial_file_uses_defaults(self, tmp_path: Path) -> None:
        """Test keys missing from the file keep their defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("pipeline:\n  max_workers: 3\n", encoding="utf-8")

        config = AppConfig.load_from_yaml(path)

        assert config.pipeline.max_workers == 3
        assert config.pipeline.synthesis_confidence_threshold == 0.8
        assert config.ai.model_name == "gemini-2.5-pro"

    def test_empty_file(self, tmp_path: Path) -> None:
        """Test an empty file gives the default configuration."""
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")

        assert AppConfig.load_from_yaml(path) == AppConfig()

    @pytest.mark.parametrize(
        "content",
        [
            "ai: [unclosed",
            "- just\n- a list\n",
            "pipeline:\n  focus_topic_threshold: 7\n",
        ],
    )
    def test_invalid_files(self, tmp_path: Path, content: str) -> None:
        """Test bad YAML, non-mapping documents and bad values raise ConfigurationError."""
        path = tmp_path / "config.yaml"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(ConfigurationError):
            AppConfig.load_from_yaml(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing explicit file raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="not found"):
            get_config(tmp_path / "absent.yaml")

    def test_default_path_fallbacks(self, tmp_path: Path) -> None:
        """Test a missing or corrupt default file falls back to defaults."""
        default = tmp_path / "config.yaml"

        with patch.object(AppConfig, "get_default_config_path", return_value=default):
            assert get_config() == AppConfig()

            default.write_text("ai: [unclosed", encoding="utf-8")
            assert get_config() == AppConfig()

            default.write_text("ai:\n  model_name: from-default\n", encoding="utf-8")
            assert get_config().ai.model_name == "from-default"

    def test_default_path_location(self) -> None:
        """Test the default path ends in the package's config file."""
        path = AppConfig.get_default_config_path()
        assert path.parts[-2:] == ("bioblueprint", "config.yaml")


class TestAPIKeyManager:
    """Tests for API key storage backends."""

    def test_env_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the env backend reads, stores and deletes GEMINI_API_KEY."""
        monkeypatch.setenv("GEMINI_API_KEY", "placeholder")
        monkeypatch.delenv("GEMINI_API_KEY")
        manager = APIKeyManager(KeyStorageBackend.ENV)

        assert manager.retrieve_key() is None
        manager.store_key(VALID_KEY)
        assert manager.retrieve_key() == VALID_KEY
        assert manager.is_key_configured()

        manager.delete_key()
        assert manager.retrieve_key() is None

    def test_encrypted_file_round_trip(self, tmp_path: Path) -> None:
        """Test the encrypted backend never writes the key in clear text."""
        key_file = tmp_path / "keys" / "api_key.enc"
        manager = APIKeyManager(KeyStorageBackend.ENCRYPTED_FILE, key_file)

        manager.store_key(VALID_KEY)

        assert VALID_KEY.encode() not in key_file.read_bytes()
        assert manager.retrieve_key() == VALID_KEY

        manager.delete_key()
        assert not key_file.exists()
        assert manager.retrieve_key() is None

    def test_encrypted_file_requires_path(self) -> None:
        """Test the encrypted backend needs a file path."""
        with pytest.raises(ConfigurationError):
            APIKeyManager(KeyStorageBackend.ENCRYPTED_FILE)

    def test_corrupt_key_file(self, tmp_path: Path) -> None:
        """Test an undecryptable file raises and reports no configured key."""
        key_file = tmp_path / "api_key.enc"
        key_file.write_bytes(b"not a fernet token")
        manager = APIKeyManager(KeyStorageBackend.ENCRYPTED_FILE, key_file)

        with pytest.raises(ConfigurationError, match="decrypt"):
            manager.retrieve_key()
        assert not manager.is_key_configured()

    @pytest.mark.parametrize("key", ["", "short", " " + VALID_KEY, "x" * 300])
    def test_invalid_key_format(self, key: str) -> None:
        """Test empty, short, padded and overlong keys are rejected."""
        with pytest.raises(ConfigurationError):
            APIKeyManager(KeyStorageBackend.ENV).store_key(key)

    def test_get_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test get_api_key returns the stored key or raises when absent."""
        config = AppConfig()

        monkeypatch.setenv("GEMINI_API_KEY", VALID_KEY)
        assert get_api_key(config) == VALID_KEY

        monkeypatch.delenv("GEMINI_API_KEY")
        with pytest.raises(APIKeyNotFoundError):
            get_api_key(config)
