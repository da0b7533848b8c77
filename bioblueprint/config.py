"""Configuration and API key management for BioBlueprint.

Settings are grouped by concern (inference, pipeline, preprocessing) and
loaded from a YAML file at the platform config path. Every key is optional.
The Gemini API key is kept separately by :class:`APIKeyManager`.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import platform
import secrets
from enum import Enum
from pathlib import Path

import yaml
from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


class APIKeyNotFoundError(Exception):
    """Raised when API key is not configured or cannot be retrieved."""

    pass


# =============================================================================
# Enums
# =============================================================================


class KeyStorageBackend(str, Enum):
    """Backend options for storing the Gemini API key.

    Attributes:
        ENV: Read from environment variable (GEMINI_API_KEY)
        ENCRYPTED_FILE: Store in Fernet-encrypted local file
    """

    ENV = "env"
    ENCRYPTED_FILE = "encrypted_file"


# =============================================================================
# Configuration Models
# =============================================================================


class AISettings(BaseModel):
    """Settings for the inference provider.

    Attributes:
        model_name: The Gemini model to use
        temperature: Sampling temperature (0.0-2.0)
        context_max_tokens: Output budget for context classification
        scan_max_tokens: Output budget for the quick scan
        analyze_max_tokens: Output budget for deep analysis
        synthesize_max_tokens: Output budget for synthesis
        max_retries: Transport retries on rate limits and server errors
    """

    model_name: str = "gemini-2.5-pro"
    temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    context_max_tokens: int = Field(default=8000, ge=100, le=100000)
    scan_max_tokens: int = Field(default=16000, ge=100, le=100000)
    analyze_max_tokens: int = Field(default=16000, ge=100, le=100000)
    synthesize_max_tokens: int = Field(default=16000, ge=100, le=100000)
    max_retries: int = Field(default=3, ge=0, le=10)


class PipelineSettings(BaseModel):
    """Thresholds and limits for the orchestration pipeline.

    Attributes:
        default_confidence_threshold: Generic filter threshold
        synthesis_confidence_threshold: Threshold applied before synthesis
        focus_topic_threshold: Cross-references above this steer deep analysis
        raw_response_dir: Where unparseable provider responses are saved
        task_retention_seconds: How long task records are kept
        max_workers: Concurrent background analysis runs
        max_images_per_job: Upload batch ceiling
        max_image_bytes: Per-file upload ceiling
    """

    default_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    synthesis_confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    focus_topic_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    raw_response_dir: Path = Field(default_factory=lambda: Path("/tmp"))
    task_retention_seconds: float = Field(default=3600.0, gt=0)
    max_workers: int = Field(default=2, ge=1, le=32)
    max_images_per_job: int = Field(default=50, ge=1)
    max_image_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)


class PreprocessSettings(BaseModel):
    """Image normalization budgets.

    Attributes:
        max_dimension: Longest side after resizing, in pixels
        max_size_bytes: Target encoded size
        quality: Initial JPEG quality
        min_quality: Quality floor for re-compression
        quality_step: Quality decrement per re-compression round
    """

    max_dimension: int = Field(default=1024, ge=64, le=8000)
    max_size_bytes: int = Field(default=200 * 1024, ge=1024)
    quality: int = Field(default=80, ge=1, le=95)
    min_quality: int = Field(default=30, ge=1, le=95)
    quality_step: int = Field(default=10, ge=1, le=50)

    @model_validator(mode="after")
    def validate_quality_range(self) -> "PreprocessSettings":
        """Validate that the quality floor does not exceed the starting quality."""
        if self.min_quality > self.quality:
            raise ValueError("min_quality must not exceed quality")
        return self


class AppConfig(BaseModel):
    """Main application configuration.

    Can be loaded from and saved to YAML files.

    Attributes:
        ai: Inference settings
        pipeline: Orchestration thresholds and limits
        preprocess: Image normalization budgets
        key_storage_backend: How the API key is stored
        encrypted_key_file_path: Path to encrypted key file (if using that backend)
        datasets_root: Directory holding named datasets
    """

    ai: AISettings = Field(default_factory=AISettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    preprocess: PreprocessSettings = Field(default_factory=PreprocessSettings)
    key_storage_backend: KeyStorageBackend = KeyStorageBackend.ENV
    encrypted_key_file_path: Path | None = None
    datasets_root: Path = Field(default_factory=lambda: Path("datasets"))

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the platform-appropriate default configuration path.

        Returns:
            Path to the default config file location:
            - Windows: %APPDATA%/bioblueprint/config.yaml
            - macOS: ~/Library/Application Support/bioblueprint/config.yaml
            - Linux: ~/.config/bioblueprint/config.yaml
        """
        system = platform.system()

        if system == "Windows":
            base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        elif system == "Darwin":
            base = Path.home() / "Library" / "Application Support"
        else:
            xdg_config = os.environ.get("XDG_CONFIG_HOME")
            base = Path(xdg_config) if xdg_config else Path.home() / ".config"

        return base / "bioblueprint" / "config.yaml"

    @classmethod
    def load_from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from a YAML file.

        Args:
            path: Path to the YAML configuration file.

        Returns:
            Loaded AppConfig instance.

        Raises:
            ConfigurationError: If file cannot be read or parsed.
        """
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration: {e}")

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must contain a mapping")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    def save_to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file.

        Creates parent directories if they don't exist.

        Args:
            path: Path to save the configuration file.

        Raises:
            ConfigurationError: If file cannot be written.
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            data = self.model_dump(mode="json")
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration: {e}")


# =============================================================================
# API Key Manager
# =============================================================================


class APIKeyManager:
    """Stores and loads the Gemini API key.

    The key is sent with every batch of personal images, so it is kept out
    of config files and logs. ``ENV`` reads ``GEMINI_API_KEY`` (``store_key``
    only sets it for the running process). ``ENCRYPTED_FILE`` keeps a Fernet
    token whose key is derived from the host and user names, so the file is
    useless when copied to another machine or account.

    Attributes:
        backend: Where the key lives.
        encrypted_file_path: Token file for the ``ENCRYPTED_FILE`` backend.
    """

    ENV_VAR_NAME = "GEMINI_API_KEY"
    MIN_KEY_LENGTH = 10
    MAX_KEY_LENGTH = 256

    def __init__(
        self,
        backend: KeyStorageBackend,
        encrypted_file_path: Path | None = None,
    ) -> None:
        """Create a manager for one backend.

        Raises:
            ConfigurationError: If ``ENCRYPTED_FILE`` is chosen without a path.
        """
        if backend == KeyStorageBackend.ENCRYPTED_FILE and encrypted_file_path is None:
            raise ConfigurationError("The encrypted_file backend needs encrypted_key_file_path")

        self.backend = backend
        self.encrypted_file_path = encrypted_file_path

    @classmethod
    def from_config(cls, config: AppConfig) -> "APIKeyManager":
        return cls(config.key_storage_backend, config.encrypted_key_file_path)

    def _check_format(self, key: str) -> None:
        if not isinstance(key, str) or not key:
            raise ConfigurationError("API key is empty")
        if key != key.strip():
            raise ConfigurationError("API key has surrounding whitespace")
        if not self.MIN_KEY_LENGTH <= len(key) <= self.MAX_KEY_LENGTH:
            raise ConfigurationError(
                f"API key length must be {self.MIN_KEY_LENGTH}-{self.MAX_KEY_LENGTH} characters"
            )

    def _cipher(self) -> Fernet:
        user = os.environ.get("USER") or os.environ.get("USERNAME") or "default"
        seed = f"bioblueprint:{platform.node()}:{platform.machine()}:{user}"
        return Fernet(base64.urlsafe_b64encode(hashlib.sha256(seed.encode("utf-8")).digest()))

    def store_key(self, key: str) -> None:
        """Validate and persist a key.

        Raises:
            ConfigurationError: If the key is malformed or cannot be written.
        """
        self._check_format(key)

        if self.backend == KeyStorageBackend.ENV:
            os.environ[self.ENV_VAR_NAME] = key
            return

        token = self._cipher().encrypt(key.encode("utf-8"))
        try:
            self.encrypted_file_path.parent.mkdir(parents=True, exist_ok=True)
            self.encrypted_file_path.write_bytes(token)
            if os.name == "posix":
                self.encrypted_file_path.chmod(0o600)
        except OSError as e:
            raise ConfigurationError(f"Cannot write key file {self.encrypted_file_path}: {e}")
        logger.info(f"API key stored in {self.encrypted_file_path}")

    def retrieve_key(self) -> str | None:
        """Load the key, or None when nothing is stored.

        Raises:
            ConfigurationError: If the key file exists but cannot be read or
                decrypted on this machine.
        """
        if self.backend == KeyStorageBackend.ENV:
            return os.environ.get(self.ENV_VAR_NAME)

        path = self.encrypted_file_path
        if not path.exists():
            return None
        try:
            return self._cipher().decrypt(path.read_bytes()).decode("utf-8")
        except InvalidToken:
            raise ConfigurationError(
                f"Cannot decrypt {path}; it was written on another machine or account"
            )
        except OSError as e:
            raise ConfigurationError(f"Cannot read key file {path}: {e}")

    def delete_key(self) -> None:
        """Forget the stored key. The token file is scrubbed before removal.

        Raises:
            ConfigurationError: If the key file cannot be removed.
        """
        if self.backend == KeyStorageBackend.ENV:
            os.environ.pop(self.ENV_VAR_NAME, None)
            return

        path = self.encrypted_file_path
        if not path.exists():
            return
        try:
            path.write_bytes(secrets.token_bytes(path.stat().st_size or 64))
            path.unlink()
        except OSError as e:
            raise ConfigurationError(f"Cannot remove key file {path}: {e}")

    def is_key_configured(self) -> bool:
        try:
            key = self.retrieve_key()
        except ConfigurationError:
            return False
        return bool(key) and len(key) >= self.MIN_KEY_LENGTH


# =============================================================================
# Module-Level Functions
# =============================================================================


def get_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a path (or the default path) or return defaults.

    A missing or corrupted default config falls back to defaults. An
    explicitly given path must exist and parse.

    Args:
        path: Optional explicit config file.

    Returns:
        Loaded or default AppConfig instance.

    Raises:
        ConfigurationError: If an explicit path cannot be loaded.
    """
    if path is not None:
        return AppConfig.load_from_yaml(path)

    config_path = AppConfig.get_default_config_path()
    if config_path.exists():
        try:
            return AppConfig.load_from_yaml(config_path)
        except ConfigurationError as e:
            logger.warning(f"Ignoring unreadable config at {config_path}: {e}")
            return AppConfig()

    return AppConfig()


def get_api_key(config: AppConfig | None = None) -> str:
    """Retrieve the configured API key.

    Args:
        config: Configuration to use. Loads the default if None.

    Returns:
        The API key.

    Raises:
        APIKeyNotFoundError: If no key is configured.
    """
    config = config or get_config()
    key = APIKeyManager.from_config(config).retrieve_key()
    if not key:
        raise APIKeyNotFoundError(
            f"No API key configured. Set {APIKeyManager.ENV_VAR_NAME} or store an encrypted key."
        )

    return key
