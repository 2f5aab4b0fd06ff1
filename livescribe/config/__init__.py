"""YAML configuration loader and validated engine settings for livescribe."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Literal
import logging

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "livescribe.yaml"


class LiveScribeConfig:
    """livescribe configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, looks for livescribe.yaml
                        in current directory and parent directories, and falls back
                        to built-in defaults when none is found.
        """
        if config_path:
            self.config_file = Path(config_path)
            if not self.config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_file}")
        else:
            self.config_file = self._find_config_file()

        if self.config_file is None:
            logger.warning(f"No {CONFIG_FILENAME} found, using built-in defaults")
            self.config: Dict[str, Any] = {}
        else:
            logger.info(f"Loading configuration from: {self.config_file}")
            self.config = self._load_config()

    @staticmethod
    def _find_config_file() -> Optional[Path]:
        current = Path.cwd()
        for directory in (current, *current.parents):
            candidate = directory / CONFIG_FILENAME
            if candidate.exists():
                return candidate
        return None

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        if not config:
            raise ValueError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        self._resolve_paths(config)
        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        for section, key in (('google_cloud', 'credentials_path'), ('logging', 'file_path')):
            value = config.get(section, {}).get(key) if isinstance(config.get(section), dict) else None
            if value and not os.path.isabs(value):
                config[section][key] = str(config_dir / value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'session.max_duration_seconds').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.config
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'audio.strategy')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_google_credentials_path(self) -> str:
        """Get Google credentials path - CRASHES if not found."""
        creds_path = self.get('google_cloud.credentials_path')
        if not creds_path:
            raise ValueError(f"Google credentials path not configured in {CONFIG_FILENAME}")

        creds_file = Path(creds_path)
        if not creds_file.exists():
            raise FileNotFoundError(f"Google credentials file not found: {creds_path}")

        return str(creds_file.absolute())

    def get_openai_api_key(self) -> str:
        """Get the OpenAI API key from config or OPENAI_API_KEY - CRASHES if not found."""
        api_key = self.get('openai.api_key') or os.environ.get('OPENAI_API_KEY')
        if not api_key:
            raise ValueError("OpenAI API key not configured. Set openai.api_key or OPENAI_API_KEY")
        return api_key


class AudioSettings(BaseModel):
    """Capture strategy and device parameters."""

    strategy: Literal["microphone", "continuous"] = "microphone"
    sample_rate: int = Field(default=16000, description="Audio sample rate")
    chunk_size: int = Field(default=1024, gt=0, description="Frames per capture buffer")
    channels: int = Field(default=1, description="Number of audio channels")
    device_index: Optional[int] = Field(default=None, description="Input device, None for default")

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        valid_rates = (8000, 16000, 22050, 44100, 48000)
        if v not in valid_rates:
            raise ValueError(f"Sample rate must be one of: {valid_rates}")
        return v

    @field_validator("channels")
    @classmethod
    def validate_channels(cls, v: int) -> int:
        if v not in (1, 2):
            raise ValueError("Channels must be 1 (mono) or 2 (stereo)")
        return v


class DispatchSettings(BaseModel):
    """Chunking and backend call policy."""

    backend: Literal["google", "whisper"] = "google"
    language: str = "en-US"
    flush_interval_seconds: float = Field(default=5.0, gt=0)
    chunk_timeout_seconds: float = Field(default=15.0, gt=0)
    min_chunk_bytes: int = Field(default=1000, ge=0)
    silence_threshold: float = Field(default=0.0, ge=0.0, le=1.0,
                                     description="RMS level below which a chunk counts as silence")
    retry_attempts: int = Field(default=2, ge=0)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)


DEFAULT_RESTART_DELAYS = {
    "no-speech": 1.0,
    "audio-capture": 1.0,
    "network": 3.0,
    "ended": 0.1,
}


class RecoverySettings(BaseModel):
    """Session duration cap and capture restart policy."""

    max_duration_seconds: float = Field(default=600.0, gt=0)
    max_restart_attempts: int = Field(default=10, ge=1)
    restart_reset_seconds: float = Field(default=30.0, ge=0)
    drain_timeout_seconds: float = Field(default=15.0, gt=0)
    restart_delays: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_RESTART_DELAYS))
    backoff_factor: float = Field(default=1.5, ge=1.0)
    max_restart_delay_seconds: float = Field(default=10.0, gt=0)

    @field_validator("restart_delays")
    @classmethod
    def validate_restart_delays(cls, v: Dict[str, float]) -> Dict[str, float]:
        unknown = set(v) - set(DEFAULT_RESTART_DELAYS)
        if unknown:
            raise ValueError(f"Unknown restart delay keys: {sorted(unknown)}")
        if any(delay < 0 for delay in v.values()):
            raise ValueError("Restart delays must be non-negative")
        return {**DEFAULT_RESTART_DELAYS, **v}


class EngineSettings(BaseModel):
    """All settings the engine needs, validated."""

    audio: AudioSettings = Field(default_factory=AudioSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    recovery: RecoverySettings = Field(default_factory=RecoverySettings)

    @classmethod
    def from_config(cls, config: LiveScribeConfig) -> "EngineSettings":
        """Build settings from the ``audio``, ``transcription`` and ``session`` sections."""
        try:
            return cls(
                audio=AudioSettings(**(config.get('audio') or {})),
                dispatch=DispatchSettings(**(config.get('transcription') or {})),
                recovery=RecoverySettings(**(config.get('session') or {})),
            )
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e}") from e
