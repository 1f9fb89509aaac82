"""Configuration schema for the realtime console.

Defines Pydantic models for loading and validating console configuration
from YAML files and environment variables.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

SUPPORTED_SAMPLE_RATES = [8000, 16000, 24000, 48000]


class AudioConfig(BaseModel):
    """Local capture and playback configuration."""

    sample_rate: int = Field(
        default=24000,
        description="PCM16 mono sample rate shared by capture, playback and the service",
    )
    chunk_duration_ms: int = Field(
        default=100,
        ge=10,
        le=1000,
        description="Duration of each captured chunk forwarded to the service",
    )
    input_device: str | int | None = Field(
        default=None, description="Capture device name or index (None = system default)"
    )
    output_device: str | int | None = Field(
        default=None, description="Playback device name or index (None = system default)"
    )

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        """Validate that sample rate is one the service accepts for PCM16."""
        if v not in SUPPORTED_SAMPLE_RATES:
            raise ValueError(
                f"Audio sample_rate must be one of {SUPPORTED_SAMPLE_RATES}, got {v}"
            )
        return v

    @property
    def chunk_samples(self) -> int:
        """Number of samples per captured chunk."""
        return self.sample_rate * self.chunk_duration_ms // 1000


class PricingConfig(BaseModel):
    """Per-million-token rates used by the usage ledger.

    Cached input tokens are billed at a flat rate for both modalities by
    default; the two cached rates are kept separate so they can diverge.
    """

    text_input: float = Field(default=0.6, ge=0.0, description="Text input, per 1M tokens")
    audio_input: float = Field(default=10.0, ge=0.0, description="Audio input, per 1M tokens")
    text_output: float = Field(default=2.4, ge=0.0, description="Text output, per 1M tokens")
    audio_output: float = Field(default=20.0, ge=0.0, description="Audio output, per 1M tokens")
    cached_text: float = Field(default=0.3, ge=0.0, description="Cached text input, per 1M tokens")
    cached_audio: float = Field(
        default=0.3, ge=0.0, description="Cached audio input, per 1M tokens"
    )


class RealtimeConfig(BaseModel):
    """Remote realtime service connection configuration."""

    url: str = Field(
        default="ws://localhost:8081",
        description="Realtime relay or service WebSocket URL",
    )
    api_key: str | None = Field(
        default=None, description="API key sent as a bearer token (not needed for a relay)"
    )
    model: str | None = Field(
        default=None, description="Model query parameter appended to the URL when set"
    )
    voice: str = Field(default="alloy", description="Assistant voice")
    instructions: str = Field(default="", description="System instructions for the session")
    input_audio_transcription_model: str | None = Field(
        default="whisper-1",
        description="Model used to transcribe user audio (None disables transcription)",
    )
    session_ready_timeout_s: float = Field(
        default=10.0,
        gt=0.0,
        description="Maximum wait for the server's session.created acknowledgment",
    )
    max_message_size: int = Field(
        default=2**24, ge=2**16, description="Maximum inbound WebSocket message size"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that the URL uses a WebSocket scheme."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"Realtime url must start with ws:// or wss://, got '{v}'")
        return v


class SessionConfig(BaseModel):
    """Session orchestration configuration."""

    turn_mode: Literal["server_vad", "none"] = Field(
        default="server_vad",
        description="Turn detection: server_vad (automatic) or none (manual push-to-talk)",
    )
    timer_interval_s: float = Field(
        default=1.0, gt=0.0, description="Tick interval of the elapsed-session timer"
    )


class ConsoleConfig(BaseModel):
    """Root console configuration."""

    audio: AudioConfig = Field(default_factory=AudioConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "ConsoleConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "ConsoleConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(apply_env_overrides({}))


def apply_env_overrides(data: dict) -> dict:
    """Apply environment variable overrides to raw configuration data.

    Recognized variables: REALTIME_URL, OPENAI_API_KEY, REALTIME_VOICE,
    TURN_MODE and LOG_LEVEL.

    Args:
        data: Raw configuration mapping (modified in place)

    Returns:
        The same mapping, for chaining
    """
    import os

    if realtime_url := os.getenv("REALTIME_URL"):
        data.setdefault("realtime", {})["url"] = realtime_url

    if api_key := os.getenv("OPENAI_API_KEY"):
        data.setdefault("realtime", {})["api_key"] = api_key

    if voice := os.getenv("REALTIME_VOICE"):
        data.setdefault("realtime", {})["voice"] = voice

    if turn_mode := os.getenv("TURN_MODE"):
        data.setdefault("session", {})["turn_mode"] = turn_mode

    if log_level := os.getenv("LOG_LEVEL"):
        data["log_level"] = log_level

    return data
