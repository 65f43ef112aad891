"""Environment-backed configuration.

Settings are grouped like the rest of the app (config.ai, config.server,
config.system) and loaded once at startup. A missing backend credential is
a startup failure, never a mid-call surprise.
"""

from dataclasses import dataclass
from typing import Dict, Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.constants import BridgeConstants

_ENV = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    case_sensitive=False,
    extra="ignore",
)


class ConfigurationError(RuntimeError):
    """Required configuration is missing or invalid."""


class AiSettings(BaseSettings):
    """Realtime backend settings."""

    openai_api_key: str
    openai_realtime_url: str = "wss://api.openai.com/v1/realtime"
    openai_model: str = "gpt-4o-realtime-preview-2024-10-01"
    openai_beta_header: Optional[str] = "realtime=v1"

    ai_connect_timeout: float = Field(default=BridgeConstants.AI_CONNECT_TIMEOUT_S, gt=0)
    handshake_ack_timeout_ms: int = Field(default=BridgeConstants.HANDSHAKE_ACK_TIMEOUT_MS, ge=0)

    agent_prompt_file: Optional[str] = None
    voice: str = "shimmer"
    temperature: float = Field(default=0.8, ge=0.0, le=2.0)

    model_config = _ENV

    @field_validator("openai_api_key")
    @classmethod
    def _require_key(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def realtime_url(self) -> str:
        """Backend WebSocket URL including the model query."""
        return f"{self.openai_realtime_url}?model={self.openai_model}"

    def headers(self) -> Dict[str, str]:
        """Authentication headers for the backend WebSocket."""
        headers = {"Authorization": f"Bearer {self.openai_api_key}"}
        if self.openai_beta_header:
            headers["OpenAI-Beta"] = self.openai_beta_header
        return headers


class ServerSettings(BaseSettings):
    """HTTP/WebSocket listener settings."""

    host: str = "0.0.0.0"
    port: int = Field(default=3000, gt=0, lt=65536)
    media_stream_path: str = "/media-stream"
    connect_message: str = "Connecting you to Genie. Please wait."

    # Host used in the stream URL; falls back to the request Host header
    public_host: Optional[str] = None

    model_config = _ENV

    @field_validator("media_stream_path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"


class SystemSettings(BaseSettings):
    """Logging and diagnostics settings."""

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_file_dir: Optional[str] = "logs"
    diagnostic_log_capacity: int = Field(default=BridgeConstants.DIAGNOSTIC_LOG_CAPACITY, gt=0)

    model_config = _ENV


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    ai: AiSettings
    server: ServerSettings
    system: SystemSettings


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        name = ".".join(str(part) for part in item.get("loc", ())) or "?"
        problems.append(f"{name.upper()}: {item.get('msg')}")
    return "; ".join(problems)


def load_config(env_file: Optional[str] = ".env") -> Config:
    """Load and validate all settings groups.

    Args:
        env_file: Optional dotenv file to read in addition to the environment

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If a required setting is missing or invalid
    """
    try:
        return Config(
            ai=AiSettings(_env_file=env_file),
            server=ServerSettings(_env_file=env_file),
            system=SystemSettings(_env_file=env_file),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {_describe(e)}") from e
