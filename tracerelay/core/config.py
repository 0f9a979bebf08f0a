"""
TraceRelay Configuration

Centralized configuration for the relay services with:
- Environment-based configuration
- Type-safe settings with Pydantic
- Construction-time validation returning a typed result
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels accepted in configuration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TracingConfig(BaseModel):
    """Configuration for sampling and span export."""
    sample_ratio: float = 1.0
    otlp_endpoint: str = "http://localhost:4318"
    export_enabled: bool = True
    buffer_size: int = 2048
    batch_size: int = 512
    flush_interval: float = 5.0  # seconds
    max_retries: int = 3
    retry_base_delay: float = 0.5  # seconds
    retry_max_delay: float = 8.0  # seconds
    export_timeout: float = 10.0  # seconds


class LoggingConfig(BaseModel):
    """Configuration for structured logging sinks."""
    level: LogLevel = LogLevel.INFO
    console_format: Literal["text", "json", "auto"] = "auto"
    seq_url: Optional[str] = "http://localhost:5341"
    seq_level: LogLevel = LogLevel.INFO
    seq_batch_size: int = 100
    logger_overrides: Dict[str, LogLevel] = Field(
        default_factory=lambda: {
            "uvicorn.access": LogLevel.WARNING,
            "uvicorn.error": LogLevel.WARNING,
        }
    )
    failure_report_interval: float = 30.0  # seconds


class RelayConfig(BaseModel):
    """Configuration for the broadcast relay."""
    hub_name: str = "ChatHub"
    send_timeout: float = 5.0  # seconds per attempt
    max_send_attempts: int = 3
    max_failures: int = 3


class TraceRelayConfig(BaseSettings):
    """
    Main TraceRelay Configuration

    Loads configuration from environment variables and/or config files.
    Environment variables are prefixed with TRACERELAY_
    (e.g., TRACERELAY_LOGGING__LEVEL=DEBUG).
    """

    service_name: str = "tracerelay.backend"
    role: Literal["backend", "edge"] = "backend"
    environment: Literal["development", "production"] = "development"

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 8000

    # Downstream backend, required for the edge role
    backend_url: Optional[str] = None

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    tracing: TracingConfig = Field(default_factory=TracingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)

    model_config = {
        "env_prefix": "TRACERELAY_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @field_validator("backend_url", mode="before")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty backend URL as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def console_format(self) -> str:
        """Resolve the console format, text for development and JSON otherwise."""
        if self.logging.console_format != "auto":
            return self.logging.console_format
        return "text" if self.environment == "development" else "json"

    @classmethod
    def from_file(cls, config_path: Path) -> "TraceRelayConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


@dataclass
class ConfigValidation:
    """Result of validating a configuration."""
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_config(config: TraceRelayConfig) -> ConfigValidation:
    """
    Validate a configuration before any component is built.

    Returns:
        ConfigValidation listing every problem found (empty when valid)
    """
    result = ConfigValidation()
    tracing = config.tracing

    if config.role == "edge":
        if not config.backend_url:
            result.errors.append("backend_url is required for the edge role")
        elif not _is_http_url(config.backend_url):
            result.errors.append(f"backend_url is not an http(s) URL: {config.backend_url}")

    if not 0.0 <= tracing.sample_ratio <= 1.0:
        result.errors.append("tracing.sample_ratio must be between 0.0 and 1.0")
    if tracing.export_enabled and not _is_http_url(tracing.otlp_endpoint):
        result.errors.append(f"tracing.otlp_endpoint is not an http(s) URL: {tracing.otlp_endpoint}")
    if tracing.buffer_size < 1:
        result.errors.append("tracing.buffer_size must be at least 1")
    if tracing.batch_size < 1:
        result.errors.append("tracing.batch_size must be at least 1")
    if tracing.flush_interval <= 0:
        result.errors.append("tracing.flush_interval must be positive")
    if tracing.max_retries < 0:
        result.errors.append("tracing.max_retries cannot be negative")

    if config.logging.seq_url and not _is_http_url(config.logging.seq_url):
        result.errors.append(f"logging.seq_url is not an http(s) URL: {config.logging.seq_url}")

    if config.relay.max_send_attempts < 1:
        result.errors.append("relay.max_send_attempts must be at least 1")
    if config.relay.max_failures < 1:
        result.errors.append("relay.max_failures must be at least 1")
    if config.relay.send_timeout <= 0:
        result.errors.append("relay.send_timeout must be positive")

    return result


# Global configuration instance (lazy loaded)
_config: Optional[TraceRelayConfig] = None


def get_config() -> TraceRelayConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = TraceRelayConfig()
    return _config


def set_config(config: TraceRelayConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
