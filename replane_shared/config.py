"""
Shared configuration management for the Replane SDK.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from replane_shared import __version__


DEFAULT_AGENT = f"replane-python/{__version__}"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="REPLANE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Observability
    enable_metrics: bool = Field(default=True)


class ClientSettings(BaseConfig):
    """Connection options for a client talking to a Replane server.

    Every field can be supplied through the environment, e.g.
    ``REPLANE_BASE_URL`` and ``REPLANE_SDK_KEY``.
    """

    base_url: str = Field(default="")
    sdk_key: str = Field(default="")

    # Timeouts and backoff, all in milliseconds
    request_timeout_ms: int = Field(default=2000, ge=0)
    retry_delay_ms: int = Field(default=200, ge=0)
    max_retry_delay_ms: int = Field(default=10_000, ge=0)
    inactivity_timeout_ms: int = Field(default=30_000, gt=0)
    initialization_timeout_ms: int = Field(default=5000, ge=0)

    # Evaluation scope
    environment_id: Optional[str] = Field(default=None)
    project_id: Optional[str] = Field(default=None)

    agent: str = Field(default=DEFAULT_AGENT)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def request_timeout(self) -> Optional[float]:
        """Connect/handshake bound in seconds, None when disabled."""
        if not self.request_timeout_ms:
            return None
        return self.request_timeout_ms / 1000.0

    @property
    def inactivity_timeout(self) -> float:
        return self.inactivity_timeout_ms / 1000.0

    @property
    def initialization_timeout(self) -> float:
        return self.initialization_timeout_ms / 1000.0


def get_settings(**overrides) -> ClientSettings:
    """Get client settings, layering keyword overrides over the environment."""
    return ClientSettings(**overrides)
