"""Environment-driven settings for the orchestrator.

Every field can be set through an ``IGNITION_``-prefixed environment variable
or a ``.env`` file:

    IGNITION_LOG_LEVEL=DEBUG
    IGNITION_AWAIT_TIMEOUT=30
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["IgnitionSettings"]


class IgnitionSettings(BaseSettings):
    """Settings shared by the orchestrator, its job engine and logging.

    Fields
    log_level            : Structlog log level
    json_logs            : JSON output; None picks JSON when stdout is not a tty
    trace_initialization : Log each component's initialization at info level
    await_timeout        : Default limit in seconds for the job barrier
    """

    model_config = SettingsConfigDict(
        env_prefix="IGNITION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    json_logs: Optional[bool] = None
    trace_initialization: bool = False
    await_timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level {value!r}")
        return level
