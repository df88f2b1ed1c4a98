"""Configuration for the assistant and workflow-service HTTP clients."""

from __future__ import annotations

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AssistantSettings(BaseSettings):
    """Settings for talking to the workflow builder back end.

    Automatically reads from environment variables (or a .env file).

    Environment variables:
      COPILOT_BASE_URL          — Back end origin (default: http://localhost:3000)
      COPILOT_API_KEY           — Optional bearer token
      COPILOT_MODEL             — Preferred model ("<configId>:<model>" or bare name)
      COPILOT_CHAT_TIMEOUT      — Chat request timeout, seconds (default: 120)
      COPILOT_ANALYSIS_TIMEOUT  — test_analysis / node_diagnosis timeout (default: 180)
      COPILOT_TEST_TIMEOUT      — Test trigger timeout (default: 180)
      COPILOT_PROVIDER_TIMEOUT  — Provider list / status poll timeout (default: 30)
      COPILOT_POLL_INTERVAL     — Seconds between test status polls (default: 2.0)
      COPILOT_POLL_MAX_FAILURES — Consecutive poll failures before giving up (default: 3)
      COPILOT_PROVIDER_RETRIES  — Retries for the provider fetch (default: 2)
      COPILOT_RETRY_BACKOFF     — Fixed delay between retries, seconds (default: 1.0)
      COPILOT_LOG_LEVEL         — Root log level for the CLI (default: WARNING)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    base_url: str = Field(default="http://localhost:3000", validation_alias="COPILOT_BASE_URL")
    api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="COPILOT_API_KEY",
        repr=False,
    )
    model: str | None = Field(default=None, validation_alias="COPILOT_MODEL")
    chat_timeout: float = Field(default=120.0, validation_alias="COPILOT_CHAT_TIMEOUT")
    analysis_timeout: float = Field(default=180.0, validation_alias="COPILOT_ANALYSIS_TIMEOUT")
    test_timeout: float = Field(default=180.0, validation_alias="COPILOT_TEST_TIMEOUT")
    provider_timeout: float = Field(default=30.0, validation_alias="COPILOT_PROVIDER_TIMEOUT")
    poll_interval: float = Field(default=2.0, validation_alias="COPILOT_POLL_INTERVAL")
    poll_max_failures: int = Field(default=3, validation_alias="COPILOT_POLL_MAX_FAILURES")
    provider_retries: int = Field(default=2, validation_alias="COPILOT_PROVIDER_RETRIES")
    retry_backoff: float = Field(default=1.0, validation_alias="COPILOT_RETRY_BACKOFF")
    log_level: str = Field(default="WARNING", validation_alias="COPILOT_LOG_LEVEL")

    @field_validator("base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: object) -> str:
        return str(v).rstrip("/")

    @field_validator("model", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: object) -> str | None:
        """Treat an empty COPILOT_MODEL as unset (server default model)."""
        if not v:
            return None
        return str(v)

    @field_validator(
        "chat_timeout", "analysis_timeout", "test_timeout", "provider_timeout",
        "poll_interval", "retry_backoff",
    )
    @classmethod
    def clamp_non_negative(cls, v: float) -> float:
        return max(0.0, v)

    @field_validator("poll_max_failures")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        return max(1, v)

    @field_validator("provider_retries")
    @classmethod
    def clamp_retries(cls, v: int) -> int:
        return max(0, v)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_level(cls, v: object) -> str:
        return str(v).upper()

    @property
    def headers(self) -> dict[str, str]:
        h: dict[str, str] = {"Content-Type": "application/json"}
        key = self.api_key.get_secret_value()
        if key:
            h["Authorization"] = f"Bearer {key}"
        return h

    # Keep from_env() as a convenience alias for call-sites that use it explicitly.
    @classmethod
    def from_env(cls) -> AssistantSettings:
        return cls()
