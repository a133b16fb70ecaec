from __future__ import annotations

from urllib.parse import urlsplit

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from resilient_client.circuit_breaker import CircuitBreakerConfig

ENV_PREFIX = "RESILIENT_CLIENT_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(
        env_prefix=prefix,
        case_sensitive=False,
        frozen=True,
        extra="forbid",
    )


class ClientConfig(BaseSettings):
    """Configuration for one resilient client and its breaker.

    Values come from keyword arguments or ``RESILIENT_CLIENT_*`` environment
    variables. Durations are in milliseconds.
    """

    model_config = prefixed_settings_config(ENV_PREFIX)

    base_address: str
    timeout_ms: int = 5_000
    failure_threshold: int = 3
    cooldown_ms: int = 5_000
    max_response_bytes: int = 1_048_576

    @field_validator("base_address", mode="before")
    @classmethod
    def _normalize_base_address(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        parts = urlsplit(normalized)
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise ValueError("base_address must be an http(s) URL with a host")
        return normalized.rstrip("/")

    @model_validator(mode="after")
    def _validate_bounds(self) -> ClientConfig:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.cooldown_ms < 0:
            raise ValueError("cooldown_ms must be >= 0")
        if self.max_response_bytes <= 0:
            raise ValueError("max_response_bytes must be > 0")
        return self

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_ms / 1000.0

    def breaker_config(self) -> CircuitBreakerConfig:
        """Build the breaker configuration derived from these settings."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            cooldown=self.cooldown_seconds,
        )
