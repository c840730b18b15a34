"""
nebula_core/config.py — Client configuration

RequestPolicy holds the per-request transport policy.  The defaults
reproduce the repository protocol's historical behaviour: no timeout and
no retries, so a hung transport blocks and a failure surfaces at once.
Callers opt into a timeout and/or retries explicitly.

RepositorySettings extends RequestPolicy with the repository URL and debug
flag, and loads all of them from NEBULA_* environment variables or a .env
file.
"""

# NOTE: `from __future__ import annotations` is intentionally omitted,
# both classes are pydantic models.

from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def normalize_url(url: str) -> str:
    """Require http(s) and a trailing slash so that kind/id can be appended."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        raise ValueError(f"Repository URL must be http or https: {url!r}")
    if not url.endswith("/"):
        url += "/"
    return url


class RequestPolicy(BaseModel):
    """Timeout and retry policy applied to every dispatched request.

    Only serverDown failures (no response received) are retried; a server
    rejection is final.  Delays grow exponentially from retry_delay_ms and
    are capped at max_retry_delay_ms.
    """

    timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Per-request timeout. None waits indefinitely.",
    )
    max_retries: int = Field(
        default=0,
        ge=0,
        le=10,
        description="Retries after a serverDown failure. 0 disables retrying.",
    )
    retry_delay_ms: int = Field(
        default=500,
        ge=0,
        description="Delay before the first retry.",
    )
    max_retry_delay_ms: int = Field(
        default=10_000,
        ge=0,
        description="Upper bound for any single retry delay.",
    )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (0-based)."""
        delay_ms = min(self.retry_delay_ms * (2 ** attempt), self.max_retry_delay_ms)
        return delay_ms / 1000


class RepositorySettings(BaseSettings, RequestPolicy):
    """Environment-driven client settings."""

    model_config = SettingsConfigDict(
        env_prefix="NEBULA_",
        extra="ignore",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    url: str = Field(
        ...,
        description="Base address of the cloud repository.",
    )
    debug: bool = Field(
        default=False,
        description="Log wrapped exceptions before raising them.",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return normalize_url(v)

    def to_policy(self) -> RequestPolicy:
        return RequestPolicy.model_validate(
            self.model_dump(include=set(RequestPolicy.model_fields))
        )
