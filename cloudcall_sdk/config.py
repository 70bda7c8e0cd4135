# cloudcall_sdk/config.py
# SPDX-License-Identifier: Apache-2.0
"""
Engine configuration.

Settings are read from the environment (prefix `CLOUDCALL_`) and from a
local `.env` file via pydantic-settings, so provider selection, endpoints,
credentials and polling bounds are validated once at the boundary instead
of being re-checked throughout the pipeline.

    settings = EngineSettings()                 # env / .env
    settings = EngineSettings(provider="cloudstack", endpoint="https://cs/client/api")

    dispatcher = build_dispatcher(settings)
    policy = build_poll_policy(settings)
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

import httpx
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cloudcall_sdk.rest.dispatcher import DEFAULT_USER_AGENT, HttpxDispatcher
from cloudcall_sdk.rest.jobs import ExponentialBackoff, FixedInterval, PollPolicy

LOG = logging.getLogger(__name__)


class EngineSettings(BaseSettings):
    """Central configuration for the engine and the built-in providers."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDCALL_",
        extra="ignore",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    provider: str = Field(
        default="cloudstack",
        min_length=1,
        description="Provider implementation to use (see providers.available_providers()).",
    )
    endpoint: Optional[str] = Field(
        default=None,
        description="Base API URI of the provider.",
    )
    identity: Optional[str] = Field(
        default=None,
        description="API key / user name.",
    )
    credential: Optional[SecretStr] = Field(
        default=None,
        description="Secret key / password. Never logged.",
    )

    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Transport timeout per request (seconds).",
    )
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        min_length=1,
        description="User-Agent sent with every request.",
    )
    follow_redirects: bool = Field(
        default=True,
        description="Follow HTTP redirects.",
    )

    poll_interval_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Interval between job status checks (initial interval for backoff).",
    )
    poll_backoff: Literal["fixed", "exponential"] = Field(
        default="fixed",
        description="Job poll interval policy.",
    )
    poll_backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Growth factor for exponential backoff.",
    )
    poll_max_interval_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Upper bound on a single backoff interval.",
    )
    max_polls: Optional[int] = Field(
        default=None,
        ge=1,
        description="Maximum status checks per job (unbounded when unset).",
    )
    max_poll_seconds: Optional[float] = Field(
        default=600.0,
        gt=0,
        description="Maximum time spent polling one job (seconds).",
    )

    vdc: Optional[str] = Field(
        default=None,
        description="Default virtual datacenter URI (vCloud).",
    )

    @field_validator("provider")
    @classmethod
    def _normalize_provider(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("endpoint")
    @classmethod
    def _strip_endpoint(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    def secret(self) -> Optional[str]:
        return self.credential.get_secret_value() if self.credential is not None else None


def build_poll_policy(settings: EngineSettings) -> PollPolicy:
    if settings.poll_backoff == "exponential":
        return ExponentialBackoff(
            settings.poll_interval_seconds,
            multiplier=settings.poll_backoff_multiplier,
            max_interval_s=settings.poll_max_interval_seconds,
        )
    if settings.poll_max_interval_seconds is not None:
        LOG.warning("poll_max_interval_seconds has no effect with poll_backoff=fixed")
    return FixedInterval(settings.poll_interval_seconds)


def build_dispatcher(
    settings: EngineSettings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> HttpxDispatcher:
    """HttpxDispatcher owning a client configured from `settings`."""
    return HttpxDispatcher(
        timeout_s=settings.http_timeout_seconds,
        user_agent=settings.user_agent,
        follow_redirects=settings.follow_redirects,
        transport=transport,
    )


__all__ = [
    "EngineSettings",
    "build_poll_policy",
    "build_dispatcher",
]
