"""Session configuration via environment variables."""

from __future__ import annotations

import re

from pydantic import field_validator
from pydantic_settings import BaseSettings


def sanitize_cookie_name(name: str) -> str:
    """Lower-case, turn spaces into dashes and keep only ``[a-z0-9_-]``."""
    return re.sub(r"[^a-z0-9_-]", "", name.lower().replace(" ", "-"))


class SessionSettings(BaseSettings):
    handler: str = "file"
    cookie_name: str = "sessionlock_session"
    cookie_domain: str = ""
    cookie_path: str = "/"
    cookie_secure: bool = False
    cookie_samesite: str = "lax"
    match_ip: bool = False
    save_path: str = ""
    expiration: int = 7200  # 0 = until the browser closes
    gc_maxlifetime: int = 1440  # remote TTL when expiration is 0
    key_prefix: str = "sessionlock:"
    lock_retry_interval: float | None = None  # seconds, None = handler default
    lock_max_retries: int | None = None
    time_to_update: int = 300  # id rotation period, 0 disables
    regenerate_destroy: bool = False
    dynamodb_table: str = "sessionlock_sessions"
    dynamodb_endpoint: str = ""  # For local DynamoDB
    dynamodb_region: str = "us-west-2"

    model_config = {"env_prefix": "SESSION_", "case_sensitive": False}

    @field_validator("cookie_name")
    @classmethod
    def _clean_cookie_name(cls, value: str) -> str:
        cleaned = sanitize_cookie_name(value)
        if not cleaned:
            raise ValueError("session cookie name cannot be empty")
        return cleaned

    @field_validator("expiration", "gc_maxlifetime", "time_to_update")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("lock_max_retries")
    @classmethod
    def _positive_retries(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("lock_max_retries must be at least 1")
        return value

    @property
    def ttl(self) -> int:
        """Lifetime of a stored session in remote caches."""
        return self.expiration or self.gc_maxlifetime


settings: SessionSettings | None = None


def get_settings() -> SessionSettings:
    global settings
    if settings is None:
        settings = SessionSettings()
    return settings


def override_settings(s: SessionSettings) -> None:
    """For testing: inject a SessionSettings instance."""
    global settings
    settings = s
