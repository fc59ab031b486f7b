"""
Cache configuration loaded from the environment.
"""

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_ALIASES = {
    "memory": "memory",
    "remote": "remote",
    "redis": "remote",
}


class CacheConfig(BaseSettings):
    """Settings recognised by the cache composition root."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Backend selection
    backend_type: str = Field(
        default="memory",
        validation_alias=AliasChoices("CACHE_TYPE", "CACHE_BACKEND_TYPE"),
    )
    default_ttl: int = Field(default=0, ge=0)  # milliseconds, 0 = no expiry
    max_size: int = Field(default=1000, ge=1)

    # Remote backend
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "cache:"
    redis_socket_timeout: float = 5.0

    # Behaviour
    coalesce_requests: bool = False
    log_level: str = "info"

    @field_validator("backend_type", mode="before")
    @classmethod
    def _normalize_backend(cls, value: Optional[str]) -> str:
        if value is None or str(value).strip() == "":
            return "memory"
        key = str(value).strip().lower()
        if key not in BACKEND_ALIASES:
            raise ValueError(
                f"Unknown cache backend '{value}'; expected one of {sorted(BACKEND_ALIASES)}"
            )
        return BACKEND_ALIASES[key]


def get_config(**overrides) -> CacheConfig:
    """Load cache configuration, applying explicit overrides on top of the environment."""
    return CacheConfig(**overrides)
