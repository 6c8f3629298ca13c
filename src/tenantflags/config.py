from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Self

import structlog
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from tenantflags.security.rbac import Role

logger = structlog.get_logger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_CONFIG_DIR = PROJECT_ROOT / "config"
_CONFIG_PATH = _CONFIG_DIR / "settings.yaml"


def _load_yaml() -> dict[str, Any]:
    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            return yaml.safe_load(f) or {}
    return {}


def _load_env_profile() -> dict[str, Any]:
    """Load environment-specific YAML profile (dev / staging / production).

    Set ``TENANTFLAGS_ENV`` to one of ``dev``, ``staging``, ``production``
    (defaults to ``dev``).  The profile is deep-merged on top of the base
    settings YAML so that per-environment overrides take precedence.
    """
    env = os.getenv("TENANTFLAGS_ENV", "dev").lower()
    profile_path = _CONFIG_DIR / "environments" / f"{env}.yaml"
    if profile_path.exists():
        with open(profile_path) as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded environment profile: %s (%s)", env, profile_path)
        return data
    logger.debug("No environment profile found for '%s'", env)
    return {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (mutates *base*)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


_yaml = _deep_merge(_load_yaml(), _load_env_profile())


class CacheSettings(BaseSettings):
    ttl_seconds: float = 5.0
    max_size: int = 10_000


class EvaluationSettings(BaseSettings):
    store_timeout_seconds: float = 0.25


class TenantDirectorySettings(BaseSettings):
    base_url: str | None = None
    timeout_seconds: float = 2.0


class SeedSettings(BaseSettings):
    path: str | None = None
    actor: str = "system:seed"


class APIKeySettings(BaseModel):
    """An admin API key provisioned by its SHA-256 hash; the raw key is never configured."""

    key_hash: str
    actor: str
    role: Role
    description: str = ""

    @field_validator("key_hash")
    @classmethod
    def _sha256_hex(cls, value: str) -> str:
        value = value.strip().lower()
        if len(value) != 64 or any(c not in "0123456789abcdef" for c in value):
            raise ValueError("key_hash must be a hex-encoded SHA-256 digest")
        return value


class Settings(BaseSettings):
    model_config = {"env_prefix": "", "env_nested_delimiter": "__", "extra": "ignore"}

    environment: str = Field(default_factory=lambda: os.getenv("TENANTFLAGS_ENV", "dev").lower())
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool | None = None

    api_key: str = ""
    cors_origins: list[str] = Field(default=["http://localhost:3000"])
    admin_rate_limit_rpm: int = 120
    max_body_bytes: int = 64 * 1024

    cache: CacheSettings = Field(default_factory=lambda: CacheSettings(**_yaml.get("cache", {})))
    evaluation: EvaluationSettings = Field(
        default_factory=lambda: EvaluationSettings(**_yaml.get("evaluation", {}))
    )
    directory: TenantDirectorySettings = Field(
        default_factory=lambda: TenantDirectorySettings(**_yaml.get("directory", {}))
    )
    seed: SeedSettings = Field(default_factory=lambda: SeedSettings(**_yaml.get("seed", {})))
    rbac_keys: list[APIKeySettings] = Field(
        default_factory=lambda: [APIKeySettings(**k) for k in _yaml.get("rbac_keys") or []]
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def use_json_logs(self) -> bool:
        if self.json_logs is not None:
            return self.json_logs
        return self.is_production

    @model_validator(mode="after")
    def _validate_runtime(self) -> Self:
        if self.cache.ttl_seconds < 0:
            raise ValueError("cache.ttl_seconds must be >= 0")
        if self.evaluation.store_timeout_seconds <= 0:
            raise ValueError("evaluation.store_timeout_seconds must be > 0")
        if self.is_production and not self.api_key:
            logger.warning("API_KEY is not set; admin routes only accept RBAC-registered keys")
        if not self.directory.base_url:
            logger.debug("No tenant directory configured; override tenant names stay empty")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
