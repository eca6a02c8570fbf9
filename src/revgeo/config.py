"""
Per-provider configuration.

Every reverse-geocode service is built from its own ProviderConfig, so
cache limits, motion policy and failover timeouts never leak between
providers.
"""

from __future__ import annotations

import json
import logging
import os
from enum import StrEnum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigFileError
from .models import ErrorKind

logger = logging.getLogger(__name__)


class SpeedLimitPolicy(StrEnum):
    """When to enrich a resolved address with the posted speed limit."""
    NEVER = "never"
    ALWAYS = "always"
    MOVING = "moving"


_SPEED_LIMIT_ALIASES = {
    "": SpeedLimitPolicy.NEVER,
    "never": SpeedLimitPolicy.NEVER,
    "0": SpeedLimitPolicy.NEVER,
    "false": SpeedLimitPolicy.NEVER,
    "always": SpeedLimitPolicy.ALWAYS,
    "1": SpeedLimitPolicy.ALWAYS,
    "true": SpeedLimitPolicy.ALWAYS,
    "moving": SpeedLimitPolicy.MOVING,
    "2": SpeedLimitPolicy.MOVING,
}

# Names used by older property files for the failover timeouts
_COOLDOWN_ALIASES = {
    "overquerylimit": ErrorKind.RATE_LIMITED,
    "limitexceeded": ErrorKind.QUOTA_EXCEEDED,
    "requestdenied": ErrorKind.REQUEST_DENIED,
    "invalidrequest": ErrorKind.INVALID_REQUEST,
    "notauthorized": ErrorKind.FORBIDDEN,
    "notfound": ErrorKind.NOT_FOUND,
}


class ProviderConfig(BaseModel, extra="forbid", frozen=True):
    """Settings for one reverse-geocode provider and the service around it."""

    # Identity
    name: str = Field(min_length=1)
    kind: str = Field(min_length=1)  # registry key: google, nominatim, opencage
    enabled: bool = True
    always_fast: bool = False

    # Credentials
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None  # env var holding the key

    # Endpoints / transport
    reverse_url: Optional[str] = None
    geocode_url: Optional[str] = None
    timeout_s: float = Field(default=2.5, gt=0)
    geocode_timeout_s: float = Field(default=5.0, gt=0)
    locale: Optional[str] = None

    # Motion and enrichment policy
    ignore_if_moving: bool = False
    include_speed_limit: SpeedLimitPolicy = SpeedLimitPolicy.NEVER
    roads_api_key: Optional[str] = None

    # Cache (max size 0 disables caching entirely)
    cache_max_size: int = Field(default=0, ge=0)
    cache_max_age_s: float = Field(default=20 * 60, gt=0)
    cache_trim_interval_s: float = Field(default=10 * 60, ge=0)

    # Failover
    failover: Optional[str] = None
    failover_quiet: bool = False
    failover_timeouts: dict[ErrorKind, float] = Field(default_factory=dict)
    failover_default_timeout_s: Optional[float] = Field(default=None, gt=0)

    # Provider specific knobs (email, zoom, user_agent, channel, signature_key, ...)
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("include_speed_limit", mode="before")
    @classmethod
    def _parse_speed_limit(cls, value: Any) -> Any:
        if value is None or isinstance(value, bool):
            return SpeedLimitPolicy.ALWAYS if value else SpeedLimitPolicy.NEVER
        if isinstance(value, (str, int)):
            key = str(value).strip().lower()
            if key in _SPEED_LIMIT_ALIASES:
                return _SPEED_LIMIT_ALIASES[key]
        return value

    @field_validator("failover_timeouts", mode="before")
    @classmethod
    def _parse_failover_timeouts(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        parsed: dict[Any, Any] = {}
        for key, seconds in value.items():
            norm = str(key).strip().lower()
            parsed[_COOLDOWN_ALIASES.get(norm, norm)] = seconds
        return parsed

    @field_validator("failover_timeouts")
    @classmethod
    def _check_failover_timeouts(cls, value: dict[ErrorKind, float]) -> dict[ErrorKind, float]:
        for kind, seconds in value.items():
            if not kind.is_failure:
                raise ValueError(f"'{kind.value}' is not a failure kind and has no cooldown")
            if seconds <= 0:
                raise ValueError(f"cooldown for '{kind.value}' must be > 0")
        return value

    @model_validator(mode="after")
    def _check_failover_target(self) -> "ProviderConfig":
        if self.failover is not None and self.failover == self.name:
            raise ValueError(f"provider '{self.name}' cannot fail over to itself")
        return self

    @property
    def cache_enabled(self) -> bool:
        return self.cache_max_size > 0

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def get_api_key(self) -> Optional[str]:
        """Return the inline api_key, else the value of the api_key_env variable."""
        if self.api_key and self.api_key.strip():
            return self.api_key.strip()
        if self.api_key_env:
            val = os.getenv(self.api_key_env)
            if val and val.strip():
                return val.strip()
        return None


class GeocoderConfig(BaseModel, extra="forbid"):
    """Contents of a geocoder configuration file."""
    default: Optional[str] = None
    providers: list[ProviderConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_names(self) -> "GeocoderConfig":
        names = [p.name for p in self.providers]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate provider names: {dupes}")
        if self.default is not None and self.default not in names:
            raise ValueError(f"default provider '{self.default}' is not configured")
        return self

    def get(self, name: str) -> ProviderConfig:
        for provider in self.providers:
            if provider.name == name:
                return provider
        raise KeyError(name)


def load_config(path: Path | str) -> GeocoderConfig:
    """
    Load a JSON geocoder configuration file.

    Args:
        path: Path to a file of the form {"default": ..., "providers": [...]}

    Returns:
        Validated GeocoderConfig

    Raises:
        ConfigFileError: if the file cannot be read, parsed or validated
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf8") as fh:
            raw = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigFileError(path, [{"loc": [], "msg": str(e), "type": type(e).__name__}], original=e) from e

    try:
        config = GeocoderConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigFileError.from_validation_error(path, e) from e

    logger.info(f"Loaded {len(config.providers)} provider configs from {path}")
    return config
