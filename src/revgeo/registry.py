"""
Configuration-driven wiring of providers into services.

Fallbacks are built before the services that reference them, so every
service gets a fully constructed fallback. Cycles are rejected up front.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

from . import geocoders  # noqa: F401  (registers the provider KINDs)
from .base import ReverseGeocodeProvider, SpeedLimitProvider
from .config import GeocoderConfig, ProviderConfig, SpeedLimitPolicy
from .roads import GoogleRoads
from .service import ReverseGeocodeService
from .transport import HttpTransport

logger = logging.getLogger(__name__)


def _build_speed_limits(config: ProviderConfig, transport: Optional[HttpTransport]) -> Optional[SpeedLimitProvider]:
    if config.include_speed_limit is SpeedLimitPolicy.NEVER:
        return None
    key = config.roads_api_key or (config.get_api_key() if config.kind.lower() == "google" else None)
    if not key:
        logger.warning(f"[{config.name}] speed limits requested but no roads_api_key configured")
        return None
    return GoogleRoads(
        api_key=key,
        url=config.option("speed_limits_url"),
        timeout=config.timeout_s,
        transport=transport,
    )


def build_service(
    config: ProviderConfig,
    fallback: Optional[ReverseGeocodeService] = None,
    transport: Optional[HttpTransport] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ReverseGeocodeService:
    """
    Build one service from its configuration.

    Raises:
        ValueError: if config.kind is not a registered provider kind
    """
    kwargs = {"transport": transport} if transport is not None else {}
    provider = ReverseGeocodeProvider.from_config(config, **kwargs)
    service = ReverseGeocodeService(
        provider,
        fallback=fallback,
        speed_limits=_build_speed_limits(config, transport),
        clock=clock,
    )
    logger.info(
        f"Initialized {type(provider).__name__} '{config.name}' "
        f"(enabled={config.enabled}, cache={config.cache_max_size}, "
        f"failover={fallback.get_name() if fallback else None})"
    )
    return service


def _build_order(configs: list[ProviderConfig]) -> list[ProviderConfig]:
    """Order configs so every fallback precedes the services using it."""
    by_name: dict[str, ProviderConfig] = {}
    for config in configs:
        if config.name in by_name:
            raise ValueError(f"Duplicate provider name '{config.name}'")
        by_name[config.name] = config

    for config in configs:
        if config.failover is not None and config.failover not in by_name:
            raise ValueError(f"Provider '{config.name}' fails over to unknown provider '{config.failover}'")

    ordered: list[ProviderConfig] = []
    done: set[str] = set()
    for config in configs:
        chain: list[str] = []
        current: Optional[ProviderConfig] = config
        while current is not None and current.name not in done:
            if current.name in chain:
                cycle = " -> ".join(chain + [current.name])
                raise ValueError(f"Failover cycle: {cycle}")
            chain.append(current.name)
            current = by_name[current.failover] if current.failover else None
        for name in reversed(chain):
            ordered.append(by_name[name])
            done.add(name)
    return ordered


def build_services(
    configs: Iterable[ProviderConfig] | GeocoderConfig,
    transport: Optional[HttpTransport] = None,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, ReverseGeocodeService]:
    """
    Build every configured service, wiring fallbacks by name.

    Returns:
        Services keyed by provider name, in configuration order

    Raises:
        ValueError: for duplicate names, unknown fallbacks, fallback cycles
            or unknown provider kinds
    """
    if isinstance(configs, GeocoderConfig):
        configs = configs.providers
    configs = list(configs)

    services: dict[str, ReverseGeocodeService] = {}
    for config in _build_order(configs):
        fallback = services[config.failover] if config.failover else None
        services[config.name] = build_service(config, fallback=fallback, transport=transport, clock=clock)
    return {config.name: services[config.name] for config in configs}


def close_services(services: Iterable[ReverseGeocodeService] | dict[str, ReverseGeocodeService]) -> None:
    """Close every service (stops cache trim threads)."""
    if isinstance(services, dict):
        services = services.values()
    for service in services:
        service.close()
