"""
Resolution façade: motion policy, cache, failover and enrichment around a
single reverse-geocode provider.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Optional

from .base import GeocodeProvider, ReverseGeocodeProvider, SpeedLimitProvider
from .cache import ReverseGeocodeCache
from .classifier import ErrorClassifier
from .config import SpeedLimitPolicy
from .failover import FailoverController
from .models import GeoPoint, ResolvedAddress

logger = logging.getLogger(__name__)


class ReverseGeocodeService:
    """
    The object callers hold: one provider, its cache, its failover
    controller and its optional speed-limit enrichment.

    get_reverse_geocode() never raises for remote problems. None means "no
    result for now"; an empty address means "nothing at this location".
    """

    def __init__(
        self,
        provider: ReverseGeocodeProvider,
        fallback: Optional["ReverseGeocodeService"] = None,
        speed_limits: Optional[SpeedLimitProvider] = None,
        classifier: Optional[ErrorClassifier] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            provider: Primary provider
            fallback: Service to divert to after classified failures
            speed_limits: Enrichment source, used per the include_speed_limit policy
            classifier: Cooldown policy (built from the provider config if omitted)
            clock: Monotonic time source shared by cache and failover
        """
        self.provider = provider
        self.config = provider.config
        self.speed_limits = speed_limits
        self.failover = FailoverController(provider, fallback=fallback, classifier=classifier, clock=clock)

        self.cache: Optional[ReverseGeocodeCache] = None
        if self.config.cache_enabled:
            self.cache = ReverseGeocodeCache(
                name=self.config.name,
                max_size=self.config.cache_max_size,
                max_age_s=self.config.cache_max_age_s,
                trim_interval_s=self.config.cache_trim_interval_s,
                clock=clock,
            )

    @property
    def fallback(self) -> Optional["ReverseGeocodeService"]:
        return self.failover.fallback

    def get_name(self) -> str:
        return self.provider.get_name()

    def is_enabled(self) -> bool:
        return self.provider.is_enabled()

    def is_fast_operation(self) -> bool:
        return self.provider.is_fast_operation()

    def get_reverse_geocode(
        self,
        point: Optional[GeoPoint],
        locale: Optional[str] = None,
        may_cache: bool = False,
    ) -> Optional[ResolvedAddress]:
        """
        Resolve point to an address.

        Args:
            point: Location to resolve
            locale: Language code (defaults to the provider's configured locale)
            may_cache: True when the subject is stationary; allows cache use.
                False means "moving"

        Returns:
            ResolvedAddress (possibly empty) or None
        """
        if point is None or not point.is_valid():
            return None
        if not self.is_enabled():
            logger.debug(f"[{self.get_name()}] provider disabled")
            return None

        moving = not may_cache
        if moving and self.config.ignore_if_moving:
            return None

        if may_cache and self.cache is not None:
            cached = self.cache.get(point)
            if cached is not None:
                logger.debug(f"[{self.get_name()}] cache hit {point}")
                return cached

        start = time.perf_counter()
        resolution = self.failover.resolve(point, locale or self.config.locale, may_cache)
        address = resolution.address
        logger.debug(
            f"[{self.get_name()}] {point} resolved by '{resolution.provider}' "
            f"in {(time.perf_counter() - start) * 1000:.0f}ms"
        )
        if address is None:
            return None

        if resolution.from_primary and not address.is_empty() and self._should_enrich(moving):
            address = self._enrich(point, address)

        if may_cache and self.cache is not None:
            self.cache.put(point, address)
        return address

    def _should_enrich(self, moving: bool) -> bool:
        if self.speed_limits is None:
            return False
        policy = self.config.include_speed_limit
        return policy is SpeedLimitPolicy.ALWAYS or (policy is SpeedLimitPolicy.MOVING and moving)

    def _enrich(self, point: GeoPoint, address: ResolvedAddress) -> ResolvedAddress:
        """Attach the speed limit; a failed lookup leaves the address as-is."""
        try:
            kph = self.speed_limits.get_speed_limit_kph(point)
        except Exception as e:
            logger.warning(f"[{self.get_name()}] speed limit enrichment failed for {point}: {e}")
            return address
        if kph is None or not math.isfinite(kph) or kph < 0:
            return address
        return address.with_speed_limit(kph)

    def get_geocode(self, address: str, country: Optional[str] = None) -> Optional[GeoPoint]:
        """Forward-geocode through the provider, if it supports it."""
        if not isinstance(self.provider, GeocodeProvider):
            logger.warning(f"[{self.get_name()}] provider does not support forward geocoding")
            return None
        return self.provider.get_geocode(address, country)

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.get_name(),
            "enabled": self.is_enabled(),
            "failover_state": self.failover.state.value,
            "failover_remaining_s": self.failover.remaining_s(),
            "cache": self.cache.stats() if self.cache is not None else None,
        }

    def close(self) -> None:
        """Stop the cache trim thread and release HTTP sessions."""
        if self.cache is not None:
            self.cache.stop()
        self.provider.transport.close()
        transport = getattr(self.speed_limits, "transport", None)
        if transport is not None:
            transport.close()

    def __repr__(self) -> str:
        return f"ReverseGeocodeService(name={self.get_name()!r}, provider={type(self.provider).__name__})"
