"""
Abstract base classes for the reverse-geocoding system.

These define the interfaces that all concrete providers must follow.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional, Type

from .classifier import classify_http_status
from .config import ProviderConfig
from .errors import ProviderConfigError, TransportError
from .models import ClassifiedError, ErrorKind, GeoPoint, ResolvedAddress
from .settings import settings
from .transport import HttpTransport

logger = logging.getLogger(__name__)


class ReverseGeocodeProvider(ABC):
    """
    Abstract base for reverse-geocode providers.

    Providers turn a GeoPoint into a ResolvedAddress by calling one remote
    service. resolve() never raises for remote problems: timeouts, HTTP
    errors, bad payloads and quota errors all come back as a
    ClassifiedError.

    Subclasses set KIND and are registered automatically, so a provider is
    built from configuration with ReverseGeocodeProvider.from_config().
    """

    # Registry key for each subclass (e.g., 'google', 'nominatim')
    KIND: ClassVar[str]

    _REGISTRY: ClassVar[dict[str, Type["ReverseGeocodeProvider"]]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        # Only register classes that define KIND themselves, not inherited
        if "KIND" in cls.__dict__:
            key = str(cls.KIND).lower()
            registered = ReverseGeocodeProvider._REGISTRY.get(key)
            if registered is not None and registered is not cls:
                raise RuntimeError(f"Duplicate provider KIND '{key}' for {cls.__name__}")
            ReverseGeocodeProvider._REGISTRY[key] = cls
            logger.debug(f"Registered provider: {cls.__name__} as '{key}'")

    def __init__(self, config: ProviderConfig, transport: Optional[HttpTransport] = None):
        """
        Args:
            config: Provider configuration
            transport: HTTP transport (a default one is created if omitted)
        """
        self.config = config
        self.transport = transport or HttpTransport(
            user_agent=config.option("user_agent", settings.user_agent)
        )

    @classmethod
    def from_config(cls, config: ProviderConfig, **kwargs: Any) -> "ReverseGeocodeProvider":
        """Build the provider registered for config.kind."""
        key = config.kind.lower()
        try:
            provider_cls = cls._REGISTRY[key]
        except KeyError as e:
            raise ValueError(
                f"Unknown provider kind '{config.kind}'. "
                f"Known kinds: {sorted(cls._REGISTRY.keys())}"
            ) from e
        return provider_cls(config, **kwargs)

    @classmethod
    def known_kinds(cls) -> list[str]:
        return sorted(cls._REGISTRY.keys())

    def get_name(self) -> str:
        return self.config.name

    def is_enabled(self) -> bool:
        return self.config.enabled

    def is_fast_operation(self) -> bool:
        """Advisory: True if resolution is quick enough for a hot path."""
        return self.config.always_fast

    def require_api_key(self) -> str:
        """
        Return the configured credential.

        Raises:
            ProviderConfigError: if no key is configured
        """
        key = self.config.get_api_key()
        if not key:
            raise ProviderConfigError(self.get_name(), "no API key configured")
        return key

    def resolve(self, point: GeoPoint, locale: Optional[str] = None) -> ResolvedAddress | ClassifiedError:
        """
        Resolve a point to an address.

        Args:
            point: A valid GeoPoint
            locale: Optional language code for the returned address

        Returns:
            ResolvedAddress (possibly empty) or a ClassifiedError
        """
        try:
            return self._resolve(point, locale)
        except Exception as e:
            # Reported once by the failover controller, through the classifier
            return ClassifiedError(
                kind=ErrorKind.UNKNOWN,
                provider=self.get_name(),
                raw_status=type(e).__name__,
                message=str(e)[:500],
            )

    @abstractmethod
    def _resolve(self, point: GeoPoint, locale: Optional[str]) -> ResolvedAddress | ClassifiedError:
        """Provider specific lookup. May raise; resolve() converts exceptions."""
        ...

    def _fetch_json(
        self,
        url: str,
        params: dict[str, Any],
        timeout: float,
        headers: Optional[dict[str, str]] = None,
        http_kinds: Optional[dict[int, ErrorKind]] = None,
    ) -> tuple[Any, Optional[ClassifiedError]]:
        """
        GET url and decode a JSON body.

        Args:
            url: Endpoint (may already carry a query string)
            params: Query parameters, None values are dropped
            timeout: Seconds before the call is abandoned
            headers: Extra request headers
            http_kinds: Provider-specific HTTP status kinds, checked first

        Returns:
            (payload, None) on a 2xx JSON answer, otherwise (None, error)
            with the failure already classified
        """
        try:
            response = self.transport.get(url, params=params, headers=headers, timeout=timeout)
        except TransportError as e:
            raw = "timeout" if e.timed_out else "transport"
            return None, self._error(ErrorKind.UNKNOWN, raw, message=str(e))

        if not response.ok:
            kind = (http_kinds or {}).get(response.status_code) or classify_http_status(response.status_code)
            return None, self._error(
                kind,
                response.status_code,
                http_status=response.status_code,
                message=response.text[:200],
            )

        try:
            return response.json(), None
        except ValueError as e:
            return None, self._error(
                ErrorKind.UNKNOWN,
                "parse",
                http_status=response.status_code,
                message=f"Invalid JSON: {e}",
            )

    def _error(
        self,
        kind: ErrorKind,
        raw_status: Any,
        http_status: Optional[int] = None,
        message: Optional[str] = None,
    ) -> ClassifiedError:
        return ClassifiedError(
            kind=kind,
            provider=self.get_name(),
            raw_status=str(raw_status),
            http_status=http_status,
            message=message,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.get_name()!r})"


class GeocodeProvider(ABC):
    """
    Abstract base for forward geocoders (address to point).

    Kept for interface symmetry with ReverseGeocodeProvider.
    """

    @abstractmethod
    def get_geocode(self, address: str, country: Optional[str] = None) -> Optional[GeoPoint]:
        """
        Geocode an address.

        Args:
            address: Free-form address
            country: Optional ISO country code used as a region bias

        Returns:
            GeoPoint or None if nothing was found
        """
        pass


class SpeedLimitProvider(ABC):
    """Abstract base for speed-limit lookups used to enrich addresses."""

    @abstractmethod
    def get_speed_limit_kph(self, point: GeoPoint) -> Optional[float]:
        """Return the posted speed limit in km/h, or None if unknown."""
        pass
