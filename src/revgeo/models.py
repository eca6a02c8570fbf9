"""
Core data models for reverse geocoding.

These immutable, frozen dataclasses serve as the contract between
providers, the failover controller, the cache and the resolution service.
"""

from __future__ import annotations

import math
import numbers
import re
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Optional


EMPTY_ADDRESS = ""

_POINT_SEPARATORS = re.compile(r"\s*[/,]\s*")


class ErrorKind(StrEnum):
    """Closed taxonomy of remote resolution outcomes."""
    OK = "ok"
    ZERO_RESULTS = "zero_results"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    REQUEST_DENIED = "request_denied"
    INVALID_REQUEST = "invalid_request"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"

    @property
    def is_failure(self) -> bool:
        return self not in (ErrorKind.OK, ErrorKind.ZERO_RESULTS)


class FailoverState(StrEnum):
    """State of a provider's failover controller."""
    NORMAL = "normal"
    DIVERTED = "diverted"


@dataclass(frozen=True)
class GeoPoint:
    """
    A latitude/longitude pair in degrees.

    Out-of-range points can be constructed so raw decoder output can be
    passed around, but they are never looked up or cached.
    """
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        """Check that both coordinates are finite real numbers within range."""
        lat, lon = self.latitude, self.longitude
        for value in (lat, lon):
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                return False
        if not (math.isfinite(lat) and math.isfinite(lon)):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0

    @property
    def lat_str(self) -> str:
        return f"{self.latitude:.5f}"

    @property
    def lon_str(self) -> str:
        return f"{self.longitude:.5f}"

    def to_query(self) -> str:
        """Render as '<lat>,<lon>' with 5 decimals (about 1.5 meters)."""
        return f"{self.lat_str},{self.lon_str}"

    @classmethod
    def parse(cls, text: str) -> "GeoPoint":
        """
        Parse a point from '<lat>/<lon>' or '<lat>,<lon>'.

        Raises:
            ValueError: if the text does not contain two numbers
        """
        parts = _POINT_SEPARATORS.split(str(text).strip())
        if len(parts) != 2:
            raise ValueError(f"Invalid GeoPoint '{text}', expected '<lat>/<lon>'")
        try:
            return cls(float(parts[0]), float(parts[1]))
        except ValueError as e:
            raise ValueError(f"Invalid GeoPoint '{text}': {e}") from e

    def __str__(self) -> str:
        return f"{self.lat_str}/{self.lon_str}"


@dataclass(frozen=True)
class ResolvedAddress:
    """
    The address resolved for a point.

    An empty full_address is a valid "no address available" answer and is
    distinct from an absent (None) result, which means no lookup succeeded.
    """
    full_address: str = EMPTY_ADDRESS
    street_address: Optional[str] = None
    city: Optional[str] = None
    state_province: Optional[str] = None
    postal_code: Optional[str] = None
    country_code: Optional[str] = None
    speed_limit_kph: Optional[float] = None

    def __post_init__(self):
        if self.speed_limit_kph is not None and not (
            math.isfinite(self.speed_limit_kph) and self.speed_limit_kph >= 0
        ):
            raise ValueError("speed_limit_kph must be a finite value >= 0")

    @classmethod
    def empty(cls) -> "ResolvedAddress":
        return cls(full_address=EMPTY_ADDRESS)

    def is_empty(self) -> bool:
        return not (self.full_address or "").strip()

    def with_speed_limit(self, kph: float) -> "ResolvedAddress":
        """Return a copy carrying the given speed limit."""
        return replace(self, speed_limit_kph=kph)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for output/serialization."""
        return {
            "full_address": self.full_address,
            "street_address": self.street_address,
            "city": self.city,
            "state_province": self.state_province,
            "postal_code": self.postal_code,
            "country_code": self.country_code,
            "speed_limit_kph": self.speed_limit_kph,
        }

    def __str__(self) -> str:
        return self.full_address


@dataclass(frozen=True)
class ClassifiedError:
    """A provider failure mapped onto the ErrorKind taxonomy."""
    kind: ErrorKind
    provider: str
    raw_status: str = ""
    http_status: Optional[int] = None
    message: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        return self.kind.is_failure

    def __str__(self) -> str:
        detail = f" ({self.message})" if self.message else ""
        return f"{self.provider}: {self.kind.value} [{self.raw_status}]{detail}"


@dataclass(frozen=True)
class Resolution:
    """
    Outcome of a failover-aware resolution.

    provider is the name of whoever produced the answer; diverted is True
    when the fallback answered instead of the primary.
    """
    address: Optional[ResolvedAddress]
    provider: str
    diverted: bool = False
    errors: list[ClassifiedError] = field(default_factory=list)

    @property
    def from_primary(self) -> bool:
        return self.address is not None and not self.diverted
