"""
- Models: Value objects (GeoPoint, ResolvedAddress, ClassifiedError, ...)
- Config: Per-provider configuration and config-file loading
- Base classes: Provider interfaces
- Geocoders: Google, Nominatim and OpenCage providers
- Classifier: Error taxonomy and failover cooldowns
- Failover / Cache / Service: The resolution façade and its parts
- Registry: Building services from configuration
"""

from .models import (
    EMPTY_ADDRESS,
    ErrorKind,
    FailoverState,
    GeoPoint,
    ResolvedAddress,
    ClassifiedError,
    Resolution,
)

from .errors import (
    RevgeoError,
    ProviderConfigError,
    TransportError,
    ConfigFileError,
)

from .config import (
    SpeedLimitPolicy,
    ProviderConfig,
    GeocoderConfig,
    load_config,
)

from .base import (
    ReverseGeocodeProvider,
    GeocodeProvider,
    SpeedLimitProvider,
)

from .geocoders import (
    GoogleGeocoder,
    NominatimGeocoder,
    OpenCageGeocoder,
    GisGraphyGeocoder,
)

from .roads import GoogleRoads

from .classifier import (
    ErrorClassifier,
    classify,
    classify_http_status,
    DEFAULT_COOLDOWNS,
    QUIET_COOLDOWN,
)

from .transport import (
    HttpTransport,
    TransportResponse,
)

from .failover import FailoverController
from .cache import ReverseGeocodeCache
from .service import ReverseGeocodeService

from .registry import (
    build_service,
    build_services,
    close_services,
)

__all__ = [
    # Models
    "EMPTY_ADDRESS",
    "ErrorKind",
    "FailoverState",
    "GeoPoint",
    "ResolvedAddress",
    "ClassifiedError",
    "Resolution",
    # Errors
    "RevgeoError",
    "ProviderConfigError",
    "TransportError",
    "ConfigFileError",
    # Config
    "SpeedLimitPolicy",
    "ProviderConfig",
    "GeocoderConfig",
    "load_config",
    # Base classes
    "ReverseGeocodeProvider",
    "GeocodeProvider",
    "SpeedLimitProvider",
    # Providers
    "GoogleGeocoder",
    "NominatimGeocoder",
    "OpenCageGeocoder",
    "GisGraphyGeocoder",
    "GoogleRoads",
    # Classification
    "ErrorClassifier",
    "classify",
    "classify_http_status",
    "DEFAULT_COOLDOWNS",
    "QUIET_COOLDOWN",
    # Transport
    "HttpTransport",
    "TransportResponse",
    # Resolution
    "FailoverController",
    "ReverseGeocodeCache",
    "ReverseGeocodeService",
    # Registry
    "build_service",
    "build_services",
    "close_services",
]
