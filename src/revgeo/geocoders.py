"""
Concrete reverse-geocode providers.

Each provider wraps one remote service (Google Geocoding v3, OpenStreetMap
Nominatim, OpenCage, GisGraphy) and implements the ReverseGeocodeProvider contract:
remote problems come back as a ClassifiedError, never as an exception.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any, Optional
from urllib.parse import urlparse

from .base import GeocodeProvider, ReverseGeocodeProvider
from .classifier import classify
from .errors import ProviderConfigError
from .models import ClassifiedError, ErrorKind, GeoPoint, ResolvedAddress
from .transport import build_url

logger = logging.getLogger(__name__)


def _clean(value: Any) -> Optional[str]:
    """Strip a text value, mapping blanks to None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _join(*parts: Optional[str], sep: str = ", ") -> str:
    return sep.join(p for p in parts if p)


def sign_url(url: str, signing_key: str) -> str:
    """
    Append a Google Maps "signature" parameter to url.

    The signature is the URL-safe base64 HMAC-SHA1 of the path and query,
    keyed by the URL-safe base64 decoded signing key.
    """
    parsed = urlparse(url)
    to_sign = f"{parsed.path}?{parsed.query}"
    try:
        key = base64.urlsafe_b64decode(signing_key)
    except ValueError as e:
        raise ValueError(f"Invalid URL signing key: {e}") from e
    digest = hmac.new(key, to_sign.encode("utf-8"), hashlib.sha1).digest()
    signature = base64.urlsafe_b64encode(digest).decode("ascii")
    return f"{url}&signature={signature}"


# =============================================================================
# Google Geocoding v3
# =============================================================================

GOOGLE_STATUS_KINDS: dict[str, ErrorKind] = {
    "OK": ErrorKind.OK,
    "ZERO_RESULTS": ErrorKind.ZERO_RESULTS,
    "OVER_QUERY_LIMIT": ErrorKind.RATE_LIMITED,
    "OVER_DAILY_LIMIT": ErrorKind.QUOTA_EXCEEDED,
    "620": ErrorKind.QUOTA_EXCEEDED,
    "REQUEST_DENIED": ErrorKind.REQUEST_DENIED,
    "INVALID_REQUEST": ErrorKind.INVALID_REQUEST,
    "UNKNOWN_ERROR": ErrorKind.UNKNOWN,
}


class GoogleGeocoder(ReverseGeocodeProvider, GeocodeProvider):
    """
    Google Geocoding API v3 (JSON).

    Plain API keys are sent as `key`. Premium client ids (starting with
    "gme-") are sent as `client` plus an optional `channel`, and every URL is
    signed with the `signature_key` option.
    """

    KIND = "google"

    DEFAULT_URL = "https://maps.googleapis.com/maps/api/geocode/json"
    CLIENT_ID_PREFIX = "gme-"
    DEFAULT_COUNTRY = "US"

    def _auth_params(self) -> dict[str, Any]:
        key = self.require_api_key()
        if key.startswith(self.CLIENT_ID_PREFIX):
            return {"client": key, "channel": self.config.option("channel")}
        return {"key": key}

    def _request_url(self, url: str, params: dict[str, Any]) -> str:
        full = build_url(url, {**params, **self._auth_params()})
        key = self.require_api_key()
        if key.startswith(self.CLIENT_ID_PREFIX):
            signing_key = self.config.option("signature_key")
            if not signing_key:
                raise ProviderConfigError(self.get_name(), "client id requires a 'signature_key' option")
            full = sign_url(full, signing_key)
        return full

    def _resolve(self, point: GeoPoint, locale: Optional[str]) -> ResolvedAddress | ClassifiedError:
        url = self._request_url(
            self.config.reverse_url or self.DEFAULT_URL,
            {
                "latlng": point.to_query(),
                "language": locale or self.config.locale,
            },
        )
        logger.debug(f"[{self.get_name()}] reverse-geocode {point}")

        payload, error = self._fetch_json(url, {}, timeout=self.config.timeout_s)
        if error is not None:
            return error
        if not isinstance(payload, dict):
            return self._error(ErrorKind.UNKNOWN, "parse", message="Unexpected response body")

        status = payload.get("status", "")
        kind = classify(status, GOOGLE_STATUS_KINDS)
        if kind.is_failure:
            return self._error(kind, status, message=payload.get("error_message"))

        results = payload.get("results") or []
        if kind == ErrorKind.ZERO_RESULTS or not results:
            return ResolvedAddress.empty()
        return self._parse_result(results[0])

    @staticmethod
    def _parse_result(result: dict[str, Any]) -> ResolvedAddress:
        """Build a ResolvedAddress from the first entry of `results`."""
        long_names: dict[str, str] = {}
        short_names: dict[str, str] = {}
        for component in result.get("address_components") or []:
            for comp_type in component.get("types") or []:
                long_names.setdefault(comp_type, component.get("long_name", ""))
                short_names.setdefault(comp_type, component.get("short_name", ""))

        full_address = _clean(result.get("formatted_address"))
        if not full_address:
            return ResolvedAddress.empty()

        street = _join(_clean(long_names.get("street_number")), _clean(long_names.get("route")), sep=" ")
        city = (
            _clean(long_names.get("locality"))
            or _clean(long_names.get("postal_town"))
            or _clean(long_names.get("sublocality"))
        )
        country = _clean(short_names.get("country"))

        return ResolvedAddress(
            full_address=full_address,
            street_address=street or None,
            city=city,
            state_province=_clean(short_names.get("administrative_area_level_1")),
            postal_code=_clean(long_names.get("postal_code")),
            country_code=country.upper() if country else None,
        )

    def get_geocode(self, address: str, country: Optional[str] = None) -> Optional[GeoPoint]:
        """Forward-geocode an address, biased towards `country` (default US)."""
        if not _clean(address):
            return None
        region = (country or self.config.option("country_bias") or self.DEFAULT_COUNTRY).lower()
        try:
            url = self._request_url(
                self.config.geocode_url or self.DEFAULT_URL,
                {"address": address.strip(), "region": region},
            )
        except ProviderConfigError as e:
            logger.warning(f"Forward geocode skipped: {e}")
            return None

        payload, error = self._fetch_json(url, {}, timeout=self.config.geocode_timeout_s)
        if error is not None:
            logger.warning(f"Forward geocode of '{address}' failed: {error}")
            return None

        if not isinstance(payload, dict):
            return None
        results = payload.get("results") or []
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            return None
        try:
            location = (results[0].get("geometry") or {}).get("location") or {}
            point = GeoPoint(float(location["lat"]), float(location["lng"]))
        except (AttributeError, KeyError, TypeError, ValueError):
            return None
        return point if point.is_valid() else None


# =============================================================================
# OpenStreetMap Nominatim
# =============================================================================

class NominatimGeocoder(ReverseGeocodeProvider):
    """
    OpenStreetMap Nominatim reverse geocoder.

    Nominatim's usage policy requires an identifying User-Agent; the
    `user_agent` option (or REVGEO_USER_AGENT) is sent with every request.
    """

    KIND = "nominatim"

    DEFAULT_URL = "https://nominatim.openstreetmap.org/reverse"
    DEFAULT_ZOOM = 18

    def _resolve(self, point: GeoPoint, locale: Optional[str]) -> ResolvedAddress | ClassifiedError:
        params = {
            "format": "jsonv2",
            "lat": point.lat_str,
            "lon": point.lon_str,
            "zoom": self.config.option("zoom", self.DEFAULT_ZOOM),
            "addressdetails": 1,
            "accept-language": locale or self.config.locale,
            "email": self.config.option("email"),
            # Hosted Nominatim services take an optional key
            "key": self.config.get_api_key(),
        }
        logger.debug(f"[{self.get_name()}] reverse-geocode {point}")

        payload, error = self._fetch_json(
            self.config.reverse_url or self.DEFAULT_URL,
            params,
            timeout=self.config.timeout_s,
        )
        if error is not None:
            return error
        if not isinstance(payload, dict):
            return self._error(ErrorKind.UNKNOWN, "parse", message="Unexpected response body")

        # "Unable to geocode" and similar: nothing at this location
        if payload.get("error"):
            logger.debug(f"[{self.get_name()}] no address for {point}: {payload.get('error')}")
            return ResolvedAddress.empty()

        return self._parse_result(payload, use_display_name=bool(self.config.option("use_result_address", False)))

    @staticmethod
    def _parse_result(payload: dict[str, Any], use_display_name: bool = False) -> ResolvedAddress:
        address = payload.get("address") or {}
        house = _clean(address.get("house_number"))
        road = _clean(address.get("road"))
        suburb = _clean(address.get("suburb"))
        city = _clean(address.get("city")) or _clean(address.get("town")) or _clean(address.get("village"))
        county = _clean(address.get("county"))
        state = _clean(address.get("state"))
        postcode = _clean(address.get("postcode"))
        country_name = _clean(address.get("country"))
        country_code = _clean(address.get("country_code"))
        country_code = country_code.upper() if country_code else None

        street = _join(house, road, sep=" ") or None

        parts: list[Optional[str]] = [street, suburb]
        if city:
            parts.append(city)
        elif county:
            parts.append(f"[{county}]")
        parts.append(_join(state, postcode, sep=" ") or None)
        if country_code and country_code != "US":
            parts.append(country_name or country_code)

        full_address = _join(*parts)
        display_name = _clean(payload.get("display_name"))
        if use_display_name and display_name:
            full_address = display_name

        return ResolvedAddress(
            full_address=full_address,
            street_address=street,
            city=city,
            state_province=state,
            postal_code=postcode,
            country_code=country_code,
        )


# =============================================================================
# OpenCage
# =============================================================================

OPENCAGE_STATUS_KINDS: dict[int, ErrorKind] = {
    200: ErrorKind.OK,
    400: ErrorKind.INVALID_REQUEST,
    401: ErrorKind.REQUEST_DENIED,
    402: ErrorKind.QUOTA_EXCEEDED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    410: ErrorKind.INVALID_REQUEST,
    429: ErrorKind.RATE_LIMITED,
}


class OpenCageGeocoder(ReverseGeocodeProvider, GeocodeProvider):
    """OpenCage geocoder (JSON), reverse and forward."""

    KIND = "opencage"

    DEFAULT_URL = "https://api.opencagedata.com/geocode/v1/json"
    DEFAULT_COUNTRY = "US"

    def _base_params(self) -> dict[str, Any]:
        return {
            "key": self.require_api_key(),
            "limit": 1,
            "no_annotations": 1,
        }

    def _status_error(self, payload: dict[str, Any]) -> Optional[ClassifiedError]:
        status = payload.get("status") or {}
        try:
            code = int(status.get("code", 200))
        except (TypeError, ValueError):
            return self._error(ErrorKind.UNKNOWN, status.get("code"), message=status.get("message"))
        kind = OPENCAGE_STATUS_KINDS.get(code, ErrorKind.UNKNOWN)
        if kind.is_failure:
            return self._error(kind, code, message=status.get("message"))
        return None

    def _resolve(self, point: GeoPoint, locale: Optional[str]) -> ResolvedAddress | ClassifiedError:
        params = {
            **self._base_params(),
            "q": point.to_query(),
            "language": locale or self.config.locale,
        }
        logger.debug(f"[{self.get_name()}] reverse-geocode {point}")

        payload, error = self._fetch_json(
            self.config.reverse_url or self.DEFAULT_URL,
            params,
            timeout=self.config.timeout_s,
            http_kinds=OPENCAGE_STATUS_KINDS,
        )
        if error is not None:
            return error
        if not isinstance(payload, dict):
            return self._error(ErrorKind.UNKNOWN, "parse", message="Unexpected response body")

        status_error = self._status_error(payload)
        if status_error is not None:
            return status_error

        results = payload.get("results") or []
        if not results:
            return ResolvedAddress.empty()
        return self._parse_result(results[0])

    @staticmethod
    def _parse_result(result: dict[str, Any]) -> ResolvedAddress:
        components = result.get("components") or {}
        street = _join(_clean(components.get("house_number")), _clean(components.get("road")), sep=" ")
        city = (
            _clean(components.get("city"))
            or _clean(components.get("town"))
            or _clean(components.get("village"))
        )
        country_code = _clean(components.get("country_code"))
        return ResolvedAddress(
            full_address=_clean(result.get("formatted")) or "",
            street_address=street or None,
            city=city,
            state_province=_clean(components.get("state_code")) or _clean(components.get("state")),
            postal_code=_clean(components.get("postcode")),
            country_code=country_code.upper() if country_code else None,
        )

    def get_geocode(self, address: str, country: Optional[str] = None) -> Optional[GeoPoint]:
        if not _clean(address):
            return None
        try:
            params = {
                **self._base_params(),
                "q": address.strip(),
                "countrycode": (country or self.config.option("country_bias") or self.DEFAULT_COUNTRY).lower(),
            }
        except ProviderConfigError as e:
            logger.warning(f"Forward geocode skipped: {e}")
            return None

        payload, error = self._fetch_json(
            self.config.geocode_url or self.DEFAULT_URL,
            params,
            timeout=self.config.geocode_timeout_s,
            http_kinds=OPENCAGE_STATUS_KINDS,
        )
        if error is None and not isinstance(payload, dict):
            return None
        if error is None:
            error = self._status_error(payload)
        if error is not None:
            logger.warning(f"Forward geocode of '{address}' failed: {error}")
            return None

        results = payload.get("results") or []
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            return None
        try:
            geometry = results[0].get("geometry") or {}
            point = GeoPoint(float(geometry["lat"]), float(geometry["lng"]))
        except (AttributeError, KeyError, TypeError, ValueError):
            return None
        return point if point.is_valid() else None


# =============================================================================
# GisGraphy v4
# =============================================================================

class GisGraphyGeocoder(ReverseGeocodeProvider):
    """
    GisGraphy v4 reverse geocoder, usually self-hosted.

    The endpoint is `reverse_url` when set, otherwise built from the `host`
    option (default localhost) and `use_ssl` (default True). A local host
    makes the provider a fast operation.
    """

    KIND = "gisgraphy"

    DEFAULT_HOST = "localhost"
    REVERSE_PATH = "/reversegeocoding/reversegeocode"
    LOCAL_HOSTS = ("localhost", "127.0.0.1")

    def _host(self) -> str:
        return str(self.config.option("host", self.DEFAULT_HOST))

    def _reverse_url(self) -> str:
        if self.config.reverse_url:
            return self.config.reverse_url
        scheme = "https" if self.config.option("use_ssl", True) else "http"
        return f"{scheme}://{self._host()}{self.REVERSE_PATH}"

    def is_fast_operation(self) -> bool:
        hostname = self._host().split(":", 1)[0].lower()
        return hostname in self.LOCAL_HOSTS or super().is_fast_operation()

    def _resolve(self, point: GeoPoint, locale: Optional[str]) -> ResolvedAddress | ClassifiedError:
        params = {
            "from": 1,
            "to": 1,
            "format": "json",
            "apikey": self.config.get_api_key(),
            "lat": point.lat_str,
            "lng": point.lon_str,
        }
        logger.debug(f"[{self.get_name()}] reverse-geocode {point}")

        payload, error = self._fetch_json(self._reverse_url(), params, timeout=self.config.timeout_s)
        if error is not None:
            return error
        if not isinstance(payload, dict):
            return self._error(ErrorKind.UNKNOWN, "parse", message="Unexpected response body")
        if payload.get("error"):
            return self._error(ErrorKind.UNKNOWN, "error", message=str(payload["error"])[:200])

        results = payload.get("result") or []
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            return ResolvedAddress.empty()
        return self._parse_result(results[0])

    @staticmethod
    def _clean_full_address(address: str) -> str:
        """Drop the redundant United States country names GisGraphy appends."""
        for marker in ("United States,", ", US"):
            pos = address.find(marker)
            if pos >= 0:
                address = f"{address[:pos].strip()} {address[pos + len(marker):].strip()}".strip()
        return address

    @classmethod
    def _parse_result(cls, result: dict[str, Any]) -> ResolvedAddress:
        street = _join(_clean(result.get("houseNumber")), _clean(result.get("streetName")), sep=" ") or None
        city = _clean(result.get("city"))
        state = _clean(result.get("state"))
        postcode = _clean(result.get("zipCode"))
        country_code = _clean(result.get("countryCode"))
        country_code = country_code.upper() if country_code else None

        full_address = _clean(result.get("formatedFull"))
        if full_address:
            full_address = cls._clean_full_address(full_address)
        else:
            region = _join(state, postcode, sep=" ") or None
            full_address = _join(street, city, region, country_code)

        return ResolvedAddress(
            full_address=full_address,
            street_address=street,
            city=city,
            state_province=state,
            postal_code=postcode,
            country_code=country_code,
        )
