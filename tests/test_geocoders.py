from __future__ import annotations

import base64
import hashlib
import hmac
from urllib.parse import parse_qs, urlparse

import pytest
from conftest import FakeTransport, http_response, make_config, timeout_error

from revgeo.base import ReverseGeocodeProvider
from revgeo.geocoders import GisGraphyGeocoder, GoogleGeocoder, NominatimGeocoder, OpenCageGeocoder, sign_url
from revgeo.models import ClassifiedError, ErrorKind, GeoPoint, ResolvedAddress
from revgeo.transport import TransportResponse

POINT = GeoPoint(46.1733, 21.2937)

GOOGLE_OK = {
    "status": "OK",
    "results": [
        {
            "formatted_address": "1600 Amphitheatre Pkwy, Mountain View, CA 94043, USA",
            "address_components": [
                {"long_name": "1600", "short_name": "1600", "types": ["street_number"]},
                {"long_name": "Amphitheatre Parkway", "short_name": "Amphitheatre Pkwy", "types": ["route"]},
                {"long_name": "Mountain View", "short_name": "Mountain View", "types": ["locality", "political"]},
                {"long_name": "California", "short_name": "CA", "types": ["administrative_area_level_1", "political"]},
                {"long_name": "United States", "short_name": "US", "types": ["country", "political"]},
                {"long_name": "94043", "short_name": "94043", "types": ["postal_code"]},
            ],
        }
    ],
}


def _google(transport, **kwargs):
    kwargs.setdefault("api_key", "test-key")
    return GoogleGeocoder(make_config("google", kind="google", **kwargs), transport=transport)


def _query(call) -> dict:
    url = call["url"]
    params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
    params.update({k: str(v) for k, v in call["params"].items() if v is not None})
    return params


# =============================================================================
# Registry
# =============================================================================

def test_registry_knows_builtin_kinds():
    assert {"google", "nominatim", "opencage", "gisgraphy"} <= set(ReverseGeocodeProvider.known_kinds())


def test_from_config_dispatches_on_kind():
    provider = ReverseGeocodeProvider.from_config(make_config("osm", kind="Nominatim"), transport=FakeTransport())
    assert isinstance(provider, NominatimGeocoder)


def test_from_config_unknown_kind():
    with pytest.raises(ValueError) as excinfo:
        ReverseGeocodeProvider.from_config(make_config("x", kind="bing"))
    assert "google" in str(excinfo.value)


# =============================================================================
# Google
# =============================================================================

def test_google_parses_address():
    transport = FakeTransport(GOOGLE_OK)

    address = _google(transport).resolve(POINT, "en")

    assert isinstance(address, ResolvedAddress)
    assert address.full_address.startswith("1600 Amphitheatre Pkwy")
    assert address.street_address == "1600 Amphitheatre Parkway"
    assert address.city == "Mountain View"
    assert address.state_province == "CA"
    assert address.postal_code == "94043"
    assert address.country_code == "US"

    params = _query(transport.calls[0])
    assert params["latlng"] == "46.17330,21.29370"
    assert params["language"] == "en"
    assert params["key"] == "test-key"
    assert transport.calls[0]["timeout"] == 2.5


def test_google_zero_results_is_empty_address():
    address = _google(FakeTransport({"status": "ZERO_RESULTS", "results": []})).resolve(POINT)

    assert isinstance(address, ResolvedAddress)
    assert address.is_empty()


@pytest.mark.parametrize(
    "status, kind",
    [
        ("OVER_QUERY_LIMIT", ErrorKind.RATE_LIMITED),
        ("OVER_DAILY_LIMIT", ErrorKind.QUOTA_EXCEEDED),
        ("REQUEST_DENIED", ErrorKind.REQUEST_DENIED),
        ("INVALID_REQUEST", ErrorKind.INVALID_REQUEST),
        ("UNKNOWN_ERROR", ErrorKind.UNKNOWN),
    ],
)
def test_google_status_classification(status, kind):
    result = _google(FakeTransport({"status": status, "error_message": "nope"})).resolve(POINT)

    assert isinstance(result, ClassifiedError)
    assert result.kind is kind
    assert result.provider == "google"
    assert result.raw_status == status


@pytest.mark.parametrize(
    "code, kind",
    [(403, ErrorKind.FORBIDDEN), (404, ErrorKind.NOT_FOUND), (429, ErrorKind.RATE_LIMITED), (500, ErrorKind.UNKNOWN)],
)
def test_google_http_errors(code, kind):
    result = _google(FakeTransport(http_response(code, "error"))).resolve(POINT)

    assert isinstance(result, ClassifiedError)
    assert result.kind is kind
    assert result.http_status == code


def test_timeout_is_unknown():
    result = _google(FakeTransport(timeout_error())).resolve(POINT)

    assert isinstance(result, ClassifiedError)
    assert result.kind is ErrorKind.UNKNOWN
    assert result.raw_status == "timeout"


def test_malformed_body_is_unknown():
    result = _google(FakeTransport(TransportResponse(200, b"<html>"))).resolve(POINT)

    assert isinstance(result, ClassifiedError)
    assert result.kind is ErrorKind.UNKNOWN


def test_missing_key_is_unknown_not_raised():
    transport = FakeTransport()
    provider = GoogleGeocoder(make_config("google", kind="google"), transport=transport)

    result = provider.resolve(POINT)

    assert isinstance(result, ClassifiedError)
    assert result.kind is ErrorKind.UNKNOWN
    assert result.raw_status == "ProviderConfigError"
    assert transport.calls == []


def test_google_client_id_signs_url():
    signing_key = base64.urlsafe_b64encode(b"secret-signing-key").decode()
    transport = FakeTransport(GOOGLE_OK)
    provider = _google(transport, api_key="gme-acme", options={"signature_key": signing_key, "channel": "fleet"})

    provider.resolve(POINT)

    url = transport.calls[0]["url"]
    params = _query(transport.calls[0])
    assert params["client"] == "gme-acme"
    assert params["channel"] == "fleet"
    assert "key" not in params

    unsigned, signature = url.rsplit("&signature=", 1)
    parsed = urlparse(unsigned)
    expected = base64.urlsafe_b64encode(
        hmac.new(b"secret-signing-key", f"{parsed.path}?{parsed.query}".encode(), hashlib.sha1).digest()
    ).decode()
    assert signature == expected


def test_google_client_id_without_signing_key_fails_as_unknown():
    result = _google(FakeTransport(), api_key="gme-acme").resolve(POINT)
    assert isinstance(result, ClassifiedError)
    assert result.kind is ErrorKind.UNKNOWN


def test_sign_url_is_deterministic():
    key = base64.urlsafe_b64encode(b"k").decode()
    url = "https://maps.googleapis.com/maps/api/geocode/json?latlng=1,2&client=gme-x"
    assert sign_url(url, key) == sign_url(url, key)
    assert sign_url(url, key).startswith(url + "&signature=")


def test_google_forward_geocode():
    transport = FakeTransport({
        "status": "OK",
        "results": [{"geometry": {"location": {"lat": 37.422, "lng": -122.084}}}],
    })

    point = _google(transport).get_geocode("1600 Amphitheatre Pkwy", country="US")

    assert point == GeoPoint(37.422, -122.084)
    params = _query(transport.calls[0])
    assert params["region"] == "us"
    assert params["address"] == "1600 Amphitheatre Pkwy"
    assert transport.calls[0]["timeout"] == 5.0


def test_google_forward_geocode_failure_returns_none():
    assert _google(FakeTransport({"status": "ZERO_RESULTS", "results": []})).get_geocode("nowhere") is None
    assert _google(FakeTransport(http_response(403))).get_geocode("somewhere") is None
    assert _google(FakeTransport()).get_geocode("   ") is None


# =============================================================================
# Nominatim
# =============================================================================

NOMINATIM_RO = {
    "display_name": "Pădurii, Arad, 310365, România",
    "address": {
        "road": "Pădurii",
        "city": "Arad",
        "county": "Arad",
        "state": "Arad",
        "postcode": "310365",
        "country": "România",
        "country_code": "ro",
    },
}


def _nominatim(transport, **kwargs):
    return NominatimGeocoder(make_config("osm", kind="nominatim", **kwargs), transport=transport)


def test_nominatim_assembles_address():
    transport = FakeTransport(NOMINATIM_RO)

    address = _nominatim(transport, options={"email": "ops@example.com"}).resolve(POINT, "ro")

    assert address.full_address == "Pădurii, Arad, Arad 310365, România"
    assert address.street_address == "Pădurii"
    assert address.city == "Arad"
    assert address.postal_code == "310365"
    assert address.country_code == "RO"

    params = transport.calls[0]["params"]
    assert params["format"] == "jsonv2"
    assert params["lat"] == "46.17330"
    assert params["lon"] == "21.29370"
    assert params["zoom"] == 18
    assert params["accept-language"] == "ro"
    assert params["email"] == "ops@example.com"


def test_nominatim_us_omits_country_and_marks_county():
    payload = {
        "address": {
            "house_number": "12",
            "road": "Main Street",
            "county": "Lake County",
            "state": "Ohio",
            "postcode": "44000",
            "country": "United States",
            "country_code": "us",
        }
    }

    address = _nominatim(FakeTransport(payload)).resolve(POINT)

    assert address.full_address == "12 Main Street, [Lake County], Ohio 44000"
    assert address.city is None


def test_nominatim_town_used_when_no_city():
    payload = {"address": {"road": "High St", "town": "Smallville", "country_code": "gb", "country": "UK"}}
    address = _nominatim(FakeTransport(payload)).resolve(POINT)
    assert address.city == "Smallville"
    assert address.full_address == "High St, Smallville, UK"


def test_nominatim_use_result_address():
    address = _nominatim(FakeTransport(NOMINATIM_RO), options={"use_result_address": True}).resolve(POINT)
    assert address.full_address == NOMINATIM_RO["display_name"]
    assert address.city == "Arad"


def test_nominatim_error_body_is_empty_address():
    address = _nominatim(FakeTransport({"error": "Unable to geocode"})).resolve(POINT)

    assert isinstance(address, ResolvedAddress)
    assert address.is_empty()


def test_nominatim_http_429_is_rate_limited():
    result = _nominatim(FakeTransport(http_response(429))).resolve(POINT)
    assert result.kind is ErrorKind.RATE_LIMITED


# =============================================================================
# OpenCage
# =============================================================================

OPENCAGE_OK = {
    "status": {"code": 200, "message": "OK"},
    "results": [
        {
            "formatted": "Pădurii, 310365 Arad, Romania",
            "components": {
                "road": "Pădurii",
                "city": "Arad",
                "state": "Arad",
                "state_code": "AR",
                "postcode": "310365",
                "country_code": "ro",
            },
            "geometry": {"lat": 46.1733, "lng": 21.2937},
        }
    ],
}


def _opencage(transport, **kwargs):
    kwargs.setdefault("api_key", "oc-key")
    return OpenCageGeocoder(make_config("oc", kind="opencage", **kwargs), transport=transport)


def test_opencage_parses_address():
    transport = FakeTransport(OPENCAGE_OK)

    address = _opencage(transport).resolve(POINT)

    assert address.full_address == "Pădurii, 310365 Arad, Romania"
    assert address.city == "Arad"
    assert address.state_province == "AR"
    assert address.country_code == "RO"
    params = transport.calls[0]["params"]
    assert params["q"] == "46.17330,21.29370"
    assert params["limit"] == 1
    assert params["no_annotations"] == 1


def test_opencage_no_results_is_empty_address():
    address = _opencage(FakeTransport({"status": {"code": 200}, "results": []})).resolve(POINT)
    assert address.is_empty()


@pytest.mark.parametrize(
    "code, kind",
    [
        (400, ErrorKind.INVALID_REQUEST),
        (401, ErrorKind.REQUEST_DENIED),
        (402, ErrorKind.QUOTA_EXCEEDED),
        (403, ErrorKind.FORBIDDEN),
        (404, ErrorKind.NOT_FOUND),
        (410, ErrorKind.INVALID_REQUEST),
        (429, ErrorKind.RATE_LIMITED),
        (503, ErrorKind.UNKNOWN),
    ],
)
def test_opencage_status_codes(code, kind):
    body = {"status": {"code": code, "message": "err"}, "results": []}

    in_body = _opencage(FakeTransport(body)).resolve(POINT)
    over_http = _opencage(FakeTransport(http_response(code, body))).resolve(POINT)

    assert in_body.kind is kind
    assert over_http.kind is kind


def test_opencage_forward_geocode():
    transport = FakeTransport(OPENCAGE_OK)

    point = _opencage(transport).get_geocode("Pădurii, Arad", country="RO")

    assert point == GeoPoint(46.1733, 21.2937)
    assert transport.calls[0]["params"]["countrycode"] == "ro"


def test_opencage_forward_geocode_quota_returns_none():
    body = {"status": {"code": 402, "message": "quota"}, "results": []}
    assert _opencage(FakeTransport(body)).get_geocode("anywhere") is None


@pytest.mark.parametrize(
    "body",
    [
        {"status": {"code": 200}, "results": ["not-a-dict"]},
        {"status": {"code": 200}, "results": [{"geometry": ["x"]}]},
        {"status": {"code": 200}, "results": {"0": {}}},
    ],
)
def test_opencage_forward_geocode_malformed_results(body):
    assert _opencage(FakeTransport(body)).get_geocode("anywhere") is None


def test_google_forward_geocode_malformed_results():
    body = {"status": "OK", "results": ["not-a-dict"]}
    assert _google(FakeTransport(body)).get_geocode("anywhere") is None


# =============================================================================
# GisGraphy
# =============================================================================

GISGRAPHY_OK = {
    "numFound": 1,
    "QTime": 12,
    "result": [
        {
            "lat": 40.7484,
            "lng": -73.9857,
            "houseNumber": "350",
            "streetName": "5th Avenue",
            "city": "New York",
            "state": "NY",
            "zipCode": "10118",
            "countryCode": "us",
            "formatedFull": "350 5th Avenue, New York, NY 10118, United States, US",
        }
    ],
}


def _gisgraphy(transport, **kwargs):
    return GisGraphyGeocoder(make_config("gg", kind="gisgraphy", **kwargs), transport=transport)


def test_gisgraphy_parses_address():
    transport = FakeTransport(GISGRAPHY_OK)

    address = _gisgraphy(transport, api_key="gg-key").resolve(POINT)

    assert isinstance(address, ResolvedAddress)
    assert address.street_address == "350 5th Avenue"
    assert address.city == "New York"
    assert address.state_province == "NY"
    assert address.postal_code == "10118"
    assert address.country_code == "US"
    assert "United States" not in address.full_address
    assert not address.full_address.endswith("US")

    call = transport.calls[0]
    assert call["url"] == "https://localhost/reversegeocoding/reversegeocode"
    assert call["params"]["lat"] == "46.17330"
    assert call["params"]["lng"] == "21.29370"
    assert call["params"]["format"] == "json"
    assert call["params"]["apikey"] == "gg-key"


def test_gisgraphy_assembles_address_without_formatted_full():
    result = dict(GISGRAPHY_OK["result"][0], formatedFull="")

    address = _gisgraphy(FakeTransport({"result": [result]})).resolve(POINT)

    assert address.full_address == "350 5th Avenue, New York, NY 10118, US"


def test_gisgraphy_reverse_url_override_and_host():
    transport = FakeTransport(GISGRAPHY_OK, GISGRAPHY_OK)

    _gisgraphy(transport, reverse_url="http://geo.internal:8081/reversegeocoding/reversegeocode").resolve(POINT)
    _gisgraphy(transport, options={"host": "gis.example.com", "use_ssl": False}).resolve(POINT)

    assert transport.calls[0]["url"] == "http://geo.internal:8081/reversegeocoding/reversegeocode"
    assert transport.calls[1]["url"] == "http://gis.example.com/reversegeocoding/reversegeocode"


def test_gisgraphy_local_host_is_fast():
    assert _gisgraphy(FakeTransport(), options={"host": "127.0.0.1:8081"}).is_fast_operation()
    assert not _gisgraphy(FakeTransport(), options={"host": "gis.example.com"}).is_fast_operation()


def test_gisgraphy_no_result_is_empty_address():
    address = _gisgraphy(FakeTransport({"numFound": 0, "result": []})).resolve(POINT)

    assert isinstance(address, ResolvedAddress)
    assert address.is_empty()


@pytest.mark.parametrize(
    "response, kind",
    [
        (http_response(429), ErrorKind.RATE_LIMITED),
        (http_response(403), ErrorKind.FORBIDDEN),
        (http_response(200, "<results/>"), ErrorKind.UNKNOWN),
        ({"error": "apikey is invalid"}, ErrorKind.UNKNOWN),
        (timeout_error(), ErrorKind.UNKNOWN),
    ],
)
def test_gisgraphy_failures_are_classified(response, kind):
    result = _gisgraphy(FakeTransport(response)).resolve(POINT)

    assert isinstance(result, ClassifiedError)
    assert result.kind is kind
    assert result.provider == "gg"
