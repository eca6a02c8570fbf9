from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


from revgeo.base import ReverseGeocodeProvider, SpeedLimitProvider
from revgeo.config import ProviderConfig
from revgeo.errors import TransportError
from revgeo.models import ClassifiedError, ErrorKind, GeoPoint, ResolvedAddress
from revgeo.transport import TransportResponse


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """
    Records requests and answers from a queue of scripted responses.

    A queued item may be a TransportResponse, a dict/list (sent as a 200 JSON
    body), or an exception instance (raised).
    """

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def get(self, url, params=None, headers=None, timeout=5.0):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {}), "timeout": timeout})
        if not self.responses:
            raise AssertionError(f"Unexpected request to {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, TransportResponse):
            return item
        return TransportResponse(status_code=200, content=json.dumps(item).encode("utf-8"), url=url)

    def close(self) -> None:
        self.closed = True


def http_response(status_code: int, body: Any = None) -> TransportResponse:
    if body is None:
        content = b""
    elif isinstance(body, (bytes, str)):
        content = body.encode("utf-8") if isinstance(body, str) else body
    else:
        content = json.dumps(body).encode("utf-8")
    return TransportResponse(status_code=status_code, content=content)


def timeout_error(url: str = "https://example.test") -> TransportError:
    return TransportError(url, "Timed out after 2.5s", timed_out=True)


class FakeProvider(ReverseGeocodeProvider):
    """
    Provider returning scripted outcomes.

    `outcome` is a ResolvedAddress, a ClassifiedError, an ErrorKind (turned
    into a ClassifiedError), an exception (raised) or a callable taking the
    point.
    """

    def __init__(self, config: ProviderConfig, outcome: Any = None):
        super().__init__(config, transport=FakeTransport())
        self.outcome = outcome if outcome is not None else ResolvedAddress(full_address=f"Address via {config.name}")
        self.calls: list[GeoPoint] = []

    def _resolve(self, point: GeoPoint, locale: Optional[str]):
        self.calls.append(point)
        outcome = self.outcome
        if callable(outcome) and not isinstance(outcome, (ResolvedAddress, ClassifiedError, ErrorKind)):
            outcome = outcome(point)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ErrorKind):
            return self._error(outcome, outcome.value)
        return outcome


class FakeSpeedLimits(SpeedLimitProvider):
    def __init__(self, kph: Optional[float] = 50.0, error: Optional[Exception] = None):
        self.kph = kph
        self.error = error
        self.calls: list[GeoPoint] = []

    def get_speed_limit_kph(self, point: GeoPoint) -> Optional[float]:
        self.calls.append(point)
        if self.error is not None:
            raise self.error
        return self.kph


def make_config(name: str = "primary", kind: str = "fake", **kwargs: Any) -> ProviderConfig:
    return ProviderConfig(name=name, kind=kind, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def point() -> GeoPoint:
    return GeoPoint(46.1733, 21.2937)


@pytest.fixture
def provider_factory() -> Callable[..., FakeProvider]:
    def factory(name: str = "primary", outcome: Any = None, **config_kwargs: Any) -> FakeProvider:
        return FakeProvider(make_config(name, **config_kwargs), outcome=outcome)

    return factory
