"""
Speed-limit enrichment backed by the Google Roads API.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from .base import SpeedLimitProvider
from .errors import TransportError
from .models import GeoPoint
from .transport import HttpTransport

logger = logging.getLogger(__name__)


KILOMETERS_PER_MILE = 1.609344

# The API reports unknown limits with large sentinel values (e.g. 999)
MAX_SPEED_LIMIT = 250.0


class GoogleRoads(SpeedLimitProvider):
    """
    Posted speed limit at a point via roads.googleapis.com/v1/speedLimits.

    Any failure (HTTP error, bad payload, no limit on record) yields None;
    callers treat the limit as unknown.
    """

    DEFAULT_URL = "https://roads.googleapis.com/v1/speedLimits"

    def __init__(
        self,
        api_key: str,
        url: Optional[str] = None,
        timeout: float = 2.5,
        transport: Optional[HttpTransport] = None,
    ):
        if not api_key:
            raise ValueError("GoogleRoads requires an API key")
        self.api_key = api_key
        self.url = url or self.DEFAULT_URL
        self.timeout = timeout
        self.transport = transport or HttpTransport()

    def get_speed_limit_kph(self, point: GeoPoint) -> Optional[float]:
        if not point.is_valid():
            return None
        params = {"path": point.to_query(), "units": "KPH", "key": self.api_key}
        try:
            response = self.transport.get(self.url, params=params, timeout=self.timeout)
        except TransportError as e:
            logger.warning(f"Speed limit lookup for {point} failed: {e}")
            return None

        if not response.ok:
            logger.warning(f"Speed limit lookup for {point} returned HTTP {response.status_code}")
            return None
        try:
            payload = response.json()
        except ValueError as e:
            logger.warning(f"Speed limit lookup for {point} returned invalid JSON: {e}")
            return None
        return self.parse_speed_limit(payload)

    @staticmethod
    def parse_speed_limit(payload: Any) -> Optional[float]:
        """Return the first plausible limit in a speedLimits payload, in km/h."""
        if not isinstance(payload, dict):
            return None
        for entry in payload.get("speedLimits") or []:
            try:
                limit = float(entry.get("speedLimit", -1.0))
            except (AttributeError, TypeError, ValueError):
                continue
            if not math.isfinite(limit) or limit < 0.0 or limit > MAX_SPEED_LIMIT:
                continue
            units = str(entry.get("units", "KPH")).upper()
            return limit * KILOMETERS_PER_MILE if units == "MPH" else limit
        return None
