"""
Failover controller.

Routes calls for one primary provider to a designated fallback for a
bounded cooldown after a classified failure. Recovery is purely time based:
once the cooldown has passed the next call goes to the primary again, and
the primary is never probed early.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Callable, Optional

from .base import ReverseGeocodeProvider
from .classifier import ErrorClassifier
from .models import ClassifiedError, FailoverState, GeoPoint, ResolvedAddress, Resolution

if TYPE_CHECKING:
    from .service import ReverseGeocodeService

logger = logging.getLogger(__name__)


class FailoverController:
    """
    Per-provider NORMAL/DIVERTED state machine.

    NORMAL -> DIVERTED when the primary returns a failure kind and a
    fallback exists; the expiry is now + cooldown(kind). DIVERTED -> NORMAL
    happens lazily on the first check after the expiry. A new failure while
    diverted never shortens the current diversion.
    """

    def __init__(
        self,
        primary: ReverseGeocodeProvider,
        fallback: Optional["ReverseGeocodeService"] = None,
        classifier: Optional[ErrorClassifier] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.primary = primary
        self.fallback = fallback
        self.classifier = classifier or ErrorClassifier.from_config(primary.config)
        self._clock = clock
        self._lock = threading.Lock()
        self._state = FailoverState.NORMAL
        self._expires_at: Optional[float] = None
        self._last_error: Optional[ClassifiedError] = None

    @property
    def state(self) -> FailoverState:
        self.is_diverted()
        return self._state

    @property
    def expires_at(self) -> Optional[float]:
        with self._lock:
            return self._expires_at

    @property
    def last_error(self) -> Optional[ClassifiedError]:
        return self._last_error

    def is_diverted(self) -> bool:
        """True while an unexpired diversion is active (expired ones reset here)."""
        with self._lock:
            if self._state is FailoverState.NORMAL:
                return False
            if self._expires_at is not None and self._clock() < self._expires_at:
                return True
            logger.info(f"[{self.primary.get_name()}] failover expired, returning to primary")
            self._state = FailoverState.NORMAL
            self._expires_at = None
            return False

    def remaining_s(self) -> float:
        """Seconds left in the current diversion (0 when not diverted)."""
        with self._lock:
            if self._state is FailoverState.NORMAL or self._expires_at is None:
                return 0.0
            return max(0.0, self._expires_at - self._clock())

    def reset(self) -> None:
        """Drop any active diversion immediately."""
        with self._lock:
            self._state = FailoverState.NORMAL
            self._expires_at = None

    def _divert(self, error: ClassifiedError) -> None:
        cooldown = self.classifier.cooldown(error.kind)
        with self._lock:
            new_expiry = self._clock() + cooldown
            if self._state is FailoverState.DIVERTED and self._expires_at is not None:
                self._expires_at = max(self._expires_at, new_expiry)
                return
            self._state = FailoverState.DIVERTED
            self._expires_at = new_expiry
        logger.warning(
            f"[{self.primary.get_name()}] {error.kind.value}: failing over to "
            f"'{self.fallback.get_name()}' for {cooldown:.0f}s"
        )

    def _delegate(
        self,
        point: GeoPoint,
        locale: Optional[str],
        may_cache: bool,
        errors: list[ClassifiedError],
    ) -> Resolution:
        address = self.fallback.get_reverse_geocode(point, locale=locale, may_cache=may_cache)
        return Resolution(address=address, provider=self.fallback.get_name(), diverted=True, errors=errors)

    def resolve(self, point: GeoPoint, locale: Optional[str] = None, may_cache: bool = False) -> Resolution:
        """
        Resolve through the primary, or the fallback while diverted.

        Args:
            point: A valid GeoPoint
            locale: Optional language code
            may_cache: Passed on to the fallback service

        Returns:
            Resolution; address is None when no provider produced a result
        """
        if self.fallback is not None and self.is_diverted():
            return self._delegate(point, locale, may_cache, errors=[])

        result = self.primary.resolve(point, locale)
        if isinstance(result, ResolvedAddress):
            return Resolution(address=result, provider=self.primary.get_name())

        if not result.is_failure:
            # OK/ZERO_RESULTS reported as an error object still means "no address"
            return Resolution(address=ResolvedAddress.empty(), provider=self.primary.get_name())

        self._last_error = result
        self.classifier.report(result)
        if self.fallback is None:
            return Resolution(address=None, provider=self.primary.get_name(), errors=[result])

        self._divert(result)
        return self._delegate(point, locale, may_cache, errors=[result])

    def __repr__(self) -> str:
        fallback = self.fallback.get_name() if self.fallback is not None else None
        return f"FailoverController(primary={self.primary.get_name()!r}, fallback={fallback!r}, state={self._state.value})"
