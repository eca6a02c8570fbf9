"""
Error classification for remote reverse-geocode services.

Maps provider-specific raw statuses (HTTP codes, status strings,
transport exceptions) onto the closed ErrorKind taxonomy, and maps each
failure kind onto the cooldown a failover diversion should last.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from .config import ProviderConfig
from .models import ClassifiedError, ErrorKind

logger = logging.getLogger(__name__)


MINUTE = 60.0
HOUR = 60.0 * MINUTE

DEFAULT_COOLDOWNS: dict[ErrorKind, float] = {
    ErrorKind.RATE_LIMITED: 1 * MINUTE,
    ErrorKind.QUOTA_EXCEEDED: 30 * MINUTE,
    ErrorKind.REQUEST_DENIED: 1 * HOUR,
    ErrorKind.INVALID_REQUEST: 2 * HOUR,
    ErrorKind.FORBIDDEN: 5 * MINUTE,
    ErrorKind.NOT_FOUND: 1 * HOUR,
    ErrorKind.UNKNOWN: 1 * HOUR,
}

# Quiet mode stretches every cooldown so a dead service is not retried often
QUIET_COOLDOWN = 6 * HOUR

HTTP_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.INVALID_REQUEST,
    401: ErrorKind.REQUEST_DENIED,
    402: ErrorKind.QUOTA_EXCEEDED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    429: ErrorKind.RATE_LIMITED,
}


def classify_http_status(status_code: int) -> ErrorKind:
    """Classify a bare HTTP status code."""
    if 200 <= status_code < 300:
        return ErrorKind.OK
    return HTTP_STATUS_KINDS.get(status_code, ErrorKind.UNKNOWN)


def classify(raw: Any, status_map: Optional[Mapping[str, ErrorKind]] = None) -> ErrorKind:
    """
    Classify a raw provider outcome.

    Args:
        raw: HTTP status code (int), provider status string, or an exception
        status_map: Provider-specific status strings (upper case) to kinds

    Returns:
        The matching ErrorKind; anything unrecognised is UNKNOWN
    """
    if raw is None or isinstance(raw, BaseException):
        return ErrorKind.UNKNOWN
    if isinstance(raw, int) and not isinstance(raw, bool):
        return classify_http_status(raw)

    text = str(raw).strip().upper()
    if status_map and text in status_map:
        return status_map[text]
    if text.isdigit():
        return classify_http_status(int(text))
    return ErrorKind.UNKNOWN


class ErrorClassifier:
    """
    Cooldown policy for classified failures.

    Cooldown resolution order for a failure kind:
    1. explicit per-kind override
    2. configured default override
    3. QUIET_COOLDOWN when quiet
    4. DEFAULT_COOLDOWNS
    """

    def __init__(
        self,
        overrides: Optional[Mapping[ErrorKind, float]] = None,
        default_override: Optional[float] = None,
        quiet: bool = False,
    ):
        self.overrides = dict(overrides or {})
        self.default_override = default_override
        self.quiet = quiet

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "ErrorClassifier":
        return cls(
            overrides=config.failover_timeouts,
            default_override=config.failover_default_timeout_s,
            quiet=config.failover_quiet,
        )

    @staticmethod
    def is_failure(kind: ErrorKind) -> bool:
        return kind.is_failure

    def cooldown(self, kind: ErrorKind) -> float:
        """Seconds a diversion caused by `kind` should last (0 for non-failures)."""
        if not kind.is_failure:
            return 0.0
        if self.overrides.get(kind, 0) > 0:
            return float(self.overrides[kind])
        if self.default_override and self.default_override > 0:
            return float(self.default_override)
        if self.quiet:
            return QUIET_COOLDOWN
        return DEFAULT_COOLDOWNS.get(kind, DEFAULT_COOLDOWNS[ErrorKind.UNKNOWN])

    def report(self, error: ClassifiedError) -> None:
        """Log a failure once; quiet mode keeps it out of the error log."""
        if not error.is_failure:
            return
        if self.quiet:
            logger.debug(f"Reverse-geocode failure {error}")
        else:
            logger.error(f"Reverse-geocode failure {error}")
