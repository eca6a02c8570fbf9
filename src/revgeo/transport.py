"""
Blocking HTTP transport used by the providers.

A thin wrapper over a requests.Session that returns the status code and
body for every answer the server gives, and raises TransportError only
when there is no answer at all (connection failure, timeout).
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import requests

from .errors import TransportError

logger = logging.getLogger(__name__)


def build_url(url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Append encoded query parameters to url, dropping None values."""
    clean = {k: v for k, v in (params or {}).items() if v is not None}
    prepared = requests.Request("GET", url, params=clean).prepare()
    return str(prepared.url)


@dataclass(frozen=True)
class TransportResponse:
    """Status code and raw body of an HTTP answer."""
    status_code: int
    content: bytes = b""
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """
        Decode the body as JSON.

        Raises:
            ValueError: if the body is not valid JSON
        """
        return json.loads(self.content.decode("utf-8"))


class HttpTransport:
    """
    HTTP GET with per-call timeout.

    Sessions are kept per thread since requests.Session is not
    guaranteed to be thread-safe.
    """

    def __init__(self, user_agent: Optional[str] = None, session: Optional[requests.Session] = None):
        """
        Args:
            user_agent: Default User-Agent header for every request
            session: Optional session to use for all threads (mainly for tests)
        """
        self.user_agent = user_agent
        self._shared_session = session
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._lock = threading.Lock()

    def _session(self) -> requests.Session:
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._lock:
                self._sessions.append(session)
        return session

    def get(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 5.0,
    ) -> TransportResponse:
        """
        Fetch url and return whatever the server answered.

        Raises:
            TransportError: on connection errors and timeouts
        """
        all_headers = {"Accept": "application/json"}
        if self.user_agent:
            all_headers["User-Agent"] = self.user_agent
        all_headers.update(headers or {})

        full_url = build_url(url, params) if params else url
        try:
            response = self._session().get(full_url, headers=all_headers, timeout=timeout)
        except requests.Timeout as e:
            raise TransportError(full_url, f"Timed out after {timeout}s: {e}", timed_out=True) from e
        except requests.RequestException as e:
            raise TransportError(full_url, str(e)) from e

        logger.debug(f"GET {response.status_code} {full_url}")
        return TransportResponse(
            status_code=response.status_code,
            content=response.content or b"",
            url=full_url,
        )

    def close(self) -> None:
        """Close the sessions opened by every thread."""
        with self._lock:
            sessions, self._sessions = self._sessions, []
        if self._shared_session is not None:
            sessions.append(self._shared_session)
        for session in sessions:
            session.close()
        # Threads still holding a closed session open a fresh one on next use
        self._local = threading.local()
