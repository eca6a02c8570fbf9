from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError


class RevgeoError(Exception):
    """Base class for errors raised by revgeo."""


class ProviderConfigError(RevgeoError):
    """A provider is missing something it needs locally (e.g. a credential)."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class TransportError(RevgeoError):
    """The remote service could not be reached or did not answer in time."""

    def __init__(self, url: str, message: str, timed_out: bool = False):
        self.url = url
        self.timed_out = timed_out
        super().__init__(message)


class ConfigFileError(RevgeoError):
    def __init__(self, path: Path | str, errors: list[dict[str, Any]], original: Optional[Exception] = None):
        self.path = Path(path)
        self.errors = errors
        self.original = original
        msg = f"Invalid geocoder configuration '{self.path}' ({len(errors)} errors)"

        super().__init__(msg)

    @classmethod
    def from_validation_error(cls, path: Path | str, error: ValidationError) -> "ConfigFileError":
        return cls(path, error.errors(), original=error)

    def summary(self, limit: int = 5) -> str:
        """Human-readable summary of the first few configuration issues."""
        lines = []
        for err in self.errors[:limit]:
            loc = ".".join(str(p) for p in err.get("loc", []))
            lines.append(f"- {loc}: {err.get('msg')} ({err.get('type')})")
        if len(self.errors) > limit:
            lines.append(f"... ({len(self.errors) - limit} more)")
        return "\n".join(lines)
