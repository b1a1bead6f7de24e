"""Error types raised by geoauth.

Every error carries a short machine-readable ``code`` next to the human
``message`` so the CLI can render it and log lines can be grouped.
"""

from __future__ import annotations


class GeoAuthError(Exception):
    """Base class for all geoauth errors."""

    code = "geoauth_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(GeoAuthError):
    """Invalid startup configuration."""

    code = "invalid_config"


class DatabaseOpenError(GeoAuthError):
    """The GeoIP database file could not be opened."""

    code = "database_open_failed"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Can't open MaxMind database {path}: {reason}")
        self.path = path
        self.reason = reason


class LookupFailedError(GeoAuthError):
    """The database lookup failed (corrupt or unreadable data)."""

    code = "lookup_failed"

    def __init__(self, ip: str, reason: str) -> None:
        super().__init__(f"MaxMind database lookup failed for {ip}: {reason}")
        self.ip = ip
        self.reason = reason


class UseAfterCloseError(GeoAuthError):
    """A provider was read after close, or closed while a read was running."""

    code = "use_after_close"


def format_error_for_user(error: BaseException) -> str:
    """Render an exception as a single line for console output."""
    if isinstance(error, GeoAuthError):
        return error.message
    if isinstance(error, OSError) and error.strerror:
        return error.strerror
    return str(error) or type(error).__name__
