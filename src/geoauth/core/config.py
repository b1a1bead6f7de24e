"""Configuration types with environment variable support.

All settings can be configured via environment variables with the GEOAUTH_ prefix.
Example: GEOAUTH_DB_REFRESH_EVERY=30m reloads the database every 30 minutes.

Values are resolved with this precedence: command line flag, config file
(YAML or TOML), environment, default.
"""

from __future__ import annotations

import re
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from geoauth.geo.policy import Policy, PolicyMode, create_policy

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str | float | int) -> float:
    """Parse a duration into seconds.

    Accepts Go-style duration strings ("1h", "1h30m", "250ms", "10s") or a
    bare number of seconds.

    Raises:
        ValueError: If the value is not a valid non-negative duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, int | float):
        seconds = float(value)
    else:
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            seconds = 0.0
            pos = 0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if not text or pos != len(text):
                raise ValueError(f"Invalid duration: {value!r}") from None

    if seconds < 0:
        raise ValueError(f"Duration must not be negative: {value!r}")
    return seconds


def format_duration(seconds: float) -> str:
    """Render seconds back as a compact duration string."""
    if seconds and seconds < 1:
        return f"{seconds * 1000:g}ms"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{int(hours)}h")
    if minutes:
        parts.append(f"{int(minutes)}m")
    if secs or not parts:
        parts.append(f"{secs:g}s")
    return "".join(parts)


def parse_listen_address(bind: str) -> tuple[str | None, int]:
    """Parse "host:port" into a host and port.

    An empty host (":8080") means all interfaces and is returned as None.
    IPv6 hosts may be bracketed ("[::1]:8080").

    Raises:
        ValueError: If the port is missing or out of range.
    """
    bind = bind.strip()
    if ":" in bind:
        host, port_text = bind.rsplit(":", 1)
    else:
        host, port_text = "", bind

    host = host.strip("[]")
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid listen address: {bind!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range in listen address: {bind!r}")
    return host or None, port


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML (.yaml/.yml) or TOML (.toml) config file into a dict.

    Keys may use the flag spelling (``db-refresh-every``) and may be grouped
    in sections (``web: {listen: ...}``); pass the result through
    ``flatten_config`` to get ``GeoAuthConfig`` field names.

    Raises:
        FileNotFoundError: If ``path`` doesn't exist.
        ValueError: If the file can't be decoded or parsed, isn't a mapping,
            or has an unknown extension.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    suffix = path.suffix.lower()
    if suffix not in (".yaml", ".yml", ".toml"):
        raise ValueError(f"Unsupported config format: {path.suffix or path.name}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    if suffix == ".toml":
        try:
            return tomllib.loads(content)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {path}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested sections into underscore-joined keys.

    Dashes are accepted in keys so files can reuse the flag names
    (``db-refresh-every`` and ``db_refresh_every`` are the same key).
    """
    result: dict[str, Any] = {}
    for key, value in config.items():
        key = str(key).replace("-", "_")
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


class GeoAuthConfig(BaseSettings):
    """Forward-auth server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEOAUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    action: PolicyMode = Field(
        default=PolicyMode.ALLOW,
        description='Action on countries: "allow" lets only those countries through, "block" refuses them.',
    )
    countries: str = Field(
        default="IT",
        description="Comma separated ISO country codes to allow or block.",
    )
    allow_empty_countries: bool = Field(
        default=False,
        description="Allow requests whose address resolves to no country.",
    )
    db: str = Field(
        default="GeoLite2-Country.mmdb",
        description="MaxMind database path.",
    )
    db_refresh_every: float = Field(
        default=3600.0,
        description="Database reload interval (seconds).",
    )
    db_grace_period: float = Field(
        default=10.0,
        description="Delay before a replaced database is closed (seconds).",
    )
    web_listen: str = Field(
        default=":8080",
        description="HTTP listener address and port.",
    )
    web_timeout: float = Field(
        default=30.0,
        description="Keep-alive and lookup timeout (seconds).",
    )
    shutdown_timeout: float = Field(
        default=10.0,
        description="Time allowed for in-flight requests at shutdown (seconds).",
    )
    metrics_listen: str | None = Field(
        default=None,
        description="Optional listener for /metrics and /health.",
    )
    debug: bool = Field(
        default=False,
        description="Verbose logging.",
    )

    @field_validator("action", mode="before")
    @classmethod
    def _normalize_action(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("countries", mode="before")
    @classmethod
    def _join_countries(cls, value: Any) -> Any:
        # Config files may give a list instead of the comma separated flag form
        if isinstance(value, (list, tuple)):
            return ",".join(str(code) for code in value)
        return value

    @field_validator(
        "db_refresh_every", "db_grace_period", "web_timeout", "shutdown_timeout", mode="before"
    )
    @classmethod
    def _parse_durations(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("db_refresh_every", "web_timeout")
    @classmethod
    def _require_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Duration must be greater than zero")
        return value

    @field_validator("web_listen")
    @classmethod
    def _check_web_listen(cls, value: str) -> str:
        parse_listen_address(value)
        return value

    @field_validator("metrics_listen")
    @classmethod
    def _check_metrics_listen(cls, value: str | None) -> str | None:
        if value:
            parse_listen_address(value)
            return value
        return None

    @property
    def policy(self) -> Policy:
        """Build the request policy from this configuration."""
        return create_policy(
            action=self.action,
            countries=self.countries,
            allow_empty_country=self.allow_empty_countries,
        )

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display."""
        return {
            "policy": {
                "action": self.action.value,
                "countries": sorted(self.policy.countries),
                "allow_empty_countries": self.allow_empty_countries,
            },
            "database": {
                "db": self.db,
                "db_refresh_every": format_duration(self.db_refresh_every),
                "db_grace_period": format_duration(self.db_grace_period),
            },
            "web": {
                "web_listen": self.web_listen,
                "web_timeout": format_duration(self.web_timeout),
                "shutdown_timeout": format_duration(self.shutdown_timeout),
                "metrics_listen": self.metrics_listen,
            },
            "debug": self.debug,
        }


def load_settings(config_file: str | Path | None = None, **overrides: Any) -> GeoAuthConfig:
    """Resolve the effective configuration.

    Args:
        config_file: Optional YAML/TOML file.
        **overrides: Values from the command line; None means "not given".

    Raises:
        pydantic.ValidationError: If a value is invalid.
        FileNotFoundError, ValueError: If the config file can't be loaded.
    """
    values: dict[str, Any] = {}
    if config_file:
        values.update(flatten_config(load_config_from_file(config_file)))
    values.update({key: value for key, value in overrides.items() if value is not None})
    return GeoAuthConfig(**values)
