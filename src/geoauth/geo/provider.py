"""GeoIP lookup providers.

A provider maps an IP address to an ISO 3166-1 country code. The only
concrete provider wraps a MaxMind GeoIP2/GeoLite2 database opened through
the ``geoip2`` library; the binary format itself is never parsed here.

Usage:
    from geoauth.geo.provider import MaxMindProvider

    provider = MaxMindProvider.open("/data/GeoLite2-Country.mmdb")
    result = provider.lookup(ipaddress.ip_address("151.100.0.1"))
    print(result.country_code)  # "IT"
    provider.close()

Database download:
    MaxMind GeoLite2 databases are free but require registration:
    https://dev.maxmind.com/geoip/geoip2/geolite2/
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address
from typing import Protocol, runtime_checkable

import geoip2.database
import geoip2.errors
import maxminddb

from geoauth.core.exceptions import DatabaseOpenError, LookupFailedError, UseAfterCloseError

IPAddress = IPv4Address | IPv6Address

# Database types that carry a country record
_COUNTRY_DATABASE_MARKERS = ("Country", "City", "Enterprise")


@dataclass(frozen=True)
class LookupResult:
    """Country resolved for a single IP address."""

    ip: str
    """The IP address that was looked up."""

    country_code: str | None = None
    """ISO 3166-1 alpha-2 country code (e.g., 'IT'), None when unknown."""

    @property
    def is_empty(self) -> bool:
        """True when the database produced no country for the address."""
        return not self.country_code


@runtime_checkable
class GeoLookupProvider(Protocol):
    """Capability that resolves an IP address to a country."""

    def lookup(self, ip: IPAddress) -> LookupResult: ...

    def close(self) -> None: ...


class MaxMindProvider:
    """MaxMind database reader with in-flight read tracking.

    Lookups are safe to run from several threads at once. ``close()`` refuses
    to release the reader while a lookup is still running, and lookups on a
    closed provider fail instead of touching a released memory map.
    """

    def __init__(self, reader: geoip2.database.Reader, path: str) -> None:
        self._reader = reader
        self._path = path
        self._lock = threading.Lock()
        self._active_reads = 0
        self._closed = False

        metadata = reader.metadata()
        self._database_type: str = metadata.database_type
        self._build_epoch: int = metadata.build_epoch

        # City and Enterprise databases are a superset of Country data
        if "City" in self._database_type:
            self._query = reader.city
        elif "Enterprise" in self._database_type:
            self._query = reader.enterprise
        else:
            self._query = reader.country

    @classmethod
    def open(cls, path: str) -> MaxMindProvider:
        """Open a MaxMind database file.

        Args:
            path: Path to .mmdb database file.

        Raises:
            DatabaseOpenError: If the file is missing, unreadable, invalid,
                or is not a country-capable database.
        """
        try:
            reader = geoip2.database.Reader(path)
        except (OSError, maxminddb.InvalidDatabaseError, ValueError) as e:
            raise DatabaseOpenError(path, str(e)) from e

        database_type = reader.metadata().database_type
        if not any(marker in database_type for marker in _COUNTRY_DATABASE_MARKERS):
            reader.close()
            raise DatabaseOpenError(path, f"unsupported database type {database_type!r}")

        return cls(reader, path)

    @property
    def path(self) -> str:
        return self._path

    @property
    def database_type(self) -> str:
        return self._database_type

    @property
    def build_epoch(self) -> int:
        return self._build_epoch

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_reads(self) -> int:
        return self._active_reads

    def lookup(self, ip: IPAddress) -> LookupResult:
        """Look up the country for an IP address.

        Addresses missing from the database (private and reserved ranges
        included) produce an empty result rather than an error.

        Raises:
            LookupFailedError: If the database could not be read.
            UseAfterCloseError: If the provider was already closed.
        """
        with self._lock:
            if self._closed:
                raise UseAfterCloseError(f"Lookup on closed MaxMind database {self._path}")
            self._active_reads += 1

        try:
            response = self._query(ip)
        except geoip2.errors.AddressNotFoundError:
            return LookupResult(ip=str(ip))
        except (maxminddb.InvalidDatabaseError, ValueError, OSError) as e:
            raise LookupFailedError(str(ip), str(e)) from e
        finally:
            with self._lock:
                self._active_reads -= 1

        return LookupResult(ip=str(ip), country_code=response.country.iso_code or None)

    def close(self) -> None:
        """Release the underlying reader.

        Raises:
            UseAfterCloseError: If a lookup is running; the reader stays open.
        """
        with self._lock:
            if self._closed:
                return
            if self._active_reads:
                raise UseAfterCloseError(
                    f"Close of MaxMind database {self._path} during "
                    f"{self._active_reads} active read(s)"
                )
            self._closed = True
        self._reader.close()

    def __repr__(self) -> str:
        return (
            f"MaxMindProvider(path={self._path!r}, type={self._database_type!r}, "
            f"build_epoch={self._build_epoch}, closed={self._closed})"
        )


def open_provider(path: str) -> GeoLookupProvider:
    """Default opener used at startup and by the reloader."""
    return MaxMindProvider.open(path)
