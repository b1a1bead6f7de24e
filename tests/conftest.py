"""Shared fixtures for geoauth tests."""

from __future__ import annotations

import pytest

from geoauth.core.exceptions import LookupFailedError, UseAfterCloseError
from geoauth.geo.provider import LookupResult

# Addresses the fake database knows about; anything else resolves to no country
KNOWN_IPS = {
    "151.100.0.1": "IT",
    "2.2.2.2": "FR",
    "3.3.3.3": "DE",
    "2001:db8::1": "IT",
}


class FakeProvider:
    """In-memory stand-in for a MaxMind database."""

    def __init__(self, countries: dict[str, str] | None = None, *, fail: bool = False) -> None:
        self.countries = KNOWN_IPS if countries is None else countries
        self.fail = fail
        self.closed = False
        self.close_calls = 0
        self.lookups = 0

    def lookup(self, ip):
        if self.closed:
            raise UseAfterCloseError("Lookup on closed fake database")
        if self.fail:
            raise LookupFailedError(str(ip), "corrupt data")
        self.lookups += 1
        return LookupResult(ip=str(ip), country_code=self.countries.get(str(ip)))

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True


@pytest.fixture
def fake_provider():
    """A fake provider with the default known IPs."""
    return FakeProvider()


@pytest.fixture
def broken_db(tmp_path):
    """A file that is not a MaxMind database."""
    path = tmp_path / "broken.mmdb"
    path.write_bytes(b"this is not a maxmind database" * 32)
    return path
