"""GeoIP lookup, database lifecycle and country policy.

Usage:
    from geoauth.geo import DatabaseHandle, Reloader, create_policy

    handle = DatabaseHandle.open("/data/GeoLite2-Country.mmdb")
    reloader = Reloader(handle, "/data/GeoLite2-Country.mmdb", interval=3600)
    reloader.start()

    policy = create_policy(action="allow", countries="IT,SM,VA")
    result = handle.snapshot().lookup(ipaddress.ip_address("151.100.0.1"))
    verdict = policy.evaluate(result)

Requires:
    pip install geoip2>=4.8.0
"""

from geoauth.geo.handle import DatabaseHandle, Reloader
from geoauth.geo.policy import (
    Policy,
    PolicyMode,
    Verdict,
    create_policy,
    decide,
    parse_countries,
)
from geoauth.geo.provider import (
    GeoLookupProvider,
    LookupResult,
    MaxMindProvider,
    open_provider,
)

__all__ = [
    "DatabaseHandle",
    "GeoLookupProvider",
    "LookupResult",
    "MaxMindProvider",
    "Policy",
    "PolicyMode",
    "Reloader",
    "Verdict",
    "create_policy",
    "decide",
    "open_provider",
    "parse_countries",
]
