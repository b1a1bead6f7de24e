"""Country allow/deny policy.

Maps the country resolved for a client to a verdict. Supports allowlist
mode (only the listed countries pass) and blocklist mode (the listed
countries are refused, all others pass). Addresses without a country are
handled by a separate switch that takes precedence over the list.

Example:
    policy = create_policy(action="block", countries="CN,RU", allow_empty_country=True)

    verdict = decide("RU", False, policy)
    assert verdict is Verdict.DENY
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from geoauth.core.exceptions import ConfigError
from geoauth.geo.provider import LookupResult


class PolicyMode(Enum):
    """How the country list is applied."""

    ALLOW = "allow"
    BLOCK = "block"

    @classmethod
    def parse(cls, value: str | PolicyMode) -> PolicyMode:
        if isinstance(value, PolicyMode):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigError(
                "Invalid action specified. Supported values are: allow, block"
            ) from None


class Verdict(Enum):
    """Outcome of a policy decision."""

    ALLOW = "allow"
    DENY = "deny"

    @property
    def status(self) -> int:
        """HTTP status the forward-auth hook answers with."""
        return 200 if self is Verdict.ALLOW else 403


@dataclass(frozen=True)
class Policy:
    """Immutable allow/deny rule set shared by all requests."""

    mode: PolicyMode = PolicyMode.ALLOW
    countries: frozenset[str] = field(default_factory=frozenset)
    allow_empty_country: bool = False

    def evaluate(self, result: LookupResult) -> Verdict:
        """Decide on a lookup result."""
        return decide(result.country_code, result.is_empty, self)


def decide(country_code: str | None, is_empty: bool, policy: Policy) -> Verdict:
    """Map a resolved country to a verdict.

    Args:
        country_code: ISO country code from the lookup (ignored when empty).
        is_empty: True when the lookup produced no country.
        policy: The configured policy.

    Returns:
        Verdict.ALLOW or Verdict.DENY.
    """
    if is_empty:
        return Verdict.ALLOW if policy.allow_empty_country else Verdict.DENY

    in_list = country_code in policy.countries

    if policy.mode is PolicyMode.ALLOW:
        return Verdict.ALLOW if in_list else Verdict.DENY
    return Verdict.DENY if in_list else Verdict.ALLOW


def parse_countries(countries: str | Iterable[str]) -> frozenset[str]:
    """Normalize a comma separated list (or iterable) of country codes."""
    if isinstance(countries, str):
        countries = countries.split(",")
    return frozenset(code.strip().upper() for code in countries if code.strip())


def create_policy(
    action: str | PolicyMode = "allow",
    countries: str | Iterable[str] = "IT",
    allow_empty_country: bool = False,
) -> Policy:
    """Create a policy from configuration values.

    Raises:
        ConfigError: If ``action`` is not "allow" or "block".
    """
    return Policy(
        mode=PolicyMode.parse(action),
        countries=parse_countries(countries),
        allow_empty_country=allow_empty_country,
    )
