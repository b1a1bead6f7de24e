"""Tests for the country policy and decision function."""

from __future__ import annotations

import pytest

from geoauth.core.exceptions import ConfigError
from geoauth.geo.policy import (
    Policy,
    PolicyMode,
    Verdict,
    create_policy,
    decide,
    parse_countries,
)
from geoauth.geo.provider import LookupResult

CODES = ["IT", "FR", "DE", "US", "CN"]
COUNTRY_SETS = [frozenset(), frozenset({"IT"}), frozenset({"IT", "FR"}), frozenset(CODES)]


class TestDecide:
    """Tests for decide()."""

    @pytest.mark.parametrize("countries", COUNTRY_SETS)
    @pytest.mark.parametrize("code", CODES)
    def test_allow_mode_allows_only_listed(self, countries, code):
        """In allow mode a country passes iff it is listed."""
        policy = Policy(mode=PolicyMode.ALLOW, countries=countries)
        verdict = decide(code, False, policy)
        assert (verdict is Verdict.ALLOW) == (code in countries)

    @pytest.mark.parametrize("countries", COUNTRY_SETS)
    @pytest.mark.parametrize("code", CODES)
    def test_block_mode_denies_only_listed(self, countries, code):
        """In block mode a country is refused iff it is listed."""
        policy = Policy(mode=PolicyMode.BLOCK, countries=countries)
        verdict = decide(code, False, policy)
        assert (verdict is Verdict.DENY) == (code in countries)

    @pytest.mark.parametrize("mode", list(PolicyMode))
    @pytest.mark.parametrize("countries", COUNTRY_SETS)
    @pytest.mark.parametrize("allow_empty", [True, False])
    def test_empty_result_follows_allow_empty(self, mode, countries, allow_empty):
        """Empty results ignore mode and list."""
        policy = Policy(mode=mode, countries=countries, allow_empty_country=allow_empty)
        verdict = decide(None, True, policy)
        assert (verdict is Verdict.ALLOW) == allow_empty

    def test_empty_takes_precedence_over_list(self):
        """A listed code flagged empty is still treated as empty."""
        policy = Policy(mode=PolicyMode.ALLOW, countries=frozenset({"IT"}))
        assert decide("IT", True, policy) is Verdict.DENY

    def test_evaluate_uses_lookup_result(self):
        """Test Policy.evaluate on lookup results."""
        policy = create_policy("allow", "IT")
        assert policy.evaluate(LookupResult(ip="1.1.1.1", country_code="IT")) is Verdict.ALLOW
        assert policy.evaluate(LookupResult(ip="1.1.1.1", country_code="FR")) is Verdict.DENY
        assert policy.evaluate(LookupResult(ip="10.0.0.1")) is Verdict.DENY


class TestVerdict:
    """Tests for Verdict."""

    def test_status_codes(self):
        assert Verdict.ALLOW.status == 200
        assert Verdict.DENY.status == 403


class TestLookupResult:
    """Tests for LookupResult."""

    def test_is_empty(self):
        assert LookupResult(ip="10.0.0.1").is_empty is True
        assert LookupResult(ip="10.0.0.1", country_code="").is_empty is True
        assert LookupResult(ip="151.100.0.1", country_code="IT").is_empty is False


class TestCreatePolicy:
    """Tests for policy construction."""

    def test_defaults(self):
        """Test default policy matches the CLI defaults."""
        policy = create_policy()
        assert policy.mode is PolicyMode.ALLOW
        assert policy.countries == frozenset({"IT"})
        assert policy.allow_empty_country is False

    def test_block_mode(self):
        policy = create_policy(action="block", countries="CN,RU", allow_empty_country=True)
        assert policy.mode is PolicyMode.BLOCK
        assert policy.countries == frozenset({"CN", "RU"})
        assert policy.allow_empty_country is True

    def test_action_is_case_insensitive(self):
        assert create_policy(action=" BLOCK ").mode is PolicyMode.BLOCK

    def test_invalid_action_raises(self):
        """Test unknown action is a configuration error."""
        with pytest.raises(ConfigError, match="allow, block"):
            create_policy(action="deny")

    def test_policy_is_immutable(self):
        policy = create_policy()
        with pytest.raises(AttributeError):
            policy.mode = PolicyMode.BLOCK  # type: ignore[misc]


class TestParseCountries:
    """Tests for parse_countries()."""

    def test_comma_separated(self):
        assert parse_countries("IT,FR,DE") == frozenset({"IT", "FR", "DE"})

    def test_normalizes_case_and_spaces(self):
        assert parse_countries(" it , Fr ") == frozenset({"IT", "FR"})

    def test_drops_empty_entries(self):
        assert parse_countries("IT,,FR,") == frozenset({"IT", "FR"})
        assert parse_countries("") == frozenset()

    def test_iterable(self):
        assert parse_countries(["it", "fr"]) == frozenset({"IT", "FR"})
