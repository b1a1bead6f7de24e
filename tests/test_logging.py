"""Tests for structlog setup."""

from __future__ import annotations

import json

import pytest
import structlog

from geoauth.core.logging import configure_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_json_output_at_info(self, capsys):
        """Test production mode emits JSON and drops debug lines."""
        configure_logging(debug=False)
        logger = structlog.get_logger()

        logger.debug("MaxMind database lookup", ip="1.1.1.1")
        logger.error("MaxMind database lookup failed", error="corrupt data")

        lines = capsys.readouterr().err.strip().splitlines()
        assert len(lines) == 1
        event = json.loads(lines[0])
        assert event["event"] == "MaxMind database lookup failed"
        assert event["level"] == "error"
        assert event["error"] == "corrupt data"
        assert "timestamp" in event

    def test_debug_output(self, capsys):
        """Test debug mode keeps debug lines."""
        configure_logging(debug=True)
        structlog.get_logger().debug("Request allowed", country="IT")

        err = capsys.readouterr().err
        assert "Request allowed" in err
        assert "country" in err
