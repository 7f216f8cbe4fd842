"""Tests for the HTTP health probe."""

from unittest.mock import MagicMock

import pytest
import requests

from stackpilot.health import HealthProbe
from stackpilot.models import PortMapping, ServiceInfo, StackState


def response(status_code):
    return MagicMock(status_code=status_code)


@pytest.fixture
def session():
    return MagicMock()


class TestHealthProbe:

    def test_first_attempt_succeeds(self, clock, logger, session):
        session.get.return_value = response(200)

        assert HealthProbe(clock, logger, session).check(8080) is True
        session.get.assert_called_once_with("http://localhost:8080/health", timeout=5)
        assert clock.sleeps == []

    def test_retries_until_ok(self, clock, logger, session):
        session.get.side_effect = [
            requests.exceptions.ConnectionError("refused"),
            response(503),
            response(200),
        ]

        assert HealthProbe(clock, logger, session).check(8080, "ready", retry_delay=2) is True
        assert session.get.call_count == 3
        assert session.get.call_args[0][0] == "http://localhost:8080/ready"
        assert clock.sleeps == [2, 2]

    def test_gives_up(self, clock, logger, session):
        session.get.return_value = response(500)

        assert HealthProbe(clock, logger, session).check(8080, max_retries=4) is False
        assert session.get.call_count == 4
        assert len(clock.sleeps) == 3
        logger.error.assert_called_once()

    def test_check_service_resolves_host_port(self, clock, logger, session):
        session.get.return_value = response(200)
        state = StackState("web", "web", {"api": ServiceInfo("abc", "web-api-1", "RUNNING",
                                                             [PortMapping(49153, 8000)])})

        assert HealthProbe(clock, logger, session).check_service(state, "api", 8000, "/status") is True
        session.get.assert_called_once_with("http://localhost:49153/status", timeout=5)

    def test_check_service_unknown_port(self, clock, logger, session):
        state = StackState("web", "web", {"api": ServiceInfo("abc", "web-api-1", "RUNNING")})
        with pytest.raises(KeyError):
            HealthProbe(clock, logger, session).check_service(state, "api", 8000)
