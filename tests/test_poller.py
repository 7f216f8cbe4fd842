"""Tests for readiness polling."""

import pytest

from stackpilot.exceptions import ErrorType, ServicesTimeoutError
from stackpilot.models import ServiceInfo, ServiceStatus, WaitConfig
from stackpilot.poller import ReadinessPoller


def service(status):
    return ServiceInfo("abc", "demo-web-1", status.value)


class ScriptedLister:
    """Returns scripted service maps; the last one repeats."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def __call__(self, project_name):
        self.calls += 1
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class TestReadinessPoller:

    def test_returns_immediately_when_ready(self, clock, logger):
        lister = ScriptedLister({"web": service(ServiceStatus.RUNNING)})
        poller = ReadinessPoller(lister, clock, logger)

        assert poller.wait(WaitConfig("demo", ["web"])) == ServiceStatus.RUNNING
        assert lister.calls == 1
        assert clock.sleeps == []

    def test_running_target_accepts_healthy(self, clock, logger):
        lister = ScriptedLister({"db": service(ServiceStatus.HEALTHY)})
        status = ReadinessPoller(lister, clock, logger).wait(WaitConfig("demo", ["db"]))
        assert status == ServiceStatus.RUNNING

    def test_polls_until_ready(self, clock, logger):
        lister = ScriptedLister(
            {},
            {"web": service(ServiceStatus.RESTARTING)},
            {"web": service(ServiceStatus.HEALTHY)},
        )
        config = WaitConfig("demo", ["web"], timeout=10, poll_interval=1,
                            target_status=ServiceStatus.HEALTHY)

        assert ReadinessPoller(lister, clock, logger).wait(config) == ServiceStatus.HEALTHY
        assert lister.calls == 3
        assert clock.sleeps == [1.0, 1.0]

    def test_healthy_target_times_out_on_running(self, clock, logger):
        lister = ScriptedLister({"web": service(ServiceStatus.RUNNING)})
        config = WaitConfig("demo", ["web"], timeout=1, poll_interval=0.1,
                            target_status=ServiceStatus.HEALTHY)

        with pytest.raises(ServicesTimeoutError) as exc_info:
            ReadinessPoller(lister, clock, logger).wait(config)

        assert exc_info.value.error_type == ErrorType.TIMEOUT_WAITING_FOR_SERVICES
        assert exc_info.value.unready_services == ["web"]
        assert 10 <= lister.calls <= 12

    def test_missing_service_is_not_ready(self, clock, logger):
        lister = ScriptedLister({"web": service(ServiceStatus.RUNNING)})
        config = WaitConfig("demo", ["web", "db"], timeout=5, poll_interval=1)

        with pytest.raises(ServicesTimeoutError) as exc_info:
            ReadinessPoller(lister, clock, logger).wait(config)
        assert exc_info.value.unready_services == ["db"]

    def test_status_check_errors_count_toward_timeout(self, clock, logger):
        lister = ScriptedLister(RuntimeError("daemon unavailable"))
        config = WaitConfig("demo", ["web"], timeout=3, poll_interval=1)

        with pytest.raises(ServicesTimeoutError) as exc_info:
            ReadinessPoller(lister, clock, logger).wait(config)

        assert "daemon unavailable" in exc_info.value.message
        assert clock.current >= 3
        assert logger.warning.called

    def test_recovers_after_status_check_error(self, clock, logger):
        lister = ScriptedLister(RuntimeError("transient"), {"web": service(ServiceStatus.RUNNING)})
        config = WaitConfig("demo", ["web"], timeout=5, poll_interval=1)

        assert ReadinessPoller(lister, clock, logger).wait(config) == ServiceStatus.RUNNING
        assert lister.calls == 2

    def test_unready_services(self):
        services = {"web": service(ServiceStatus.RUNNING), "db": service(ServiceStatus.STOPPED)}
        config = WaitConfig("demo", ["web", "db", "cache"])
        assert ReadinessPoller.unready_services(services, config) == ["db", "cache"]
