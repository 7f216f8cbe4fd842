"""Tests for stack data models."""

from datetime import timedelta
from pathlib import Path

import pytest

from stackpilot.exceptions import ErrorType, ServicesTimeoutError, StackError
from stackpilot.models import (ExecResult, Lifecycle, LogsConfig, PortMapping, ServiceInfo,
                               ServiceStatus, StackConfig, StackState, WaitConfig)


class TestServiceStatus:

    def test_running_target_accepts_healthy(self):
        assert ServiceStatus.HEALTHY.satisfies(ServiceStatus.RUNNING)
        assert ServiceStatus.RUNNING.satisfies(ServiceStatus.RUNNING)

    def test_healthy_target_rejects_running(self):
        assert not ServiceStatus.RUNNING.satisfies(ServiceStatus.HEALTHY)
        assert ServiceStatus.HEALTHY.satisfies(ServiceStatus.HEALTHY)

    def test_other_targets_need_exact_match(self):
        assert ServiceStatus.STOPPED.satisfies(ServiceStatus.STOPPED)
        assert not ServiceStatus.RESTARTING.satisfies(ServiceStatus.STOPPED)
        assert not ServiceStatus.UNKNOWN.satisfies(ServiceStatus.RUNNING)

    def test_from_state_accepts_names_and_raw_text(self):
        assert ServiceStatus.from_state("HEALTHY") == ServiceStatus.HEALTHY
        assert ServiceStatus.from_state("Up 3 minutes") == ServiceStatus.RUNNING
        assert ServiceStatus.from_state("") == ServiceStatus.UNKNOWN


class TestLifecycle:

    def test_parse_defaults_to_suite(self):
        assert Lifecycle.parse(None) == Lifecycle.SUITE
        assert Lifecycle.parse("") == Lifecycle.SUITE

    def test_parse_is_case_insensitive(self):
        assert Lifecycle.parse(" Method ") == Lifecycle.METHOD

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown lifecycle"):
            Lifecycle.parse("forever")


class TestExecResult:

    def test_none_output_becomes_empty(self):
        result = ExecResult(0, None, None)
        assert result.stdout == ""
        assert result.stderr == ""
        assert result.is_success

    def test_output_combines_streams(self):
        result = ExecResult(1, "out\n", "err")
        assert not result.is_success
        assert result.output == "out\nerr"


class TestPortMapping:

    def test_defaults_to_tcp(self):
        assert PortMapping(8080, 80).protocol == "tcp"

    @pytest.mark.parametrize("host, container", [(0, 80), (8080, -1), ("8080", 80), (True, 80)])
    def test_rejects_invalid_ports(self, host, container):
        with pytest.raises(ValueError):
            PortMapping(host, container)


class TestStackState:

    def _state(self):
        web = ServiceInfo("abc", "demo-web-1", "RUNNING", [PortMapping(8080, 80), PortMapping(5353, 53, "udp")])
        return StackState("demo", "demo", {"web": web})

    def test_port_for(self):
        state = self._state()
        assert state.port_for("web", 80) == 8080
        assert state.port_for("web", 53, "udp") == 5353

    def test_port_for_unknown_service(self):
        with pytest.raises(KeyError):
            self._state().port_for("db", 5432)

    def test_port_for_unpublished_port(self):
        with pytest.raises(KeyError):
            self._state().port_for("web", 443)

    def test_service_ports_are_immutable(self):
        info = ServiceInfo("abc", "web", "RUNNING", [PortMapping(1, 2)])
        assert isinstance(info.published_ports, tuple)


class TestStackConfig:

    def test_requires_compose_file(self):
        with pytest.raises(ValueError):
            StackConfig("demo", "demo", [])

    def test_working_dir_is_first_file_parent(self, tmp_path):
        config = StackConfig("demo", "demo", [str(tmp_path / "a.yml"), "/elsewhere/b.yml"])
        assert config.working_dir == tmp_path

    def test_relative_paths_become_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = StackConfig("demo", "demo", ["compose/app.yml"], env_files=["compose/.env"])

        compose_dir = Path.cwd() / "compose"
        assert config.compose_files == [compose_dir / "app.yml"]
        assert config.env_files == [compose_dir / ".env"]
        assert config.working_dir == compose_dir


class TestWaitConfig:

    def test_defaults(self):
        config = WaitConfig("demo", ["web"])
        assert config.timeout == timedelta(seconds=60)
        assert config.poll_interval == timedelta(seconds=2)
        assert config.target_status == ServiceStatus.RUNNING

    def test_accepts_seconds(self):
        config = WaitConfig("demo", ["web"], timeout=5, poll_interval=0.5)
        assert config.timeout == timedelta(seconds=5)
        assert config.poll_interval == timedelta(milliseconds=500)

    def test_requires_services(self):
        with pytest.raises(ValueError):
            WaitConfig("demo", [])

    def test_poll_must_be_shorter_than_timeout(self):
        with pytest.raises(ValueError, match="shorter"):
            WaitConfig("demo", ["web"], timeout=2, poll_interval=2)


class TestLogsConfig:

    def test_tail_has_floor_of_one(self):
        assert LogsConfig(tail_lines=0).tail_lines == 1
        assert LogsConfig(tail_lines=-5).tail_lines == 1
        assert LogsConfig().tail_lines == 100


class TestErrors:

    def test_default_suggestion(self):
        error = StackError(ErrorType.START_FAILURE, "up failed")
        assert error.suggestion == ErrorType.START_FAILURE.default_suggestion
        assert "Suggestion:" in error.formatted_message
        assert str(error) == "up failed"

    def test_timeout_error_names_unready_services(self):
        error = ServicesTimeoutError("demo", ["db", "cache"], "HEALTHY", 60.0)
        assert error.error_type == ErrorType.TIMEOUT_WAITING_FOR_SERVICES
        assert error.unready_services == ["db", "cache"]
        assert "60s" in error.message
        assert "db, cache" in error.message
