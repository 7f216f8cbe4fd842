"""Tests for state file persistence."""

import json

import pytest

from stackpilot.exceptions import ErrorType, StackError
from stackpilot.models import PortMapping, ServiceInfo, StackState
from stackpilot.state import StateStore, state_file_path, state_from_dict, state_to_dict


@pytest.fixture
def store(logger):
    return StateStore(logger)


def sample_state():
    return StackState(
        config_name="web",
        project_name="web-testapi-134530",
        services={
            "web": ServiceInfo("abc123", "web-testapi-134530-web-1", "RUNNING",
                               [PortMapping(8080, 80), PortMapping(5353, 53, "udp")]),
            "db": ServiceInfo("def456", "web-testapi-134530-db-1", "HEALTHY"),
        },
        networks=["web-testapi-134530_default"],
    )


class TestStatePaths:

    def test_suite_path(self, tmp_path):
        assert state_file_path(tmp_path, "web") == tmp_path / "web-state.json"

    def test_unit_path(self, tmp_path):
        assert state_file_path(tmp_path, "web", "testapi") == tmp_path / "web-testapi-state.json"


class TestStateStore:

    def test_write_then_read(self, store, tmp_path):
        path = store.write(sample_state(), tmp_path / "nested" / "web-state.json", lifecycle="class")

        assert path.exists()
        assert store.read(path) == sample_state()

    def test_written_document_layout(self, store, tmp_path):
        path = store.write(sample_state(), tmp_path / "web-state.json", lifecycle="suite", testUnit=None)
        data = json.loads(path.read_text())

        assert data["configName"] == "web"
        assert data["lifecycle"] == "suite"
        assert "testUnit" not in data
        assert "timestamp" in data
        assert data["services"]["web"]["publishedPorts"][0] == {
            "hostPort": 8080, "containerPort": 80, "protocol": "tcp",
        }

    def test_empty_state(self, store, tmp_path):
        state = StackState("web", "web")
        path = store.write(state, tmp_path / "web-state.json")
        assert store.read(path) == state

    def test_missing_file(self, store, tmp_path):
        path = tmp_path / "absent-state.json"
        with pytest.raises(StackError) as exc_info:
            store.read(path)
        assert exc_info.value.error_type == ErrorType.STATE_IO_ERROR
        assert str(path) in exc_info.value.message

    def test_invalid_json(self, store, tmp_path):
        path = tmp_path / "web-state.json"
        path.write_text("{not json")
        with pytest.raises(StackError, match="not valid JSON"):
            store.read(path)

    def test_port_of_wrong_type(self, store, tmp_path):
        data = state_to_dict(sample_state())
        data["services"]["web"]["publishedPorts"][0]["hostPort"] = "8080"
        path = tmp_path / "web-state.json"
        path.write_text(json.dumps(data))

        with pytest.raises(StackError) as exc_info:
            store.read(path)
        assert exc_info.value.error_type == ErrorType.STATE_IO_ERROR
        assert "hostPort" in exc_info.value.message

    def test_delete(self, store, tmp_path):
        path = store.write(sample_state(), tmp_path / "web-state.json")
        assert store.delete(path) is True
        assert not path.exists()
        assert store.delete(path) is False

    def test_write_failure(self, store, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        with pytest.raises(StackError) as exc_info:
            store.write(sample_state(), blocker / "web-state.json")
        assert exc_info.value.error_type == ErrorType.STATE_IO_ERROR


class TestStateFromDict:

    def test_older_key_names(self):
        data = {
            "stackName": "web",
            "projectName": "web",
            "services": {
                "web": {
                    "containerId": "abc",
                    "containerName": "web-web-1",
                    "state": "RUNNING",
                    "publishedPorts": [{"host": 8080, "container": 80}],
                }
            },
        }
        state = state_from_dict(data)
        assert state.config_name == "web"
        assert state.port_for("web", 80) == 8080
        assert state.networks == []

    @pytest.mark.parametrize("mutate", [
        lambda d: d.pop("projectName"),
        lambda d: d.update(services=["web"]),
        lambda d: d.update(networks="bridge"),
        lambda d: d["services"]["web"].update(containerId=42),
        lambda d: d["services"]["web"]["publishedPorts"][0].update(containerPort=True),
    ])
    def test_schema_violations(self, mutate):
        data = state_to_dict(sample_state())
        mutate(data)
        with pytest.raises(ValueError):
            state_from_dict(data)
