import json
from dataclasses import dataclass
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from stackpilot.config import PropertySource
from stackpilot.models import ExecResult
from stackpilot.poller import Clock


@dataclass
class Call:
    command: list
    working_dir: object = None
    timeout: object = None
    env: dict = None

    @property
    def line(self) -> str:
        return " ".join(self.command)


class FakeRunner:
    """Stands in for CommandRunner: records commands and replays scripted results.

    ``on(fragment, *results)`` answers every command whose joined text contains
    ``fragment``; later rules take precedence. Results are used in order and the
    last one repeats. A result that is an exception is raised. Unmatched commands succeed with no output.
    """

    def __init__(self):
        self.calls = []
        self.rules = []

    def on(self, fragment, *results):
        self.rules.append((fragment, list(results)))
        return self

    def execute(self, command, working_dir=None, timeout=None, env=None):
        call = Call(list(command), working_dir, timeout, env)
        self.calls.append(call)
        for fragment, results in reversed(self.rules):
            if fragment in call.line:
                result = results.pop(0) if len(results) > 1 else results[0]
                if isinstance(result, Exception):
                    raise result
                return result
        return ExecResult(0, "", "")

    def lines(self, fragment=""):
        return [c.line for c in self.calls if fragment in c.line]


class FakeClock(Clock):
    """Clock whose time only moves when something sleeps."""

    def __init__(self, now=datetime(2024, 1, 2, 13, 45, 30)):
        self.current = 0.0
        self.sleeps = []
        self.fixed_now = now

    def monotonic(self):
        return self.current

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.current += seconds

    def now(self):
        return self.fixed_now


def ps_line(service, state="running", status=None, ports="", project="demo", health=None, container_id=None):
    """One line of ``docker compose ps --format json`` output."""
    entry = {
        "ID": container_id or f"{service}0123456789abcdef",
        "Name": f"{project}-{service}-1",
        "Service": service,
        "State": state,
        "Status": status or ("Up 5 seconds" if state == "running" else "Exited (0) 1 second ago"),
        "Ports": ports,
    }
    if health:
        entry["Health"] = health
    return json.dumps(entry)


def ok(stdout=""):
    return ExecResult(0, stdout, "")


def failed(stderr="boom", exit_code=1):
    return ExecResult(exit_code, "", stderr)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def logger():
    return MagicMock()


@pytest.fixture
def properties():
    return PropertySource({})


@pytest.fixture
def compose_file(tmp_path):
    path = tmp_path / "docker-compose.yml"
    path.write_text("services:\n  web:\n    image: nginx\n", encoding="utf-8")
    return path


@pytest.fixture
def docker_client():
    """MagicMock shaped like ``docker.DockerClient`` with no containers."""
    client = MagicMock()
    client.containers.list.return_value = []
    return client


def make_container(name, short_id="abc123"):
    container = MagicMock()
    container.name = name
    container.short_id = short_id
    return container
