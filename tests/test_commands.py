"""Tests for compose command line construction."""

from pathlib import Path

from stackpilot.commands import (build_down_command, build_logs_command, build_network_list_command,
                                 build_ps_command, build_up_command)
from stackpilot.models import LogsConfig, StackConfig

COMPOSE = ["docker", "compose"]


def test_up_command_orders_files_and_options():
    config = StackConfig("demo", "demo-test", ["a.yml", "b.yml"], env_files=[".env"], profiles=["debug"])
    cwd = Path.cwd()
    assert build_up_command(COMPOSE, config) == [
        "docker", "compose", "-f", str(cwd / "a.yml"), "-f", str(cwd / "b.yml"), "--env-file", str(cwd / ".env"),
        "-p", "demo-test", "--profile", "debug", "up", "-d",
    ]


def test_up_command_does_not_mutate_prefix():
    build_up_command(COMPOSE, StackConfig("demo", "demo", ["a.yml"]))
    assert COMPOSE == ["docker", "compose"]


def test_down_command():
    assert build_down_command(["docker-compose"], "demo") == [
        "docker-compose", "-p", "demo", "down", "--remove-orphans",
    ]


def test_down_command_with_files_and_volumes():
    command = build_down_command(COMPOSE, "demo", [Path("a.yml")], remove_volumes=True)
    assert command == ["docker", "compose", "-f", "a.yml", "-p", "demo", "down", "--remove-orphans", "--volumes"]


def test_ps_command():
    assert build_ps_command(COMPOSE, "demo") == ["docker", "compose", "-p", "demo", "ps", "--all", "--format", "json"]


def test_logs_command():
    config = LogsConfig(services=["web", "db"], tail_lines=50, follow=True)
    assert build_logs_command(COMPOSE, "demo", config) == [
        "docker", "compose", "-p", "demo", "logs", "--no-color", "--follow", "--tail", "50", "web", "db",
    ]


def test_network_list_command():
    command = build_network_list_command("demo")
    assert command[:3] == ["docker", "network", "ls"]
    assert "label=com.docker.compose.project=demo" in command
