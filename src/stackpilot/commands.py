"""Construction of compose and docker command lines."""
from typing import List

from .models import LogsConfig, StackConfig

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"


def build_up_command(compose: List[str], config: StackConfig) -> List[str]:
    """``<compose> -f a.yml -f b.yml --env-file x -p <project> [--profile p] up -d``"""
    command = list(compose)
    for compose_file in config.compose_files:
        command.extend(["-f", str(compose_file)])
    for env_file in config.env_files:
        command.extend(["--env-file", str(env_file)])
    command.extend(["-p", config.project_name])
    for profile in config.profiles:
        command.extend(["--profile", profile])
    command.extend(["up", "-d"])
    return command


def build_down_command(compose: List[str], project_name: str, compose_files: List = None,
                       remove_volumes: bool = False) -> List[str]:
    command = list(compose)
    for compose_file in compose_files or []:
        command.extend(["-f", str(compose_file)])
    command.extend(["-p", project_name, "down", "--remove-orphans"])
    if remove_volumes:
        command.append("--volumes")
    return command


def build_ps_command(compose: List[str], project_name: str) -> List[str]:
    return list(compose) + ["-p", project_name, "ps", "--all", "--format", "json"]


def build_logs_command(compose: List[str], project_name: str, config: LogsConfig) -> List[str]:
    command = list(compose) + ["-p", project_name, "logs", "--no-color"]
    if config.follow:
        command.append("--follow")
    command.extend(["--tail", str(config.tail_lines)])
    command.extend(config.services)
    return command


def build_network_list_command(project_name: str) -> List[str]:
    return ["docker", "network", "ls",
            "--filter", f"label={COMPOSE_PROJECT_LABEL}={project_name}",
            "--format", "{{.Name}}"]
