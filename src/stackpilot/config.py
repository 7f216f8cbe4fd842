"""Stack configuration: the YAML file and the cross-process environment."""
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Mapping, MutableMapping, Optional

import yaml

from .exceptions import ErrorType, StackError
from .models import Lifecycle, LogsConfig, ServiceStatus, StackConfig, WaitConfig
from .utils import split_list

DEFAULT_CONFIG_FILE = "stackpilot.yml"
DEFAULT_STATE_DIR = Path("build") / "compose-state"
DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_POLL_SECONDS = 2

# Keys shared between the driver process and the test process
ENV_STACK = "STACKPILOT_STACK"
ENV_PROJECT = "STACKPILOT_PROJECT"
ENV_FILES = "STACKPILOT_FILES"
ENV_ENV_FILES = "STACKPILOT_ENV_FILES"
ENV_LIFECYCLE = "STACKPILOT_LIFECYCLE"
ENV_WAIT_HEALTHY = "STACKPILOT_WAIT_HEALTHY"
ENV_WAIT_RUNNING = "STACKPILOT_WAIT_RUNNING"
ENV_TIMEOUT = "STACKPILOT_TIMEOUT"
ENV_POLL = "STACKPILOT_POLL"
ENV_STATE_DIR = "STACKPILOT_STATE_DIR"
ENV_DELEGATE = "STACKPILOT_DELEGATE"
ENV_STATE_FILE = "STACKPILOT_STATE_FILE"
ENV_PROJECT_NAME = "STACKPILOT_PROJECT_NAME"

_TRUTHY = {"1", "true", "yes", "on"}


class PropertySource:
    """Process-wide string settings, backed by ``os.environ`` unless told otherwise."""

    def __init__(self, values: MutableMapping[str, str] = None):
        self.values = os.environ if values is None else values

    def get(self, key: str, default: str = None) -> Optional[str]:
        value = self.values.get(key)
        if value is None or not value.strip():
            return default
        return value.strip()

    def set(self, key: str, value: str) -> None:
        self.values[key] = str(value)

    def unset(self, key: str) -> None:
        self.values.pop(key, None)

    def get_list(self, key: str) -> List[str]:
        return split_list(self.get(key))

    def get_bool(self, key: str) -> bool:
        return (self.get(key) or "").lower() in _TRUTHY

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise StackError(ErrorType.CONFIGURATION_ERROR, f"{key} must be an integer, got '{value}'")


@dataclass
class WaitSettings:
    """Services to wait for and how long."""
    services: List[str] = field(default_factory=list)
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    poll_seconds: int = DEFAULT_POLL_SECONDS

    def to_wait_config(self, project_name: str, target: ServiceStatus) -> Optional[WaitConfig]:
        if not self.services:
            return None
        return WaitConfig(
            project_name=project_name,
            services=list(self.services),
            timeout=timedelta(seconds=self.timeout_seconds),
            poll_interval=timedelta(seconds=self.poll_seconds),
            target_status=target,
        )


@dataclass
class StackDefinition:
    """One stack from the configuration file."""
    name: str
    files: List[Path] = field(default_factory=list)
    env_files: List[Path] = field(default_factory=list)
    project_name: str = None
    profiles: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    wait_for_healthy: WaitSettings = field(default_factory=WaitSettings)
    wait_for_running: WaitSettings = field(default_factory=WaitSettings)
    logs: Optional[LogsConfig] = None
    lifecycle: Lifecycle = Lifecycle.SUITE
    delegate_stack_management: bool = False

    def __post_init__(self):
        if not self.project_name:
            self.project_name = self.name

    def to_stack_config(self, project_name: str = None) -> StackConfig:
        return StackConfig(
            stack_name=self.name,
            project_name=project_name or self.project_name,
            compose_files=list(self.files),
            env_files=list(self.env_files),
            profiles=list(self.profiles),
            environment=dict(self.environment),
        )

    def wait_configs(self, project_name: str = None) -> List[WaitConfig]:
        """Healthy waits first, then running waits."""
        project_name = project_name or self.project_name
        configs = [
            self.wait_for_healthy.to_wait_config(project_name, ServiceStatus.HEALTHY),
            self.wait_for_running.to_wait_config(project_name, ServiceStatus.RUNNING),
        ]
        return [c for c in configs if c is not None]

    def to_environment(self, state_dir: Path) -> Dict[str, str]:
        """Settings a test process needs to find or manage this stack."""
        env = {
            ENV_STACK: self.name,
            ENV_PROJECT: self.project_name,
            ENV_FILES: ",".join(str(f) for f in self.files),
            ENV_LIFECYCLE: self.lifecycle.value,
            ENV_STATE_DIR: str(state_dir),
        }
        if self.env_files:
            env[ENV_ENV_FILES] = ",".join(str(f) for f in self.env_files)
        wait = self.wait_for_healthy if self.wait_for_healthy.services else self.wait_for_running
        if self.wait_for_healthy.services:
            env[ENV_WAIT_HEALTHY] = ",".join(self.wait_for_healthy.services)
        if self.wait_for_running.services:
            env[ENV_WAIT_RUNNING] = ",".join(self.wait_for_running.services)
        env[ENV_TIMEOUT] = str(wait.timeout_seconds)
        env[ENV_POLL] = str(wait.poll_seconds)
        return env


@dataclass
class PilotConfig:
    """Parsed ``stackpilot.yml``."""
    stacks: Dict[str, StackDefinition] = field(default_factory=dict)
    state_dir: Path = DEFAULT_STATE_DIR
    log_file: str = "stackpilot.log"

    def stack(self, name: str) -> StackDefinition:
        try:
            return self.stacks[name]
        except KeyError:
            known = ", ".join(sorted(self.stacks)) or "none"
            raise StackError(ErrorType.CONFIGURATION_ERROR,
                             f"Unknown stack '{name}' (configured stacks: {known})")


def _as_list(value, what: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    raise StackError(ErrorType.CONFIGURATION_ERROR, f"{what} must be a string or a list")


def _parse_wait(raw, what: str) -> WaitSettings:
    if raw is None:
        return WaitSettings()
    if isinstance(raw, list):
        return WaitSettings(services=[str(s) for s in raw])
    if not isinstance(raw, dict):
        raise StackError(ErrorType.CONFIGURATION_ERROR, f"{what} must be a list of services or a mapping")
    settings = WaitSettings(
        services=_as_list(raw.get("services"), f"{what}.services"),
        timeout_seconds=int(raw.get("timeout", DEFAULT_TIMEOUT_SECONDS)),
        poll_seconds=int(raw.get("poll", DEFAULT_POLL_SECONDS)),
    )
    if settings.poll_seconds <= 0 or settings.timeout_seconds <= settings.poll_seconds:
        raise StackError(ErrorType.CONFIGURATION_ERROR,
                         f"{what}: poll must be positive and shorter than timeout")
    return settings


def parse_stack(name: str, raw: Mapping, base_dir: Path, logger: logging.Logger = None) -> StackDefinition:
    """Build a ``StackDefinition`` from its YAML mapping."""
    logger = logger or logging.getLogger("StackPilot")
    if not isinstance(raw, Mapping):
        raise StackError(ErrorType.CONFIGURATION_ERROR, f"Stack '{name}' must be a mapping")

    files = [base_dir / f for f in _as_list(raw.get("files"), f"stacks.{name}.files")]
    delegate = bool(raw.get("delegate_stack_management", False))
    if delegate and files:
        # both given: the delegate flag wins
        logger.warning(f"Stack '{name}' sets both compose files and delegate_stack_management; "
                       f"the compose files are ignored and the stack is expected to be managed elsewhere")
        files = []
    elif not files and not delegate:
        raise StackError(ErrorType.CONFIGURATION_ERROR, f"Stack '{name}' has no compose files")

    environment = raw.get("environment") or {}
    if not isinstance(environment, Mapping):
        raise StackError(ErrorType.CONFIGURATION_ERROR, f"stacks.{name}.environment must be a mapping")

    logs = None
    if raw.get("logs") is not None:
        raw_logs = raw["logs"] or {}
        output_file = raw_logs.get("output_file")
        logs = LogsConfig(
            services=_as_list(raw_logs.get("services"), f"stacks.{name}.logs.services"),
            tail_lines=int(raw_logs.get("tail", 100)),
            follow=bool(raw_logs.get("follow", False)),
            output_file=base_dir / output_file if output_file else None,
        )

    try:
        lifecycle = Lifecycle.parse(raw.get("lifecycle"))
    except ValueError as e:
        raise StackError(ErrorType.CONFIGURATION_ERROR, f"Stack '{name}': {e}")

    return StackDefinition(
        name=name,
        files=files,
        env_files=[base_dir / f for f in _as_list(raw.get("env_files"), f"stacks.{name}.env_files")],
        project_name=raw.get("project_name"),
        profiles=_as_list(raw.get("profiles"), f"stacks.{name}.profiles"),
        environment={str(k): str(v) for k, v in environment.items()},
        wait_for_healthy=_parse_wait(raw.get("wait_for_healthy"), f"stacks.{name}.wait_for_healthy"),
        wait_for_running=_parse_wait(raw.get("wait_for_running"), f"stacks.{name}.wait_for_running"),
        logs=logs,
        lifecycle=lifecycle,
        delegate_stack_management=delegate,
    )


def load_config(config_file: str = DEFAULT_CONFIG_FILE, logger: logging.Logger = None) -> PilotConfig:
    """Load configuration from a YAML file."""
    logger = logger or logging.getLogger("StackPilot")
    path = Path(config_file)
    if not path.exists():
        raise StackError(ErrorType.CONFIGURATION_ERROR, f"Configuration file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise StackError(ErrorType.CONFIGURATION_ERROR, f"Invalid YAML in {path}: {e}")
    if not isinstance(raw, dict):
        raise StackError(ErrorType.CONFIGURATION_ERROR, f"{path} must contain a mapping")

    base_dir = path.resolve().parent
    stacks = {
        name: parse_stack(name, stack_raw, base_dir, logger)
        for name, stack_raw in (raw.get("stacks") or {}).items()
    }
    config = PilotConfig(
        stacks=stacks,
        state_dir=base_dir / raw.get("state_dir", str(DEFAULT_STATE_DIR)),
        log_file=raw.get("log_file", "stackpilot.log"),
    )
    logger.info(f"Configuration loaded from {path} ({len(stacks)} stack(s))")
    return config


def stack_from_properties(properties: PropertySource, base_dir: Path = None) -> StackDefinition:
    """Rebuild a ``StackDefinition`` in the test process from ``STACKPILOT_*`` settings.

    Fails fast when the stack name is missing or blank.
    """
    base_dir = Path(base_dir or Path.cwd())
    name = properties.get(ENV_STACK)
    if not name:
        raise StackError(
            ErrorType.CONFIGURATION_ERROR,
            f"Stack name not configured: set {ENV_STACK} (for example through 'stackpilot test <stack>')",
        )
    timeout = properties.get_int(ENV_TIMEOUT, DEFAULT_TIMEOUT_SECONDS)
    poll = properties.get_int(ENV_POLL, DEFAULT_POLL_SECONDS)
    try:
        lifecycle = Lifecycle.parse(properties.get(ENV_LIFECYCLE))
    except ValueError as e:
        raise StackError(ErrorType.CONFIGURATION_ERROR, str(e))
    return StackDefinition(
        name=name,
        files=[base_dir / f for f in properties.get_list(ENV_FILES)],
        env_files=[base_dir / f for f in properties.get_list(ENV_ENV_FILES)],
        project_name=properties.get(ENV_PROJECT),
        wait_for_healthy=WaitSettings(properties.get_list(ENV_WAIT_HEALTHY), timeout, poll),
        wait_for_running=WaitSettings(properties.get_list(ENV_WAIT_RUNNING), timeout, poll),
        lifecycle=lifecycle,
        delegate_stack_management=properties.get_bool(ENV_DELEGATE),
    )


def state_dir_from_properties(properties: PropertySource, default: Path = DEFAULT_STATE_DIR) -> Path:
    return Path(properties.get(ENV_STATE_DIR) or default)
