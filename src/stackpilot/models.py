"""Data models for Stack Pilot."""
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


class LogLevel(Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ServiceStatus(Enum):
    """Classified status of a compose service."""
    RUNNING = "RUNNING"
    HEALTHY = "HEALTHY"
    STOPPED = "STOPPED"
    RESTARTING = "RESTARTING"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_state(cls, state: str) -> "ServiceStatus":
        """Resolve a stored state string, accepting enum names or raw compose text."""
        if not state:
            return cls.UNKNOWN
        try:
            return cls[state.strip().upper()]
        except KeyError:
            from .utils import classify_status
            return classify_status(state)

    def satisfies(self, target: "ServiceStatus") -> bool:
        """Check whether this status meets a readiness target.

        HEALTHY counts as RUNNING; every other target needs an exact match.
        """
        if target == ServiceStatus.RUNNING:
            return self in (ServiceStatus.RUNNING, ServiceStatus.HEALTHY)
        return self == target


class Lifecycle(Enum):
    """How long a stack lives relative to the tests using it."""
    SUITE = "suite"
    CLASS = "class"
    METHOD = "method"

    @classmethod
    def parse(cls, value: Optional[str], default: "Lifecycle" = None) -> "Lifecycle":
        if not value:
            return default or cls.SUITE
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown lifecycle '{value}', expected one of: suite, class, method")


@dataclass(frozen=True)
class ExecResult:
    """Outcome of one external command."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __post_init__(self):
        if self.stdout is None:
            object.__setattr__(self, "stdout", "")
        if self.stderr is None:
            object.__setattr__(self, "stderr", "")

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Stdout followed by stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


@dataclass(frozen=True)
class PortMapping:
    """Published port of a service container."""
    host_port: int
    container_port: int
    protocol: str = "tcp"

    def __post_init__(self):
        for name in ("host_port", "container_port"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if not self.protocol:
            object.__setattr__(self, "protocol", "tcp")


@dataclass(frozen=True)
class ServiceInfo:
    """One service as reported by the compose ``ps`` command."""
    container_id: str
    container_name: str
    state: str
    published_ports: tuple = ()

    def __post_init__(self):
        object.__setattr__(self, "published_ports", tuple(self.published_ports))

    @property
    def status(self) -> ServiceStatus:
        return ServiceStatus.from_state(self.state)

    def host_port(self, container_port: int, protocol: str = "tcp") -> Optional[int]:
        """Return the host port published for a container port, if any."""
        for mapping in self.published_ports:
            if mapping.container_port == container_port and mapping.protocol == protocol:
                return mapping.host_port
        return None


@dataclass
class StackState:
    """Discovered state of a running stack, persisted for other processes."""
    config_name: str
    project_name: str
    services: Dict[str, ServiceInfo] = field(default_factory=dict)
    networks: List[str] = field(default_factory=list)

    def port_for(self, service: str, container_port: int, protocol: str = "tcp") -> int:
        """Host port of a service's container port; raises KeyError when unpublished."""
        info = self.services.get(service)
        if info is None:
            raise KeyError(f"Service '{service}' not present in stack '{self.config_name}'")
        host_port = info.host_port(container_port, protocol)
        if host_port is None:
            raise KeyError(f"Service '{service}' does not publish {container_port}/{protocol}")
        return host_port


@dataclass
class StackConfig:
    """Everything needed to start a stack."""
    stack_name: str
    project_name: str
    compose_files: List[Path]
    env_files: List[Path] = field(default_factory=list)
    profiles: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.compose_files:
            raise ValueError(f"Stack '{self.stack_name}' needs at least one compose file")
        # absolute: compose runs from working_dir
        self.compose_files = [Path(f).absolute() for f in self.compose_files]
        self.env_files = [Path(f).absolute() for f in self.env_files]

    @property
    def working_dir(self) -> Path:
        return self.compose_files[0].parent


@dataclass
class WaitConfig:
    """Readiness target for a set of services."""
    project_name: str
    services: List[str]
    timeout: timedelta = timedelta(seconds=60)
    poll_interval: timedelta = timedelta(seconds=2)
    target_status: ServiceStatus = ServiceStatus.RUNNING

    def __post_init__(self):
        if not self.services:
            raise ValueError("WaitConfig requires at least one service")
        if not isinstance(self.timeout, timedelta):
            self.timeout = timedelta(seconds=self.timeout)
        if not isinstance(self.poll_interval, timedelta):
            self.poll_interval = timedelta(seconds=self.poll_interval)
        if self.poll_interval >= self.timeout:
            raise ValueError(
                f"Poll interval ({self.poll_interval.total_seconds()}s) must be shorter than "
                f"timeout ({self.timeout.total_seconds()}s)"
            )


@dataclass
class LogsConfig:
    """Options for capturing stack logs."""
    services: List[str] = field(default_factory=list)
    tail_lines: int = 100
    follow: bool = False
    output_file: Optional[Path] = None

    def __post_init__(self):
        self.services = list(self.services or [])
        self.tail_lines = max(1, int(self.tail_lines))
        if self.output_file is not None:
            self.output_file = Path(self.output_file)
