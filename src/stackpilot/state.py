"""Persistence of stack state for hand-off between processes."""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

from .exceptions import ErrorType, StackError
from .models import PortMapping, ServiceInfo, StackState
from .utils import format_timestamp

STATE_SUFFIX = "-state.json"


def state_file_path(state_dir: Union[str, Path], stack_name: str, unit: str = None) -> Path:
    """``<state_dir>/<stack>-state.json``, or ``<stack>-<unit>-state.json`` for a test unit."""
    name = f"{stack_name}-{unit}" if unit else stack_name
    return Path(state_dir) / f"{name}{STATE_SUFFIX}"


def state_to_dict(state: StackState) -> Dict[str, Any]:
    return {
        "configName": state.config_name,
        "projectName": state.project_name,
        "services": {
            name: {
                "containerId": info.container_id,
                "containerName": info.container_name,
                "state": info.state,
                "publishedPorts": [
                    {"hostPort": p.host_port, "containerPort": p.container_port, "protocol": p.protocol}
                    for p in info.published_ports
                ],
            }
            for name, info in state.services.items()
        },
        "networks": list(state.networks),
    }


def _require(data: Dict[str, Any], key: str, expected: type, *aliases: str):
    for candidate in (key,) + aliases:
        if candidate in data:
            value = data[candidate]
            if expected is int and isinstance(value, bool):
                break
            if isinstance(value, expected):
                return value
            break
    else:
        raise ValueError(f"missing field '{key}'")
    raise ValueError(f"field '{key}' must be {expected.__name__}, got {type(value).__name__}")


def _port_from_dict(data: Dict[str, Any]) -> PortMapping:
    if not isinstance(data, dict):
        raise ValueError("port entry must be an object")
    return PortMapping(
        _require(data, "hostPort", int, "host"),
        _require(data, "containerPort", int, "container"),
        data.get("protocol") or "tcp",
    )


def state_from_dict(data: Any) -> StackState:
    """Build a ``StackState``; raises ``ValueError`` on any schema violation.

    Also accepts the older ``stackName``/``host``/``container`` key names.
    """
    if not isinstance(data, dict):
        raise ValueError("state must be a JSON object")
    services = {}
    raw_services = data.get("services") or {}
    if not isinstance(raw_services, dict):
        raise ValueError("field 'services' must be an object")
    for name, raw in raw_services.items():
        if not isinstance(raw, dict):
            raise ValueError(f"service '{name}' must be an object")
        ports = raw.get("publishedPorts") or []
        if not isinstance(ports, list):
            raise ValueError(f"service '{name}': publishedPorts must be a list")
        services[name] = ServiceInfo(
            container_id=_require(raw, "containerId", str),
            container_name=_require(raw, "containerName", str),
            state=_require(raw, "state", str),
            published_ports=[_port_from_dict(p) for p in ports],
        )
    networks = data.get("networks") or []
    if not isinstance(networks, list) or not all(isinstance(n, str) for n in networks):
        raise ValueError("field 'networks' must be a list of strings")
    return StackState(
        config_name=_require(data, "configName", str, "stackName"),
        project_name=_require(data, "projectName", str),
        services=services,
        networks=networks,
    )


class StateStore:
    """Reads and writes ``StackState`` JSON files."""

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger("StackPilot")

    def write(self, state: StackState, path: Union[str, Path], **metadata) -> Path:
        """Write ``state`` to ``path``, replacing any existing file.

        Extra keyword arguments (lifecycle, test unit...) are stored alongside
        and ignored when reading.
        """
        path = Path(path)
        data = state_to_dict(state)
        data["timestamp"] = format_timestamp()
        data.update({k: v for k, v in metadata.items() if v is not None})
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            raise StackError(ErrorType.STATE_IO_ERROR, f"Failed to write state file {path}: {e}") from e
        self.logger.info(f"State file written: {path}")
        return path

    def read(self, path: Union[str, Path]) -> StackState:
        path = Path(path)
        if not path.is_file():
            raise StackError(ErrorType.STATE_IO_ERROR, f"State file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StackError(ErrorType.STATE_IO_ERROR, f"Failed to read state file {path}: {e}") from e
        except ValueError as e:
            raise StackError(ErrorType.STATE_IO_ERROR, f"State file {path} is not valid JSON: {e}") from e
        try:
            return state_from_dict(data)
        except ValueError as e:
            raise StackError(ErrorType.STATE_IO_ERROR, f"State file {path} is malformed: {e}") from e

    def delete(self, path: Union[str, Path]) -> bool:
        """Remove a state file; a missing file is not an error."""
        path = Path(path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        self.logger.info(f"State file removed: {path}")
        return True
