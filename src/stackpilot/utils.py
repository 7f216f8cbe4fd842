"""Parsing and formatting helpers for compose output."""
import json
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .models import PortMapping, ServiceInfo, ServiceStatus

UNKNOWN_ID = "unknown"

_CONTAINER_INDEX = re.compile(r"[-_]\d+$")


def classify_status(status: Optional[str]) -> ServiceStatus:
    """Classify a compose status string.

    Substring match, case-insensitive, first hit wins:
    healthy, running/up, exit/stop, restart.
    """
    if not status:
        return ServiceStatus.UNKNOWN
    lowered = status.lower()
    if "healthy" in lowered:
        return ServiceStatus.HEALTHY
    if "running" in lowered or "up" in lowered:
        return ServiceStatus.RUNNING
    if "exit" in lowered or "stop" in lowered:
        return ServiceStatus.STOPPED
    if "restart" in lowered:
        return ServiceStatus.RESTARTING
    return ServiceStatus.UNKNOWN


def parse_port_entry(entry: str) -> Optional[PortMapping]:
    """Parse ``[host-ip:]hostPort->containerPort[/protocol]``; None when malformed."""
    entry = entry.strip()
    if "->" not in entry:
        return None
    host_part, container_part = entry.split("->", 1)
    # "0.0.0.0:8080", ":::8080", "[::]:8080" and "8080" all end in the port
    host_port = host_part.rsplit(":", 1)[-1].strip()
    container_port, _, protocol = container_part.strip().partition("/")
    try:
        return PortMapping(int(host_port), int(container_port), protocol.strip() or "tcp")
    except ValueError:
        return None


def parse_port_mappings(ports: Optional[str]) -> List[PortMapping]:
    """Parse a comma-separated ``Ports`` column, dropping malformed and duplicate entries."""
    mappings = []
    if not ports:
        return mappings
    for entry in ports.split(","):
        mapping = parse_port_entry(entry)
        if mapping is not None and mapping not in mappings:
            mappings.append(mapping)
    return mappings


def parse_publishers(publishers: Iterable[Dict[str, Any]]) -> List[PortMapping]:
    """Parse the ``Publishers`` array newer compose releases emit instead of ``Ports``."""
    mappings = []
    for publisher in publishers or []:
        try:
            mapping = PortMapping(
                int(publisher.get("PublishedPort", 0)),
                int(publisher.get("TargetPort", 0)),
                publisher.get("Protocol") or "tcp",
            )
        except (ValueError, TypeError, AttributeError):
            # unpublished ports carry PublishedPort 0
            continue
        if mapping not in mappings:
            mappings.append(mapping)
    return mappings


def service_name_from_container(container_name: str, project_name: str = None) -> str:
    """Derive a service name from ``<project>[-_]<service>[-_]<index>``."""
    name = container_name.lstrip("/")
    if project_name:
        for separator in ("-", "_"):
            prefix = f"{project_name}{separator}"
            if name.startswith(prefix):
                name = name[len(prefix):]
                break
        else:
            parts = name.split("_")
            if len(parts) >= 3:
                name = parts[1]
    elif name.count("_") >= 2:
        name = name.split("_")[1]
    name = _CONTAINER_INDEX.sub("", name)
    return name or container_name


def parse_service_entry(entry: Dict[str, Any], project_name: str = None) -> Optional[tuple]:
    """Turn one ``ps`` JSON object into ``(service_name, ServiceInfo)``."""
    container_name = entry.get("Name") or entry.get("Names")
    service_name = entry.get("Service")
    if not service_name:
        if not container_name:
            return None
        service_name = service_name_from_container(container_name, project_name)

    status_text = entry.get("Status") or entry.get("State") or ""
    health = entry.get("Health")
    if health and health.lower() not in status_text.lower():
        status_text = f"{status_text} ({health})"

    ports = parse_port_mappings(entry.get("Ports"))
    if not ports and entry.get("Publishers"):
        ports = parse_publishers(entry["Publishers"])

    info = ServiceInfo(
        container_id=entry.get("ID") or UNKNOWN_ID,
        container_name=container_name or service_name,
        state=classify_status(status_text).value,
        published_ports=ports,
    )
    return service_name, info


def parse_services_json(output: str, project_name: str = None) -> Dict[str, ServiceInfo]:
    """Parse ``ps --format json`` output into a service map.

    Each line is parsed on its own and a malformed line is skipped. Older
    Compose v2 releases print one JSON array instead of JSON lines.
    """
    services = {}
    if not output or not output.strip():
        return services
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            decoded = json.loads(line)
        except ValueError:
            continue
        entries = decoded if isinstance(decoded, list) else [decoded]
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                parsed = parse_service_entry(entry, project_name)
            except (AttributeError, TypeError, ValueError):
                # fields of the wrong type
                continue
            if parsed is not None:
                name, info = parsed
                services[name] = info
    return services


def sanitize_project_name(name: str) -> str:
    """Make ``name`` a valid compose project name (lowercase, ``[a-z0-9_-]``)."""
    sanitized = re.sub(r"[^a-z0-9\-_]", "-", (name or "").lower())
    sanitized = re.sub(r"-+", "-", sanitized).strip("-")
    if sanitized and not sanitized[0].isalnum():
        sanitized = f"test-{sanitized}"
    return sanitized or "test-project"


def split_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated setting, ignoring blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def format_ports(ports: Iterable[PortMapping]) -> str:
    """Format published ports for display."""
    port_list = [f"{p.host_port}→{p.container_port}/{p.protocol}" for p in ports]
    return ", ".join(port_list) if port_list else "none"


def format_timestamp(moment: datetime = None) -> str:
    """ISO-8601 timestamp used in state files."""
    return (moment or datetime.now()).isoformat(timespec="seconds")
