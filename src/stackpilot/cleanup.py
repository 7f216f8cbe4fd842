"""Best-effort removal of stack leftovers."""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

import docker
import requests

from .commands import COMPOSE_PROJECT_LABEL
from .exceptions import ErrorType, StackError


class ContainerJanitor:
    """Force-removes containers through the Docker Engine API.

    A container that disappears between listing and removal counts as removed.
    """

    def __init__(self, client=None, logger: logging.Logger = None):
        self._client = client
        self.logger = logger or logging.getLogger("StackPilot")

    @property
    def client(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def remove_by_name(self, name_fragment: str) -> int:
        """Remove every container whose name contains ``name_fragment``."""
        return self._remove_matching({"name": name_fragment}, f"name '{name_fragment}'")

    def remove_by_project_label(self, project_name: str) -> int:
        """Remove every container labelled as belonging to the compose project."""
        label = f"{COMPOSE_PROJECT_LABEL}={project_name}"
        return self._remove_matching({"label": label}, f"label '{label}'")

    def _remove_matching(self, filters: dict, description: str) -> int:
        containers = self.client.containers.list(all=True, filters=filters)
        if not containers:
            self.logger.info(f"No containers found with {description}")
            return 0

        removed = 0
        failures = []
        for container in containers:
            try:
                container.remove(force=True)
                removed += 1
                self.logger.info(f"Removed container {container.name} ({container.short_id})")
            except docker.errors.NotFound:
                removed += 1
                self.logger.debug(f"Container {container.short_id} already gone")
            except (docker.errors.APIError, requests.exceptions.RequestException) as e:
                self.logger.error(f"Failed to remove container {container.short_id}: {e}")
                failures.append(container.short_id)
        if failures:
            raise StackError(ErrorType.CLEANUP_FAILURE,
                             f"Could not remove containers with {description}: {', '.join(failures)}")
        return removed


@dataclass
class CleanupStep:
    """One independent teardown action."""
    name: str
    action: Callable[[], object]


@dataclass
class CleanupReport:
    """What happened during a cleanup run; for logging only."""
    completed: List[str]
    failed: List[str]
    last_error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return not self.failed


def run_cleanup_steps(steps: List[CleanupStep], logger: logging.Logger = None) -> CleanupReport:
    """Run every step in order; a failing step is logged and the next one still runs."""
    logger = logger or logging.getLogger("StackPilot")
    report = CleanupReport(completed=[], failed=[])
    for step in steps:
        try:
            step.action()
            report.completed.append(step.name)
        except Exception as e:
            logger.warning(f"Cleanup step '{step.name}' failed: {e}")
            report.failed.append(step.name)
            report.last_error = e
    if report.failed:
        logger.warning(f"Some cleanup operations failed ({', '.join(report.failed)}); "
                       f"last error: {report.last_error}")
    return report
