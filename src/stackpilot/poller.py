"""Readiness polling of compose services."""
import logging
import time
from datetime import datetime
from typing import Callable, Dict, List

from .exceptions import ServicesTimeoutError
from .models import ServiceInfo, ServiceStatus, WaitConfig


class Clock:
    """Wall clock and sleep primitive, replaceable in tests."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def now(self) -> datetime:
        return datetime.now()


class ReadinessPoller:
    """Polls the service list until every required service meets the target status."""

    def __init__(self, list_services: Callable[[str], Dict[str, ServiceInfo]],
                 clock: Clock = None, logger: logging.Logger = None):
        self.list_services = list_services
        self.clock = clock or Clock()
        self.logger = logger or logging.getLogger("StackPilot")

    @staticmethod
    def unready_services(services: Dict[str, ServiceInfo], config: WaitConfig) -> List[str]:
        """Names of required services that do not satisfy the target status yet."""
        unready = []
        for name in config.services:
            info = services.get(name)
            if info is None or not info.status.satisfies(config.target_status):
                unready.append(name)
        return unready

    def wait(self, config: WaitConfig) -> ServiceStatus:
        """Block until ready; raise ``ServicesTimeoutError`` once the timeout elapses."""
        timeout = config.timeout.total_seconds()
        interval = config.poll_interval.total_seconds()
        target = config.target_status
        self.logger.info(f"Waiting up to {timeout:g}s for {config.services} "
                         f"in project '{config.project_name}' to be {target.value}")

        start = self.clock.monotonic()
        attempt = 0
        unready = list(config.services)
        last_error = None
        while True:
            attempt += 1
            try:
                services = self.list_services(config.project_name)
                unready = self.unready_services(services, config)
                last_error = None
            except Exception as e:
                # A failed status check means "not ready yet"
                self.logger.warning(f"Status check {attempt} for project '{config.project_name}' failed: {e}")
                last_error = e

            if last_error is None and not unready:
                self.logger.info(f"All services are {target.value} after {attempt} attempt(s): {config.services}")
                return target

            elapsed = self.clock.monotonic() - start
            if elapsed >= timeout:
                raise ServicesTimeoutError(config.project_name, unready, target.value, timeout, last_error)

            self.logger.debug(f"Attempt {attempt}: not ready {unready} ({elapsed:.1f}s elapsed)")
            self.clock.sleep(interval)
