"""HTTP readiness probe for published service ports."""
import logging

import requests

from .models import StackState
from .poller import Clock


class HealthProbe:
    """Checks an HTTP endpoint of a service through its published host port."""

    def __init__(self, clock: Clock = None, logger: logging.Logger = None, session: requests.Session = None):
        self.clock = clock or Clock()
        self.logger = logger or logging.getLogger("StackPilot")
        self.session = session or requests.Session()

    def check(self, port: int, endpoint: str = "/health", host: str = "localhost",
              max_retries: int = 10, retry_delay: float = 3, request_timeout: float = 5) -> bool:
        """GET ``http://host:port/endpoint`` until it answers 200 or retries run out."""
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        url = f"http://{host}:{port}{endpoint}"

        for attempt in range(max_retries):
            try:
                start_time = self.clock.monotonic()
                response = self.session.get(url, timeout=request_timeout)
                response_time = self.clock.monotonic() - start_time

                if response.status_code == 200:
                    self.logger.info(f"Health check passed (attempt {attempt + 1}): {url} in {response_time:.2f}s")
                    return True
                self.logger.warning(f"Health check returned {response.status_code} (attempt {attempt + 1}): {url}")
            except requests.exceptions.RequestException as e:
                self.logger.warning(f"Health check failed (attempt {attempt + 1}): {e}")

            if attempt < max_retries - 1:
                self.clock.sleep(retry_delay)

        self.logger.error(f"Health check failed after {max_retries} attempts: {url}")
        return False

    def check_service(self, state: StackState, service: str, container_port: int,
                      endpoint: str = "/health", **kwargs) -> bool:
        """Probe a service by its container port, resolving the host port from the state."""
        return self.check(state.port_for(service, container_port), endpoint, **kwargs)
