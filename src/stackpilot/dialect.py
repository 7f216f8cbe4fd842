"""Detection of the installed Docker Compose command form."""
import logging
import threading
from datetime import timedelta
from typing import List, Optional

from .exceptions import ErrorType, StackError
from .runner import CommandRunner

COMPOSE_PLUGIN = ["docker", "compose"]
COMPOSE_LEGACY = ["docker-compose"]

# (command prefix, version probe)
DIALECTS = (
    (COMPOSE_PLUGIN, COMPOSE_PLUGIN + ["version"]),
    (COMPOSE_LEGACY, COMPOSE_LEGACY + ["--version"]),
)

PROBE_TIMEOUT = timedelta(seconds=10)
VALIDATE_TIMEOUT = timedelta(seconds=30)


class ComposeCommandDetector:
    """Finds out whether ``docker compose`` or ``docker-compose`` is installed.

    The result is remembered for the lifetime of the detector, so the probe
    commands run at most once per instance.
    """

    def __init__(self, runner: CommandRunner, logger: logging.Logger = None):
        self.runner = runner
        self.logger = logger or logging.getLogger("StackPilot")
        self._command: Optional[List[str]] = None
        self._lock = threading.Lock()

    def detect(self) -> List[str]:
        """Return the leading tokens for every compose invocation."""
        with self._lock:
            if self._command is None:
                self._command = self._probe()
            return list(self._command)

    def _probe(self) -> List[str]:
        for prefix, probe in DIALECTS:
            try:
                result = self.runner.execute(probe, timeout=PROBE_TIMEOUT)
            except Exception as e:
                self.logger.debug(f"Probe '{' '.join(probe)}' could not run: {e}")
                continue
            if result.is_success:
                self.logger.info(f"Using compose command: {' '.join(prefix)}")
                return list(prefix)
            self.logger.debug(f"Probe '{' '.join(probe)}' exited with {result.exit_code}")

        tried = " and ".join(f"'{' '.join(prefix)}'" for prefix, _ in DIALECTS)
        raise StackError(
            ErrorType.COMMAND_UNAVAILABLE,
            f"Docker Compose is not available: tried {tried}",
        )

    def validate(self) -> List[str]:
        """Detect the command and check that its ``version`` subcommand still works."""
        command = self.detect()
        version_command = command + ["version"]
        try:
            result = self.runner.execute(version_command, timeout=VALIDATE_TIMEOUT)
        except Exception as e:
            raise StackError(
                ErrorType.COMMAND_UNAVAILABLE,
                f"Docker Compose is installed but not working: {e}",
            ) from e
        if not result.is_success:
            raise StackError(
                ErrorType.COMMAND_UNAVAILABLE,
                f"Docker Compose is installed but '{' '.join(version_command)}' failed "
                f"with exit code {result.exit_code}: {result.stderr.strip()}",
                "Check the Docker daemon and your Compose installation.",
            )
        self.logger.info(f"Docker Compose validated: {result.stdout.strip()}")
        return command
