"""Exceptions raised by Stack Pilot."""
from enum import Enum
from typing import List, Optional


class ErrorType(Enum):
    """Kinds of stack failures, each with a default suggestion."""
    COMMAND_UNAVAILABLE = "Install Docker Compose v2 ('docker compose') or the legacy 'docker-compose' binary."
    COMMAND_LAUNCH_FAILURE = "Check that the command exists and is on PATH."
    COMMAND_TIMEOUT = "Increase the command timeout or check whether the Docker daemon is responsive."
    START_FAILURE = "Check your compose file syntax and service configurations."
    STOP_FAILURE = "Check if the project exists and is accessible. Services may still be running."
    LOGS_CAPTURE_FAILURE = "Check if the project and services exist."
    LIST_FAILURE = "Check that the Docker daemon is running and the project exists."
    TIMEOUT_WAITING_FOR_SERVICES = "Increase the timeout or check the service health check configuration."
    STATE_IO_ERROR = "Make sure the stack was started and its state file was written by the same build."
    MANIFEST_NOT_FOUND = "Check the compose file paths configured for the stack."
    CONFIGURATION_ERROR = "Check the stack configuration and STACKPILOT_* environment variables."
    CLEANUP_FAILURE = "Remove leftover containers manually with 'docker rm -f'."

    @property
    def default_suggestion(self) -> str:
        return self.value


class StackError(Exception):
    """Error raised by stack operations."""

    def __init__(self, error_type: ErrorType, message: str, suggestion: str = None):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.suggestion = suggestion or error_type.default_suggestion

    @property
    def formatted_message(self) -> str:
        return f"{self.message}\nSuggestion: {self.suggestion}"

    def __repr__(self):
        return f"StackError(error_type={self.error_type.name}, message={self.message!r})"


class ServicesTimeoutError(StackError):
    """Services did not reach their target status in time."""

    def __init__(self, project_name: str, unready_services: List[str], target: str,
                 timeout_seconds: float, last_error: Optional[Exception] = None):
        message = (
            f"Timeout after {timeout_seconds:g}s waiting for services of project '{project_name}' "
            f"to reach {target}: still not ready: {', '.join(unready_services)}"
        )
        if last_error is not None:
            message += f" (last status check error: {last_error})"
        super().__init__(ErrorType.TIMEOUT_WAITING_FOR_SERVICES, message)
        self.project_name = project_name
        self.unready_services = list(unready_services)
