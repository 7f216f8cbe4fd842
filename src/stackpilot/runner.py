"""Execution of external commands."""
import logging
import os
import subprocess
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Union

from .exceptions import ErrorType, StackError
from .models import ExecResult

Timeout = Union[timedelta, float, int, None]


def _to_seconds(timeout: Timeout) -> Optional[float]:
    if timeout is None:
        return None
    if isinstance(timeout, timedelta):
        return timeout.total_seconds()
    return float(timeout)


class CommandRunner:
    """Runs a command to completion and captures its output.

    A non-zero exit code is returned, not raised. Only a failure to launch
    the process or an exceeded timeout raise ``StackError``.
    """

    def __init__(self, logger: logging.Logger = None, default_timeout: Timeout = None):
        self.logger = logger or logging.getLogger("StackPilot")
        self.default_timeout = default_timeout

    def execute(self, command: List[str], working_dir: Union[str, Path] = None,
                timeout: Timeout = None, env: Dict[str, str] = None) -> ExecResult:
        """Run ``command`` and return its exit code, stdout and stderr."""
        if not command:
            raise ValueError("Command must not be empty")
        seconds = _to_seconds(timeout if timeout is not None else self.default_timeout)
        process_env = None
        if env:
            process_env = dict(os.environ)
            process_env.update({k: str(v) for k, v in env.items()})

        self.logger.debug(f"Executing: {' '.join(command)}"
                          + (f" (cwd={working_dir})" if working_dir else ""))
        try:
            completed = subprocess.run(
                list(command),
                cwd=str(working_dir) if working_dir else None,
                env=process_env,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=seconds,
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run kills the child before re-raising
            raise StackError(
                ErrorType.COMMAND_TIMEOUT,
                f"Command timed out after {seconds:g}s and was terminated: {' '.join(command)}",
            ) from e
        except OSError as e:
            raise StackError(
                ErrorType.COMMAND_LAUNCH_FAILURE,
                f"Failed to launch '{command[0]}': {e}",
            ) from e

        result = ExecResult(completed.returncode, completed.stdout, completed.stderr)
        if not result.is_success:
            self.logger.debug(f"Command exited with {result.exit_code}: {result.stderr.strip()}")
        return result
