"""Compose stack operations."""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from pathlib import Path
from typing import Dict, List

from .commands import (build_down_command, build_logs_command, build_network_list_command,
                       build_ps_command, build_up_command)
from .dialect import ComposeCommandDetector
from .exceptions import ErrorType, StackError
from .models import LogsConfig, ServiceInfo, ServiceStatus, StackConfig, StackState, WaitConfig
from .poller import Clock, ReadinessPoller
from .runner import CommandRunner
from .utils import parse_services_json

DEFAULT_COMMAND_TIMEOUT = timedelta(minutes=10)
LIST_TIMEOUT = timedelta(seconds=30)


class StackOrchestrator:
    """Starts, stops, inspects and waits on compose stacks.

    Every public operation returns a ``concurrent.futures.Future``; each one
    runs a single external command (or a polling loop) on a worker thread.
    """

    def __init__(self, runner: CommandRunner = None, detector: ComposeCommandDetector = None,
                 clock: Clock = None, logger: logging.Logger = None,
                 command_timeout: timedelta = DEFAULT_COMMAND_TIMEOUT, max_workers: int = 4):
        self.logger = logger or logging.getLogger("StackPilot")
        self.runner = runner or CommandRunner(self.logger)
        self.detector = detector or ComposeCommandDetector(self.runner, self.logger)
        self.clock = clock or Clock()
        self.command_timeout = command_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stackpilot")

    def close(self):
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ==================== PUBLIC OPERATIONS ====================

    def start(self, config: StackConfig) -> "Future[StackState]":
        return self._executor.submit(self.start_sync, config)

    def stop(self, project_name: str, compose_files: List[Path] = None,
             remove_volumes: bool = False) -> "Future[None]":
        return self._executor.submit(self.stop_sync, project_name, compose_files, remove_volumes)

    def wait_for_services(self, config: WaitConfig) -> "Future[ServiceStatus]":
        return self._executor.submit(self.wait_for_services_sync, config)

    def capture_logs(self, project_name: str, config: LogsConfig = None) -> "Future[str]":
        return self._executor.submit(self.capture_logs_sync, project_name, config or LogsConfig())

    def list_services(self, project_name: str) -> "Future[Dict[str, ServiceInfo]]":
        return self._executor.submit(self.list_services_sync, project_name)

    def list_networks(self, project_name: str) -> "Future[List[str]]":
        return self._executor.submit(self.list_networks_sync, project_name)

    # ==================== IMPLEMENTATIONS ====================

    def start_sync(self, config: StackConfig) -> StackState:
        """Run ``up -d`` and return the state of the started stack."""
        self.logger.info(f"Starting compose stack '{config.stack_name}' (project: {config.project_name})")
        for compose_file in config.compose_files:
            if not compose_file.exists():
                raise StackError(
                    ErrorType.MANIFEST_NOT_FOUND,
                    f"Compose file not found for stack '{config.stack_name}': {compose_file}",
                )

        command = build_up_command(self.detector.detect(), config)
        result = self.runner.execute(command, working_dir=config.working_dir,
                                     timeout=self.command_timeout, env=config.environment)
        if not result.is_success:
            raise StackError(
                ErrorType.START_FAILURE,
                f"Compose up failed for stack '{config.stack_name}' (project: {config.project_name}) "
                f"with exit code {result.exit_code}: {result.stderr.strip()}",
            )

        services = self._list_services_quietly(config.project_name)
        state = StackState(
            config_name=config.stack_name,
            project_name=config.project_name,
            services=services,
            networks=self.list_networks_sync(config.project_name),
        )
        self.logger.info(f"Compose stack '{config.stack_name}' started with {len(services)} service(s)")
        return state

    def stop_sync(self, project_name: str, compose_files: List[Path] = None,
                  remove_volumes: bool = False) -> None:
        """Run ``down --remove-orphans``; a non-zero exit raises ``StackError``."""
        self.logger.info(f"Stopping compose project: {project_name}")
        command = build_down_command(self.detector.detect(), project_name, compose_files, remove_volumes)
        result = self.runner.execute(command, timeout=self.command_timeout)
        if not result.is_success:
            raise StackError(
                ErrorType.STOP_FAILURE,
                f"Compose down failed for project '{project_name}' "
                f"with exit code {result.exit_code}: {result.stderr.strip()}",
            )
        self.logger.info(f"Compose project stopped: {project_name}")

    def wait_for_services_sync(self, config: WaitConfig) -> ServiceStatus:
        poller = ReadinessPoller(self.list_services_sync, self.clock, self.logger)
        return poller.wait(config)

    def capture_logs_sync(self, project_name: str, config: LogsConfig) -> str:
        self.logger.info(f"Capturing logs for project: {project_name}")
        command = build_logs_command(self.detector.detect(), project_name, config)
        result = self.runner.execute(command, timeout=self.command_timeout)
        if not result.is_success:
            raise StackError(
                ErrorType.LOGS_CAPTURE_FAILURE,
                f"Failed to capture logs for project '{project_name}': {result.stderr.strip()}",
            )
        output = result.output
        if config.output_file is not None:
            config.output_file.parent.mkdir(parents=True, exist_ok=True)
            config.output_file.write_text(output, encoding="utf-8")
            self.logger.info(f"Logs written to {config.output_file}")
        return output

    def list_services_sync(self, project_name: str) -> Dict[str, ServiceInfo]:
        """Run ``ps --format json``; raises ``StackError`` when the command fails."""
        command = build_ps_command(self.detector.detect(), project_name)
        result = self.runner.execute(command, timeout=LIST_TIMEOUT)
        if not result.is_success:
            raise StackError(
                ErrorType.LIST_FAILURE,
                f"Failed to list services of project '{project_name}': {result.stderr.strip()}",
            )
        return parse_services_json(result.stdout, project_name)

    def list_networks_sync(self, project_name: str) -> List[str]:
        """Names of networks labelled with the project; empty when docker cannot tell."""
        try:
            result = self.runner.execute(build_network_list_command(project_name), timeout=LIST_TIMEOUT)
        except StackError as e:
            self.logger.warning(f"Could not list networks for project '{project_name}': {e}")
            return []
        if not result.is_success:
            self.logger.warning(f"Could not list networks for project '{project_name}': {result.stderr.strip()}")
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def _list_services_quietly(self, project_name: str) -> Dict[str, ServiceInfo]:
        try:
            return self.list_services_sync(project_name)
        except StackError as e:
            self.logger.warning(f"Failed to get stack services for project '{project_name}': {e}")
            return {}
