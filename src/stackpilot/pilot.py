#!/usr/bin/env python3
# -*- coding: utf-8 -*-


import argparse
import logging
import os
import subprocess
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import docker
import requests
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .cleanup import ContainerJanitor
from .config import (DEFAULT_CONFIG_FILE, ENV_DELEGATE, ENV_PROJECT_NAME, ENV_STATE_FILE,
                     PilotConfig, StackDefinition, WaitSettings, load_config)
from .exceptions import ErrorType, StackError
from .health import HealthProbe
from .models import Lifecycle, LogLevel, LogsConfig, ServiceStatus, StackState
from .orchestrator import StackOrchestrator
from .state import StateStore, state_file_path, state_to_dict
from .utils import format_ports


class StackPilot:
    """Drives compose stacks for integration test runs."""

    def __init__(self, config_file: str = DEFAULT_CONFIG_FILE, log_level: LogLevel = LogLevel.INFO,
                 console: Console = None, orchestrator: StackOrchestrator = None,
                 store: StateStore = None, janitor: ContainerJanitor = None, config: PilotConfig = None):
        self.console = console or Console()
        self.config = config or PilotConfig()
        self.log_file = self.config.log_file

        # Setup logging
        self._setup_logging(log_level)

        # Load configuration
        if config is None and config_file and Path(config_file).exists():
            self._load_config(config_file)

        self.orchestrator = orchestrator or StackOrchestrator(logger=self.logger)
        self.store = store or StateStore(self.logger)
        self.janitor = janitor or ContainerJanitor(logger=self.logger)
        self.health_probe = HealthProbe(self.orchestrator.clock, self.logger)

    def _setup_logging(self, level: LogLevel):
        """Setup logging with rotation"""
        log_format = '%(asctime)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'

        # File handler with rotation
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            self.log_file, maxBytes=10*1024*1024, backupCount=5, delay=True
        )
        file_handler.setFormatter(logging.Formatter(log_format))

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

        # Setup logger
        self.logger = logging.getLogger('StackPilot')
        self.logger.setLevel(getattr(logging, level.value))
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        self.logger.addHandler(file_handler)
        self.logger.addHandler(console_handler)

    def _load_config(self, config_file: str):
        """Load stack configuration from YAML file"""
        self.config = load_config(config_file, self.logger)

    @contextmanager
    def _error_handler(self, operation: str, stack_name: str = None):
        """Log and report failures of a CLI operation"""
        try:
            yield
        except StackError as e:
            error_msg = f"{operation} failed for stack '{stack_name or 'unknown'}': {e.message}"
            self.logger.error(error_msg)
            self.console.print(Panel(f"{error_msg}\n[dim]Suggestion: {e.suggestion}[/dim]",
                                     title=f"[bold red]❌ {e.error_type.name}[/bold red]", border_style="red"))
        except docker.errors.DockerException as e:
            error_msg = f"Docker error during {operation}: {e}"
            self.logger.error(error_msg)
            self.console.print(f"[bold red]❌ {error_msg}[/bold red]")
        except requests.exceptions.RequestException as e:
            error_msg = f"Network error during {operation}: {e}"
            self.logger.error(error_msg)
            self.console.print(f"[bold red]❌ {error_msg}[/bold red]")

    def _state_file(self, stack_name: str) -> Path:
        return state_file_path(self.config.state_dir, stack_name)

    # ==================== STACK OPERATIONS ====================

    def up(self, stack_name: str) -> Optional[StackState]:
        """Start a stack, wait for readiness and persist its state."""
        with self._error_handler("compose up", stack_name):
            definition = self._managed_stack(stack_name)
            with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                          console=self.console) as progress:
                task = progress.add_task(f"Starting stack {stack_name}...", total=None)
                state = self.orchestrator.start(definition.to_stack_config()).result()

                for wait_config in definition.wait_configs():
                    progress.update(task, description=f"Waiting for {wait_config.services} "
                                                      f"to be {wait_config.target_status.value}...")
                    self.orchestrator.wait_for_services(wait_config).result()
                    state.services = self.orchestrator.list_services(definition.project_name).result()

                path = self.store.write(state, self._state_file(stack_name), lifecycle=definition.lifecycle.value)
                progress.update(task, description=f"✅ Stack {stack_name} is up")

            self._print_services(state)
            self.console.print(f"[dim]State file: {path}[/dim]")
            return state
        return None

    def down(self, stack_name: str) -> bool:
        """Stop a stack and remove its state file."""
        with self._error_handler("compose down", stack_name):
            definition = self._managed_stack(stack_name)
            state_file = self._state_file(stack_name)
            project_name = definition.project_name
            if state_file.exists():
                project_name = self.store.read(state_file).project_name

            self.orchestrator.stop(project_name, definition.files).result()
            self.store.delete(state_file)
            self.console.print(f"[green]✅ Stack {stack_name} stopped (project: {project_name})[/green]")
            return True
        return False

    def ps(self, stack_name: str, format_output: str = "table") -> bool:
        """Show the services of a running stack."""
        with self._error_handler("list services", stack_name):
            definition = self.config.stack(stack_name)
            project_name = self._project_of(definition)
            services = self.orchestrator.list_services(project_name).result()
            networks = self.orchestrator.list_networks(project_name).result()
            state = StackState(stack_name, project_name, services, networks)
            if format_output == "json":
                self.console.print_json(data=state_to_dict(state))
            else:
                self._print_services(state)
            return True
        return False

    def logs(self, stack_name: str, services: List[str] = None, tail: int = None,
             follow: bool = False, output_file: str = None) -> bool:
        """Print (and optionally save) the logs of a stack."""
        with self._error_handler("capture logs", stack_name):
            definition = self.config.stack(stack_name)
            configured = definition.logs or LogsConfig()
            logs_config = LogsConfig(
                services=services or configured.services,
                tail_lines=tail or configured.tail_lines,
                follow=follow or configured.follow,
                output_file=output_file or configured.output_file,
            )
            output = self.orchestrator.capture_logs(self._project_of(definition), logs_config).result()
            self.console.print(output, markup=False, highlight=False)
            return True
        return False

    def wait(self, stack_name: str, healthy: List[str] = None, running: List[str] = None,
             timeout: int = None, poll: int = None) -> bool:
        """Wait for services of a running stack."""
        with self._error_handler("wait for services", stack_name):
            definition = self.config.stack(stack_name)
            project_name = self._project_of(definition)
            waits = definition.wait_configs(project_name)
            if healthy or running:
                override = StackDefinition(
                    name=definition.name,
                    project_name=project_name,
                    wait_for_healthy=WaitSettings(healthy or [], timeout or 60, poll or 2),
                    wait_for_running=WaitSettings(running or [], timeout or 60, poll or 2),
                    delegate_stack_management=True,
                )
                waits = override.wait_configs()
            if not waits:
                self.console.print(f"[yellow]⚠️ No services to wait for in stack {stack_name}[/yellow]")
                return True
            for wait_config in waits:
                status = self.orchestrator.wait_for_services(wait_config).result()
                self.console.print(f"[green]✅ {', '.join(wait_config.services)}: {status.value}[/green]")
            return True
        return False

    def show_state(self, stack_name: str) -> bool:
        """Print the persisted state of a stack."""
        with self._error_handler("read state", stack_name):
            state = self.store.read(self._state_file(stack_name))
            self._print_services(state)
            return True
        return False

    def health(self, stack_name: str, service: str, container_port: int,
               endpoint: str = "/health", retries: int = 10) -> bool:
        """HTTP health check of a service through its published port."""
        with self._error_handler("health check", stack_name):
            state = self.store.read(self._state_file(stack_name))
            try:
                host_port = state.port_for(service, container_port)
            except KeyError as e:
                self.console.print(f"[bold red]❌ {e.args[0]}[/bold red]")
                return False
            self.console.print(f"[cyan]🩺 Testing health check: http://localhost:{host_port}{endpoint}[/cyan]")
            ok = self.health_probe.check(host_port, endpoint, max_retries=retries)
            if ok:
                self.console.print("[green]✅ Health check OK[/green]")
            else:
                self.console.print(f"[red]❌ Health check failed after {retries} attempts[/red]")
            return ok
        return False

    def validate(self) -> bool:
        """Check that Docker Compose is installed and working."""
        with self._error_handler("validate"):
            command = self.orchestrator.detector.validate()
            self.console.print(f"[green]✅ Docker Compose available: {' '.join(command)}[/green]")
            return True
        return False

    def run_tests(self, stack_name: str, pytest_args: List[str] = None) -> bool:
        """Run pytest in a child process with the stack handed over through the environment.

        For the ``suite`` lifecycle the stack is started here, shared through its
        state file, and stopped after the tests whatever their outcome. For
        ``class`` and ``method`` the pytest plugin manages the stack itself.
        """
        with self._error_handler("integration tests", stack_name):
            definition = self.config.stack(stack_name)
            env = definition.to_environment(self.config.state_dir)

            if definition.lifecycle != Lifecycle.SUITE:
                return self._run_pytest(pytest_args, env) == 0

            state = self.up(stack_name)
            if state is None:
                self.down(stack_name)
                return False
            env.update({
                ENV_DELEGATE: "1",
                ENV_STATE_FILE: str(self._state_file(stack_name)),
                ENV_PROJECT_NAME: state.project_name,
            })
            try:
                return self._run_pytest(pytest_args, env) == 0
            finally:
                if definition.logs is not None:
                    self.logs(stack_name)
                self.down(stack_name)
        return False

    def _run_pytest(self, pytest_args: Optional[List[str]], env: dict) -> int:
        process_env = dict(os.environ)
        process_env.update(env)
        command = [sys.executable, "-m", "pytest"] + list(pytest_args or [])
        self.logger.info(f"Running tests: {' '.join(command)}")
        result = subprocess.run(command, env=process_env, check=False)
        if result.returncode == 0:
            self.console.print("[green]✅ Tests passed[/green]")
        else:
            self.console.print(f"[red]❌ Tests failed (exit code {result.returncode})[/red]")
        return result.returncode

    def _managed_stack(self, stack_name: str) -> StackDefinition:
        definition = self.config.stack(stack_name)
        if definition.delegate_stack_management:
            raise StackError(
                ErrorType.CONFIGURATION_ERROR,
                f"Stack '{stack_name}' is managed elsewhere (delegate_stack_management)",
            )
        return definition

    def _project_of(self, definition: StackDefinition) -> str:
        """Project name from the state file when the stack was started by ``up``."""
        state_file = self._state_file(definition.name)
        if state_file.exists():
            try:
                return self.store.read(state_file).project_name
            except StackError as e:
                self.logger.warning(f"Ignoring unreadable state file: {e}")
        return definition.project_name

    def _print_services(self, state: StackState):
        table = Table(
            title=f"🐳 Stack {state.config_name} (project: {state.project_name})",
            show_header=True,
            header_style="bold blue",
            expand=True,
        )
        table.add_column("Service", style="green", overflow="fold")
        table.add_column("Container", style="cyan", overflow="fold")
        table.add_column("ID", style="cyan", width=12, overflow="fold")
        table.add_column("Status", style="magenta", width=12)
        table.add_column("Ports", style="bright_blue", overflow="fold")

        for name, info in sorted(state.services.items()):
            status = info.status
            color = "green" if status.satisfies(ServiceStatus.RUNNING) else \
                "red" if status == ServiceStatus.STOPPED else "yellow"
            table.add_row(name, info.container_name, info.container_id[:12],
                          f"[{color}]{status.value}[/{color}]", format_ports(info.published_ports))
        self.console.print(table)

        healthy = len([i for i in state.services.values() if i.status == ServiceStatus.HEALTHY])
        running = len([i for i in state.services.values() if i.status.satisfies(ServiceStatus.RUNNING)])
        summary = f"📊 Summary: {len(state.services)} services, {running} running, {healthy} healthy"
        if state.networks:
            summary += f" | networks: {', '.join(state.networks)}"
        self.console.print(Panel(summary, style="bright_blue"))

    # ==================== CLI ====================

    def create_cli_parser(self) -> argparse.ArgumentParser:
        """Create CLI parser"""
        parser = argparse.ArgumentParser(
            prog="stackpilot",
            description="Stack Pilot - Docker Compose stacks for integration tests",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )

        parser.add_argument('--config', '-c', type=str, default=DEFAULT_CONFIG_FILE, help='Configuration file path')
        parser.add_argument('--log-level', '-l', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                            default='INFO', help='Logging level')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        up_parser = subparsers.add_parser('up', help='Start a stack and wait until it is ready')
        up_parser.add_argument('stack', help='Stack name')

        down_parser = subparsers.add_parser('down', help='Stop a stack')
        down_parser.add_argument('stack', help='Stack name')

        ps_parser = subparsers.add_parser('ps', help='List the services of a stack')
        ps_parser.add_argument('stack', help='Stack name')
        ps_parser.add_argument('--format', choices=['table', 'json'], default='table')

        logs_parser = subparsers.add_parser('logs', help='Show stack logs')
        logs_parser.add_argument('stack', help='Stack name')
        logs_parser.add_argument('--service', '-s', action='append', help='Service name (repeatable)')
        logs_parser.add_argument('--tail', '-n', type=int, default=None, help='Number of lines per service')
        logs_parser.add_argument('--follow', '-f', action='store_true', help='Follow log output')
        logs_parser.add_argument('--output', '-o', default=None, help='Also write logs to this file')

        wait_parser = subparsers.add_parser('wait', help='Wait for services of a running stack')
        wait_parser.add_argument('stack', help='Stack name')
        wait_parser.add_argument('--healthy', help='Services that must be healthy, comma-separated')
        wait_parser.add_argument('--running', help='Services that must be running, comma-separated')
        wait_parser.add_argument('--timeout', '-t', type=int, default=None, help='Timeout seconds')
        wait_parser.add_argument('--poll', '-p', type=int, default=None, help='Poll interval seconds')

        state_parser = subparsers.add_parser('state', help='Show the persisted state of a stack')
        state_parser.add_argument('stack', help='Stack name')

        health_parser = subparsers.add_parser('health', help='Test an HTTP endpoint of a service')
        health_parser.add_argument('stack', help='Stack name')
        health_parser.add_argument('service', help='Service name')
        health_parser.add_argument('port', type=int, help='Container port')
        health_parser.add_argument('--endpoint', '-e', default='/health', help='Health check endpoint')
        health_parser.add_argument('--retries', '-r', type=int, default=10, help='Maximum retries')

        test_parser = subparsers.add_parser('test', help='Run pytest against a stack')
        test_parser.add_argument('stack', help='Stack name')
        test_parser.add_argument('pytest_args', nargs=argparse.REMAINDER, help='Arguments passed to pytest')

        subparsers.add_parser('validate', help='Check the Docker Compose installation')

        return parser

    def run_cli(self, argv: List[str] = None) -> int:
        """Run CLI interface"""
        parser = self.create_cli_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            return 1

        try:
            if args.command == 'up':
                success = self.up(args.stack) is not None
            elif args.command == 'down':
                success = self.down(args.stack)
            elif args.command == 'ps':
                success = self.ps(args.stack, args.format)
            elif args.command == 'logs':
                success = self.logs(args.stack, args.service, args.tail, args.follow, args.output)
            elif args.command == 'wait':
                success = self.wait(args.stack, _split(args.healthy), _split(args.running), args.timeout, args.poll)
            elif args.command == 'state':
                success = self.show_state(args.stack)
            elif args.command == 'health':
                success = self.health(args.stack, args.service, args.port, args.endpoint, args.retries)
            elif args.command == 'test':
                pytest_args = [a for a in args.pytest_args if a != '--']
                success = self.run_tests(args.stack, pytest_args)
            elif args.command == 'validate':
                success = self.validate()
            else:
                parser.print_help()
                success = False
        except Exception as e:
            self.logger.error(f"CLI command failed: {e}")
            self.console.print(f"[red]❌ Command failed: {e}[/red]")
            success = False
        finally:
            self.orchestrator.close()

        return 0 if success else 1


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in value.split(',') if v.strip()] if value else []
