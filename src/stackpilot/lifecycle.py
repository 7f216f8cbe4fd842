"""Stack setup and teardown for test processes."""
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .cleanup import CleanupReport, CleanupStep, ContainerJanitor, run_cleanup_steps
from .config import (ENV_PROJECT_NAME, ENV_STATE_FILE, PropertySource, StackDefinition,
                     stack_from_properties, state_dir_from_properties)
from .exceptions import ErrorType, StackError
from .models import StackConfig, StackState
from .orchestrator import StackOrchestrator
from .poller import Clock
from .state import StateStore, state_file_path
from .utils import sanitize_project_name


class Phase(Enum):
    NOT_STARTED = "not-started"
    RUNNING = "running"
    TORN_DOWN = "torn-down"


@dataclass
class StackContext:
    """Everything teardown needs to know about one test unit's stack."""
    definition: StackDefinition
    unit: str
    project_name: str
    state_dir: Path
    state_file: Path
    delegated: bool = False
    state: Optional[StackState] = None
    phase: Phase = Phase.NOT_STARTED

    @property
    def stack_name(self) -> str:
        return self.definition.name


class StackLifecycle:
    """Brings a stack up for a test unit and takes it down again.

    Settings come from a ``PropertySource`` filled in by the driver process.
    With ``STACKPILOT_DELEGATE`` set, the driver owns the stack and setup only
    reads the state file the driver left behind.
    """

    def __init__(self, orchestrator: StackOrchestrator = None, janitor: ContainerJanitor = None,
                 store: StateStore = None, properties: PropertySource = None, clock: Clock = None,
                 logger: logging.Logger = None, base_dir: Path = None):
        self.logger = logger or logging.getLogger("StackPilot")
        self.clock = clock or Clock()
        self.orchestrator = orchestrator or StackOrchestrator(clock=self.clock, logger=self.logger)
        self.janitor = janitor or ContainerJanitor(logger=self.logger)
        self.store = store or StateStore(self.logger)
        self.properties = properties or PropertySource()
        self.base_dir = Path(base_dir or Path.cwd())

    def close(self):
        self.orchestrator.close()

    def unique_project_name(self, base: str, unit: str) -> str:
        timestamp = self.clock.now().strftime("%H%M%S")
        return sanitize_project_name(f"{base}-{unit}-{timestamp}")

    # ==================== SETUP ====================

    def setup(self, unit: str) -> StackContext:
        """Start (or discover) the stack for ``unit`` and persist its state."""
        definition = stack_from_properties(self.properties, self.base_dir)
        state_dir = state_dir_from_properties(self.properties)
        if not state_dir.is_absolute():
            state_dir = self.base_dir / state_dir
        unit_slug = sanitize_project_name(unit)

        if definition.delegate_stack_management:
            return self._discover(definition, unit_slug, state_dir)

        project_name = self.unique_project_name(definition.project_name, unit_slug)
        context = StackContext(
            definition=definition,
            unit=unit_slug,
            project_name=project_name,
            state_dir=state_dir,
            state_file=state_file_path(state_dir, definition.name, unit_slug),
        )
        config = self._stack_config(definition, project_name)
        self.logger.info(f"Starting stack '{definition.name}' for {unit} (project: {project_name})")

        self._remove_stale_containers(project_name)
        try:
            context.state = self._start_and_wait(definition, config)
            self.store.write(context.state, context.state_file,
                             lifecycle=definition.lifecycle.value, testUnit=unit_slug)
        except Exception as e:
            self.logger.error(f"Startup of stack '{definition.name}' failed, attempting cleanup: {e}")
            self._cleanup_after_failed_start(context)
            raise

        self._publish(context)
        context.phase = Phase.RUNNING
        return context

    def _discover(self, definition: StackDefinition, unit_slug: str, state_dir: Path) -> StackContext:
        state_file = state_file_path(state_dir, definition.name)
        state = self.store.read(state_file)
        self.logger.info(f"Using stack '{definition.name}' managed by the driver (project: {state.project_name})")
        context = StackContext(
            definition=definition,
            unit=unit_slug,
            project_name=state.project_name,
            state_dir=state_dir,
            state_file=state_file,
            delegated=True,
            state=state,
            phase=Phase.RUNNING,
        )
        self._publish(context)
        return context

    def _stack_config(self, definition: StackDefinition, project_name: str) -> StackConfig:
        try:
            config = definition.to_stack_config(project_name)
        except ValueError as e:
            raise StackError(ErrorType.CONFIGURATION_ERROR, str(e))
        missing = [str(f) for f in config.compose_files if not f.exists()]
        if missing:
            raise StackError(
                ErrorType.MANIFEST_NOT_FOUND,
                f"Compose file not found for stack '{definition.name}': {', '.join(missing)}",
            )
        return config

    def _start_and_wait(self, definition: StackDefinition, config: StackConfig) -> StackState:
        state = self.orchestrator.start(config).result()
        waits = definition.wait_configs(config.project_name)
        for wait_config in waits:
            self.orchestrator.wait_for_services(wait_config).result()
        if waits:
            # statuses changed while waiting
            state.services = self.orchestrator.list_services(config.project_name).result()
        return state

    def _publish(self, context: StackContext):
        self.properties.set(ENV_STATE_FILE, str(context.state_file))
        self.properties.set(ENV_PROJECT_NAME, context.project_name)

    def _remove_stale_containers(self, project_name: str):
        try:
            self.janitor.remove_by_name(project_name)
        except Exception as e:
            self.logger.warning(f"Stale container cleanup for project '{project_name}' failed: {e}")

    def _cleanup_after_failed_start(self, context: StackContext):
        report = run_cleanup_steps([
            CleanupStep("compose down", lambda: self._stop(context)),
            CleanupStep("remove containers by name", lambda: self.janitor.remove_by_name(context.project_name)),
        ], self.logger)
        if not report.succeeded:
            self.logger.warning(f"Cleanup after failed startup of '{context.stack_name}' also failed")

    # ==================== TEARDOWN ====================

    def teardown(self, context: StackContext) -> CleanupReport:
        """Take the stack down layer by layer. Never raises."""
        if context.phase == Phase.TORN_DOWN:
            return CleanupReport(completed=[], failed=[])
        if context.delegated:
            self.logger.info(f"Stack '{context.stack_name}' is managed by the driver; leaving it running")
            context.phase = Phase.TORN_DOWN
            return CleanupReport(completed=[], failed=[])

        self.logger.info(f"Stopping stack '{context.stack_name}' after {context.unit} "
                         f"(project: {context.project_name})")
        report = run_cleanup_steps(self.teardown_steps(context), self.logger)
        context.phase = Phase.TORN_DOWN
        if not report.succeeded:
            self.logger.warning("Some cleanup operations failed but test execution will continue")
        return report

    def teardown_steps(self, context: StackContext) -> List[CleanupStep]:
        project = context.project_name
        return [
            CleanupStep("compose down", lambda: self._stop(context)),
            CleanupStep("remove containers by name", lambda: self.janitor.remove_by_name(project)),
            CleanupStep("remove containers by label", lambda: self.janitor.remove_by_project_label(project)),
            CleanupStep("delete state file", lambda: self._delete_state_file(context)),
            CleanupStep("clear published properties", lambda: self._unpublish(context)),
        ]

    def _stop(self, context: StackContext):
        self.orchestrator.stop(context.project_name, context.definition.files, remove_volumes=True).result()

    def _delete_state_file(self, context: StackContext) -> bool:
        # other units of the same stack keep their files
        return self.store.delete(context.state_file)

    def _unpublish(self, context: StackContext):
        if self.properties.get(ENV_PROJECT_NAME) == context.project_name:
            self.properties.unset(ENV_STATE_FILE)
            self.properties.unset(ENV_PROJECT_NAME)
