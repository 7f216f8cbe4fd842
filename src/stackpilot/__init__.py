"""
StackPilot - Docker Compose stacks for integration tests
"""

__version__ = "0.1.0"
__author__ = "dozey"
__email__ = "dozeynwct@hotmail.com"

from .exceptions import ErrorType, ServicesTimeoutError, StackError
from .models import LogLevel, ServiceStatus, StackConfig, StackState, WaitConfig, LogsConfig
from .orchestrator import StackOrchestrator
from .pilot import StackPilot

__all__ = [
    "StackPilot", "StackOrchestrator", "StackConfig", "StackState", "WaitConfig", "LogsConfig",
    "ServiceStatus", "StackError", "ServicesTimeoutError", "ErrorType", "LogLevel", "__version__",
]
