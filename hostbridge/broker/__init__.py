"""In-memory command broker for a polling remote execution host."""

from hostbridge.broker.core import CommandBroker
from hostbridge.broker.correlation import CorrelationTable
from hostbridge.broker.errors import (
    BrokerAlreadyRunningError,
    BrokerError,
    BrokerStartupError,
    CommandTimeoutError,
    DuplicateCommandError,
    MalformedResponseError,
    PortInUseError,
)
from hostbridge.broker.mode import ModeTracker
from hostbridge.broker.models import BrokerResponse, Command, ExecutionContext
from hostbridge.broker.queue import PendingCommandQueue
from hostbridge.broker.router import ActionPolicy, ContextRouter

__all__ = [
    "ActionPolicy",
    "BrokerAlreadyRunningError",
    "BrokerError",
    "BrokerResponse",
    "BrokerStartupError",
    "Command",
    "CommandBroker",
    "CommandTimeoutError",
    "ContextRouter",
    "CorrelationTable",
    "DuplicateCommandError",
    "ExecutionContext",
    "MalformedResponseError",
    "ModeTracker",
    "PendingCommandQueue",
    "PortInUseError",
]
