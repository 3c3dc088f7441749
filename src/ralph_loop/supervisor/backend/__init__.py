"""Agent backend adapters and runners."""

from ralph_loop.supervisor.backend.base import (
    AgentAdapter,
    AgentBackend,
    BackendRunRequest,
    BackendRunResult,
)
from ralph_loop.supervisor.backend.cli_backend import BackendRunError, CliAgentBackend
from ralph_loop.supervisor.backend.registry import (
    AdapterRegistry,
    AgentResolutionError,
    AgentSelection,
    default_registry,
    resolve_selection,
)

__all__ = [
    "AdapterRegistry",
    "AgentAdapter",
    "AgentBackend",
    "AgentResolutionError",
    "AgentSelection",
    "BackendRunError",
    "BackendRunRequest",
    "BackendRunResult",
    "CliAgentBackend",
    "default_registry",
    "resolve_selection",
]
