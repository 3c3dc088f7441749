"""Adapter registry and agent/model resolution."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from types import MappingProxyType

from ralph_loop.supervisor.backend.adapters import DEFAULT_ADAPTERS
from ralph_loop.supervisor.backend.base import AgentAdapter

logger = logging.getLogger(__name__)


class AgentResolutionError(ValueError):
    """Requested agent is unknown or no agent CLI is available."""


class AdapterRegistry:
    """Ordered, register-once collection of agent adapters."""

    def __init__(self, adapters: Iterable[AgentAdapter] = ()) -> None:
        self._adapters: dict[str, AgentAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: AgentAdapter) -> None:
        key = _normalize_agent(adapter.id)
        if not key:
            raise AgentResolutionError("Agent id cannot be empty.")
        if key in self._adapters:
            raise AgentResolutionError(f"Agent {key!r} is already registered.")
        self._adapters[key] = adapter

    @property
    def adapters(self) -> MappingProxyType[str, AgentAdapter]:
        return MappingProxyType(self._adapters)

    def ids(self) -> tuple[str, ...]:
        return tuple(self._adapters)

    def get(self, agent_id: str) -> AgentAdapter:
        key = _normalize_agent(agent_id)
        try:
            return self._adapters[key]
        except KeyError:
            supported = ", ".join(self._adapters)
            raise AgentResolutionError(
                f"Unsupported agent: {agent_id!r}. Use one of: {supported}.",
            ) from None

    def available(self, *, timeout_seconds: float) -> list[AgentAdapter]:
        return [
            adapter
            for adapter in self._adapters.values()
            if adapter.is_available(timeout_seconds=timeout_seconds)
        ]

    def resolve(self, agent_id: str | None, *, timeout_seconds: float) -> AgentAdapter:
        """Return the requested adapter, or the first available one, checking availability."""

        if agent_id is not None:
            adapter = self.get(agent_id)
            if not adapter.is_available(timeout_seconds=timeout_seconds):
                raise AgentResolutionError(
                    f"Agent {adapter.id!r} is not available: "
                    f"{adapter.executable!r} not found or not responding.",
                )
            return adapter

        available = self.available(timeout_seconds=timeout_seconds)
        if not available:
            executables = ", ".join(adapter.executable for adapter in self._adapters.values())
            raise AgentResolutionError(
                f"No supported agent CLI is installed. Install one of: {executables}.",
            )
        logger.info("No agent requested, using first available: %s", available[0].id)
        return available[0]


@dataclass(frozen=True, slots=True)
class AgentSelection:
    """Resolved adapter plus model."""

    adapter: AgentAdapter
    model: str


def resolve_selection(
    registry: AdapterRegistry,
    *,
    agent_id: str | None,
    model: str | None,
    timeout_seconds: float,
) -> AgentSelection:
    adapter = registry.resolve(agent_id, timeout_seconds=timeout_seconds)
    resolved_model = model.strip() if model is not None else adapter.default_model
    if not resolved_model:
        raise AgentResolutionError(f"Resolved model is empty for agent={adapter.id!r}")
    return AgentSelection(adapter=adapter, model=resolved_model)


def default_registry() -> AdapterRegistry:
    return AdapterRegistry(DEFAULT_ADAPTERS)


def _normalize_agent(value: str) -> str:
    return value.strip().lower()
