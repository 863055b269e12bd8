"""Agent assignment policies."""

from __future__ import annotations

import itertools
from typing import Optional, Protocol

from .directory import StaffDirectory, StaffMember


class AssignmentPolicy(Protocol):
    def find_available_agent(self) -> Optional[StaffMember]: ...


class FirstAvailablePolicy:
    """Pick the first available agent in directory order. No load balancing."""

    def __init__(self, directory: StaffDirectory) -> None:
        self._directory = directory

    def find_available_agent(self) -> Optional[StaffMember]:
        agents = self._directory.list_available_agents()
        return agents[0] if agents else None


class RoundRobinPolicy:
    """Rotate through available agents across successive escalations."""

    def __init__(self, directory: StaffDirectory) -> None:
        self._directory = directory
        self._counter = itertools.count()

    def find_available_agent(self) -> Optional[StaffMember]:
        agents = self._directory.list_available_agents()
        if not agents:
            return None
        return agents[next(self._counter) % len(agents)]


_POLICIES = {
    "first-available": FirstAvailablePolicy,
    "round-robin": RoundRobinPolicy,
}


def build_policy(name: str, directory: StaffDirectory) -> AssignmentPolicy:
    try:
        factory = _POLICIES[name]
    except KeyError as exc:
        raise ValueError(f"Unknown assignment policy: {name}") from exc
    return factory(directory)


__all__ = ["AssignmentPolicy", "FirstAvailablePolicy", "RoundRobinPolicy", "build_policy"]
