"""
Pytest configuration and shared fixtures for the SwarmGraph test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def fake_clock():
    """Provide a clock that only moves when told to."""
    return FakeClock()


@pytest.fixture
def fresh_store(fake_clock):
    """Provide an empty GraphStore on the fake clock."""
    from core.graph_store import GraphStore
    return GraphStore(clock=fake_clock)


@pytest.fixture
def swarm_events():
    """A small swarm: one swarm, two agents, one task assigned to agent-1."""
    return [
        {"type": "swarm-init", "data": {"id": "swarm-1", "name": "Alpha", "topology": "mesh"}},
        {"type": "agent-spawn", "data": {"id": "agent-1", "swarmId": "swarm-1", "name": "Coder", "status": "active"}},
        {"type": "agent-spawn", "data": {"id": "agent-2", "swarmId": "swarm-1", "name": "Tester", "status": "idle"}},
        {"type": "task-orchestrate", "data": {"id": "task-1", "title": "Build parser", "priority": "high", "status": "pending"}},
        {"type": "task-assign", "data": {"agentId": "agent-1", "taskId": "task-1"}},
    ]
