"""
SWARMGRAPH ONTOLOGY - The Dictionary of the Swarm Graph

If schemas.py is the Grammar (how records are structured),
ontology.py is the Dictionary (the words the graph uses).

This module defines:
- NodeType / EdgeType: The vocabulary of swarm entities and relationships
- TaskStatus / AgentStatus: Status values the metrics engine looks for
- InboundEventType: Lifecycle events accepted by the normalizer
- DeltaType: Message types pushed to subscribers

Node and edge types are OPEN tags: the enums list the types the system
itself produces, but the store accepts any string.
"""
from enum import Enum
from typing import Optional


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class NodeType(str, Enum):
    """Node types produced by the normalizer and its collaborators."""
    SWARM = "Swarm"                          # A swarm (top-level coordinator)
    AGENT = "Agent"                          # An agent spawned into a swarm
    TASK = "Task"                            # A unit of orchestrated work
    ISSUE = "Issue"                          # Tracker issue a task implements
    FILE = "File"                            # File touched by a task
    ANALYSIS = "Analysis"                    # Analysis run performed by an agent
    GLOBAL_AGENT = "GlobalAgent"             # Long-lived agent outside any swarm
    WORKSPACE = "Workspace"                  # Workspace a global agent operates in
    COORDINATION_HUB = "CoordinationHub"     # Hub connecting global agents


class EdgeType(str, Enum):
    """Relationship types between nodes."""
    ORCHESTRATES = "ORCHESTRATES"            # Swarm -> Agent
    EXECUTES = "EXECUTES"                    # Agent -> Task
    MODIFIES = "MODIFIES"                    # Task -> File
    IMPLEMENTS = "IMPLEMENTS"                # Task -> Issue
    COLLABORATES = "COLLABORATES"            # Agent -> Agent (often ephemeral)
    PERFORMS = "PERFORMS"                    # Agent -> Analysis
    OPERATES_IN = "OPERATES_IN"              # GlobalAgent -> Workspace
    COORDINATES_WITH = "COORDINATES_WITH"    # CoordinationHub -> GlobalAgent


class TaskStatus(str, Enum):
    """Task status values with meaning to the metrics engine."""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentStatus(str, Enum):
    """Agent status values with meaning to the metrics engine."""
    CONFIGURED = "configured"
    ACTIVE = "active"
    BUSY = "busy"
    IDLE = "idle"
    COMPLETED = "completed"


class InboundEventType(str, Enum):
    """Lifecycle events understood by the normalizer."""
    SWARM_INIT = "swarm-init"
    AGENT_SPAWN = "agent-spawn"
    TASK_ORCHESTRATE = "task-orchestrate"
    TASK_ASSIGN = "task-assign"
    TASK_PROGRESS = "task-progress"
    FILE_OPERATION = "file-operation"
    ISSUE_UPDATE = "issue-update"
    AGENT_MESSAGE = "agent-message"

    @classmethod
    def parse(cls, raw: object) -> Optional["InboundEventType"]:
        """
        Resolve a raw event type string, accepting either spelling.

        "swarm-init" and "swarm_init" both resolve to SWARM_INIT.
        Returns None for anything unrecognized.
        """
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().lower().replace("_", "-"))
        except ValueError:
            return None


class DeltaType(str, Enum):
    """Message types pushed to subscribers."""
    INITIAL = "initial"                      # Full snapshot on subscribe
    NODE_ADDED = "node:added"
    NODE_UPDATED = "node:updated"
    EDGE_ADDED = "edge:added"
    EDGE_REMOVED = "edge:removed"
    GC_CLEANUP = "gc:cleanup"
    METRICS = "metrics"                      # Periodic metrics push
    # Pass-through domain announcements
    FILE_MODIFIED = "file:modified"
    ISSUE_LINKED = "issue:linked"
    COLLABORATION = "collaboration"
