"""
SWARMGRAPH MUTATION LOG - Recent Deltas for Debugging

Keeps an in-memory record of the deltas the engine has broadcast, so
operators can ask "what just happened to agent-7?" without attaching a
WebSocket client.

Architecture:
- MutationEvent: Flattened, queryable summary of one DeltaMessage
- EventBuffer: Thread-safe ring buffer of recent events
- MutationLogger: Builds events from DeltaMessages and answers queries

Usage:
    log = MutationLogger(buffer_size=1000)
    log.record(DeltaMessage(type="node:added", data=node, sequence=1))

    recent = log.get_recent_events(50)
    timeline = log.get_events_for_node("agent-7")

Design:
- Bounded: the oldest events fall off once the buffer is full
- Thread-safe: HTTP handlers may read while the engine appends
- Never raises from record(); logging must not disturb ingestion
"""
import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import msgspec

from core.ontology import DeltaType
from core.schemas import DeltaMessage, Edge, Node


logger = logging.getLogger("swarmgraph.mutations")


# =============================================================================
# EVENT
# =============================================================================

class MutationEvent(msgspec.Struct, kw_only=True, frozen=True):
    """
    One broadcast delta, flattened for querying.

    Only the identifying fields are kept; the full record is what the
    subscribers received.
    """
    timestamp: str
    sequence: int
    mutation_type: str                  # DeltaType value
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    status: Optional[str] = None

    # Source/target for edges
    edge_id: Optional[str] = None
    edge_type: Optional[str] = None
    source_id: Optional[str] = None
    target_id: Optional[str] = None

    # Sweep summaries
    nodes_removed: int = 0
    edges_removed: int = 0

    def touches_node(self, node_id: str) -> bool:
        """True if the event concerns `node_id` as node or edge endpoint."""
        return node_id in (self.node_id, self.source_id, self.target_id)


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent mutation events.

    O(1) append, O(n) queries.
    """

    def __init__(self, max_size: int = 1000):
        self._buffer: Deque[MutationEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()

    def append(self, event: MutationEvent) -> None:
        """Add an event to the buffer."""
        with self._lock:
            self._buffer.append(event)

    def get_since(self, timestamp: str) -> List[MutationEvent]:
        """Get all events at or after an ISO timestamp."""
        with self._lock:
            return [e for e in self._buffer if e.timestamp >= timestamp]

    def get_last(self, n: int) -> List[MutationEvent]:
        """Get the last n events, oldest first."""
        if n <= 0:
            return []
        with self._lock:
            items = list(self._buffer)
        return items[-n:]

    def get_by_node(self, node_id: str) -> List[MutationEvent]:
        """Get all events touching a node."""
        with self._lock:
            return [e for e in self._buffer if e.touches_node(node_id)]

    def get_by_type(self, mutation_type: str) -> List[MutationEvent]:
        """Get all events of a specific type."""
        with self._lock:
            return [e for e in self._buffer if e.mutation_type == mutation_type]

    @property
    def capacity(self) -> Optional[int]:
        return self._buffer.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# =============================================================================
# MUTATION LOGGER (Main Interface)
# =============================================================================

def _summarize(message: DeltaMessage) -> Dict[str, Any]:
    """Pull the identifying fields out of a delta's payload."""
    data = message.data

    if isinstance(data, Node):
        return {"node_id": data.id, "node_type": data.type, "status": data.status}

    if isinstance(data, Edge):
        return {
            "edge_id": data.id,
            "edge_type": data.type,
            "source_id": data.source,
            "target_id": data.target,
        }

    if message.type == DeltaType.GC_CLEANUP.value and isinstance(data, dict):
        removed = data.get("removed", {})
        return {
            "nodes_removed": removed.get("nodes", 0),
            "edges_removed": removed.get("edges", 0),
        }

    if message.type == DeltaType.EDGE_REMOVED.value and isinstance(data, dict):
        return {
            "edge_id": data.get("id"),
            "edge_type": data.get("type"),
            "source_id": data.get("from"),
            "target_id": data.get("to"),
        }

    return {}


class MutationLogger:
    """
    Recent-delta log queried by the HTTP surface.

    Usage:
        log = MutationLogger()
        log.record(message)
        log.get_recent_events(100)
    """

    def __init__(self, buffer_size: int = 1000):
        self._buffer = EventBuffer(buffer_size)

    def record(self, message: DeltaMessage) -> Optional[MutationEvent]:
        """
        Log a broadcast delta.

        Metrics pushes and initial snapshots are not mutations and are
        skipped.

        Returns:
            The stored event, or None if skipped
        """
        if message.type in (DeltaType.METRICS.value, DeltaType.INITIAL.value):
            return None

        try:
            event = MutationEvent(
                timestamp=message.timestamp,
                sequence=message.sequence,
                mutation_type=message.type,
                **_summarize(message),
            )
        except Exception as e:
            logger.warning(f"Could not log {message.type} delta: {e}")
            return None

        self._buffer.append(event)
        return event

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        """Get the n most recent events."""
        return self._buffer.get_last(n)

    def get_events_since(self, timestamp: str) -> List[MutationEvent]:
        """Get all events since a timestamp."""
        return self._buffer.get_since(timestamp)

    def get_events_for_node(self, node_id: str) -> List[MutationEvent]:
        """Get all events for a specific node, including its edges."""
        return self._buffer.get_by_node(node_id)

    def get_events_by_type(self, mutation_type: str) -> List[MutationEvent]:
        """Get all events of a specific type."""
        return self._buffer.get_by_type(mutation_type)

    def __len__(self) -> int:
        return len(self._buffer)
