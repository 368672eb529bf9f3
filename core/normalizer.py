"""
SWARMGRAPH NORMALIZER - Lifecycle Events to Graph Mutations

Maps inbound swarm lifecycle events onto canonical mutations. The
normalizer is pure: it never touches the store, it only describes what
the GraphEngine should apply.

Event Shape:
    {"type": "agent-spawn", "data": {"id": "agent-1", "swarmId": "swarm-1", ...}}

    Type names may use hyphens or underscores ("agent_spawn").
    Payload keys are camelCase; snake_case aliases are accepted.

Mapping:
    swarm-init        -> UpsertNode(Swarm)
    agent-spawn       -> UpsertNode(Agent), UpsertEdge(ORCHESTRATES swarm->agent)
    task-orchestrate  -> UpsertNode(Task)
    task-assign       -> UpsertEdge(EXECUTES agent->task, startTime)
    task-progress     -> PatchNode(task: progress, status)
    file-operation    -> UpsertNode(File), UpsertEdge(MODIFIES task->file), Announce
    issue-update      -> UpsertNode(Issue), UpsertEdge(IMPLEMENTS task->issue), Announce
    agent-message     -> UpsertEdge(COLLABORATES from->to, protocol/messages), Announce

Contract:
    normalize() NEVER raises. Malformed events (None, non-mapping, missing
    type, missing/non-mapping data) and unknown types yield [].
"""
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import msgspec

from core.ontology import DeltaType, EdgeType, InboundEventType, NodeType, TaskStatus


logger = logging.getLogger("swarmgraph.normalizer")


# =============================================================================
# MUTATIONS (What the engine applies)
# =============================================================================

class UpsertNode(msgspec.Struct, kw_only=True, frozen=True):
    """Insert or replace a node built from `data`."""
    node_type: str
    data: Dict[str, Any]


class UpsertEdge(msgspec.Struct, kw_only=True, frozen=True):
    """Insert or replace the (source, edge_type, target) edge."""
    edge_type: str
    source: str
    target: str
    properties: Dict[str, Any] = msgspec.field(default_factory=dict)
    expires_at: Optional[float] = None


class PatchNode(msgspec.Struct, kw_only=True, frozen=True):
    """Merge `changes` into an existing node; skipped if absent."""
    node_id: str
    changes: Dict[str, Any]


class Announce(msgspec.Struct, kw_only=True, frozen=True):
    """Broadcast a pass-through domain message; no store change."""
    message_type: str
    data: Dict[str, Any]


Mutation = Union[UpsertNode, UpsertEdge, PatchNode, Announce]


# =============================================================================
# PAYLOAD HELPERS
# =============================================================================

def _snake(key: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in key)


def pick(data: Mapping[str, Any], key: str) -> Optional[str]:
    """
    Read a reference field as a string, accepting a snake_case alias.

    pick(data, "swarmId") looks at "swarmId" then "swarm_id". Empty values
    count as missing.
    """
    for candidate in (key, _snake(key)):
        value = data.get(candidate)
        if value not in (None, ""):
            return str(value)
    return None


# =============================================================================
# NORMALIZER
# =============================================================================

class EventNormalizer:
    """
    Turns inbound lifecycle events into mutation lists.

    Usage:
        normalizer = EventNormalizer(collaboration_ttl=3.0)
        for mutation in normalizer.normalize(event):
            ...
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        collaboration_ttl: Optional[float] = None,
    ):
        """
        Args:
            clock: Time source for startTime/timestamp edge properties
            collaboration_ttl: Default lifetime (seconds) of COLLABORATES
                edges. None keeps them until evicted. A per-event "ttl"
                overrides it.
        """
        self._clock = clock
        self.collaboration_ttl = collaboration_ttl
        self._handlers: Dict[InboundEventType, Callable[[Dict[str, Any]], List[Mutation]]] = {
            InboundEventType.SWARM_INIT: self._swarm_init,
            InboundEventType.AGENT_SPAWN: self._agent_spawn,
            InboundEventType.TASK_ORCHESTRATE: self._task_orchestrate,
            InboundEventType.TASK_ASSIGN: self._task_assign,
            InboundEventType.TASK_PROGRESS: self._task_progress,
            InboundEventType.FILE_OPERATION: self._file_operation,
            InboundEventType.ISSUE_UPDATE: self._issue_update,
            InboundEventType.AGENT_MESSAGE: self._agent_message,
        }

    def normalize(self, event: Any) -> List[Mutation]:
        """
        Map one event to its mutations.

        Returns:
            Mutations in apply order; [] for malformed or unknown events
        """
        if not isinstance(event, Mapping):
            logger.debug(f"Discarding non-object event: {type(event).__name__}")
            return []

        data = event.get("data")
        if "type" not in event or not isinstance(data, Mapping):
            logger.debug("Discarding event without type/data")
            return []

        event_type = InboundEventType.parse(event.get("type"))
        if event_type is None:
            logger.debug(f"Ignoring unrecognized event type: {event.get('type')!r}")
            return []

        try:
            return self._handlers[event_type](dict(data))
        except Exception as e:
            logger.warning(f"Discarding malformed {event_type.value} event: {e}")
            return []

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def _swarm_init(self, data: Dict[str, Any]) -> List[Mutation]:
        return [UpsertNode(node_type=NodeType.SWARM.value, data=data)]

    def _agent_spawn(self, data: Dict[str, Any]) -> List[Mutation]:
        mutations: List[Mutation] = [UpsertNode(node_type=NodeType.AGENT.value, data=data)]
        swarm_id = pick(data, "swarmId")
        agent_id = pick(data, "id")
        if swarm_id and agent_id:
            mutations.append(UpsertEdge(
                edge_type=EdgeType.ORCHESTRATES.value,
                source=swarm_id,
                target=agent_id,
            ))
        return mutations

    def _task_orchestrate(self, data: Dict[str, Any]) -> List[Mutation]:
        return [UpsertNode(node_type=NodeType.TASK.value, data=data)]

    def _task_assign(self, data: Dict[str, Any]) -> List[Mutation]:
        agent_id = pick(data, "agentId")
        task_id = pick(data, "taskId")
        if not (agent_id and task_id):
            return []
        return [UpsertEdge(
            edge_type=EdgeType.EXECUTES.value,
            source=agent_id,
            target=task_id,
            properties={"startTime": data.get("startTime", self._clock())},
        )]

    def _task_progress(self, data: Dict[str, Any]) -> List[Mutation]:
        task_id = pick(data, "taskId")
        if not task_id:
            return []
        return [PatchNode(
            node_id=task_id,
            changes={
                "progress": data.get("progress"),
                "status": data.get("status") or TaskStatus.EXECUTING.value,
            },
        )]

    def _file_operation(self, data: Dict[str, Any]) -> List[Mutation]:
        file_id = pick(data, "id") or pick(data, "filePath") or pick(data, "path")
        node_data = dict(data, id=file_id) if file_id else data
        mutations: List[Mutation] = [UpsertNode(node_type=NodeType.FILE.value, data=node_data)]

        task_id = pick(data, "taskId")
        if task_id and file_id:
            mutations.append(UpsertEdge(
                edge_type=EdgeType.MODIFIES.value,
                source=task_id,
                target=file_id,
                properties={
                    "operation": data.get("operation"),
                    "timestamp": self._clock(),
                },
            ))
        mutations.append(Announce(message_type=DeltaType.FILE_MODIFIED.value, data=data))
        return mutations

    def _issue_update(self, data: Dict[str, Any]) -> List[Mutation]:
        issue_id = pick(data, "id") or pick(data, "issueId")
        node_data = dict(data, id=issue_id) if issue_id else data
        mutations: List[Mutation] = [UpsertNode(node_type=NodeType.ISSUE.value, data=node_data)]

        task_id = pick(data, "taskId")
        if task_id and issue_id:
            mutations.append(UpsertEdge(
                edge_type=EdgeType.IMPLEMENTS.value,
                source=task_id,
                target=issue_id,
            ))
        mutations.append(Announce(message_type=DeltaType.ISSUE_LINKED.value, data=data))
        return mutations

    def _agent_message(self, data: Dict[str, Any]) -> List[Mutation]:
        source = pick(data, "from")
        target = pick(data, "to")
        if not (source and target):
            return []

        ttl = data.get("ttl", self.collaboration_ttl)
        expires_at = self._clock() + float(ttl) if ttl else None

        return [
            UpsertEdge(
                edge_type=EdgeType.COLLABORATES.value,
                source=source,
                target=target,
                properties={
                    "protocol": data.get("protocol"),
                    "messages": data.get("messages"),
                },
                expires_at=expires_at,
            ),
            Announce(message_type=DeltaType.COLLABORATION.value, data=data),
        ]
