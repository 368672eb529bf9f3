"""
SWARMGRAPH STORE - The Authoritative Graph State

The single owner of every node and edge record. All mutations of the
swarm graph pass through this class; every other component sees only
immutable records or frozen snapshots.

Storage Model:
  _nodes: Dict[str, Node]   (node id -> record, insertion ordered)
  _edges: Dict[str, Edge]   (edge id -> record, insertion ordered)

Semantics:
- upsert_node REPLACES a record wholesale (no merge) and resets its
  timestamps; the replacement moves to the end of insertion order.
- patch_node MERGES into an existing record and reports None if absent.
- upsert_edge dedups on the (from, type, to) triple.
- remove_node does NOT cascade to edges. Dangling edges are legal;
  cascading is the eviction sweeper's job.

Ownership:
    Records are frozen, and every record handed out (return values,
    lookups, snapshots) is a detached copy, so callers never hold the
    store's own property maps.

Thread Safety:
    NOT thread-safe. The GraphEngine serializes every call onto a single
    asyncio task; use it rather than calling mutators from several tasks.
"""
import itertools
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from core.schemas import Node, Edge, GraphSnapshot, now_utc


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class GraphError(Exception):
    """Base exception for graph operations."""
    pass


class NodeNotFoundError(GraphError):
    """Raised when a node id is not in the store."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class EdgeNotFoundError(GraphError):
    """Raised when an edge id is not in the store."""
    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge not found: {edge_id}")


# =============================================================================
# GRAPH STORE
# =============================================================================

class GraphStore:
    """
    In-memory property graph of swarm entities.

    Usage:
        store = GraphStore()
        swarm = store.upsert_node("Swarm", {"id": "swarm-1", "name": "Alpha"})
        agent = store.upsert_node("Agent", {"id": "agent-1", "status": "active"})
        store.upsert_edge("ORCHESTRATES", swarm.id, agent.id)

        store.patch_node("agent-1", {"status": "busy"})
        snapshot = store.snapshot()
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Initialize an empty store.

        Args:
            clock: Source of "now" in epoch seconds. Injected so tests and
                   the eviction sweeper can share a controllable time base.
        """
        self._clock = clock
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, Edge] = {}
        self._id_sequence = itertools.count(1)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    @property
    def node_count(self) -> int:
        """Number of nodes in the store."""
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        """Number of edges in the store."""
        return len(self._edges)

    @property
    def is_empty(self) -> bool:
        """True if the store holds no nodes and no edges."""
        return not self._nodes and not self._edges

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================

    def upsert_node(self, node_type: str, data: Mapping[str, Any]) -> Node:
        """
        Insert or replace a node.

        The id comes from data["id"] or, when absent, is generated as
        "<type>_<epoch-ms>_<seq>". Any prior record with the same id is
        discarded, not merged.

        Args:
            node_type: Type tag for the node
            data: Event payload (known attributes + arbitrary extras)

        Returns:
            The newly stored record
        """
        now = self._clock()
        raw_id = data.get("id")
        node_id = str(raw_id) if raw_id not in (None, "") else self._generate_id(node_type, now)

        node = Node.create(node_id, node_type, data, now)

        # pop + insert so a replacement counts as the newest entry
        self._nodes.pop(node_id, None)
        self._nodes[node_id] = node
        return node.detached()

    def patch_node(self, node_id: str, changes: Mapping[str, Any]) -> Optional[Node]:
        """
        Merge `changes` into an existing node.

        Returns:
            The updated record, or None if the id is unknown (no mutation)
        """
        current = self._nodes.get(node_id)
        if current is None:
            return None

        updated = current.with_changes(changes, self._clock())
        self._nodes[node_id] = updated
        return updated.detached()

    def remove_node(self, node_id: str) -> bool:
        """
        Remove a node. Idempotent; does not touch edges.

        Returns:
            True if a node was removed
        """
        return self._nodes.pop(node_id, None) is not None

    def get_node(self, node_id: str) -> Node:
        """
        Get a node by id.

        Raises:
            NodeNotFoundError: If the id is unknown
        """
        try:
            return self._nodes[node_id].detached()
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def has_node(self, node_id: str) -> bool:
        """Check if a node exists."""
        return node_id in self._nodes

    def nodes(self) -> Tuple[Node, ...]:
        """All nodes, in insertion order, as a stable copy."""
        return tuple(n.detached() for n in self._nodes.values())

    def nodes_by_type(self, node_type: str) -> List[Node]:
        """All nodes with the given type tag."""
        return [n.detached() for n in self._nodes.values() if n.type == node_type]

    # =========================================================================
    # EDGE OPERATIONS
    # =========================================================================

    def upsert_edge(
        self,
        edge_type: str,
        source: str,
        target: str,
        properties: Optional[Mapping[str, Any]] = None,
        expires_at: Optional[float] = None,
    ) -> Edge:
        """
        Insert or replace the edge identified by (source, edge_type, target).

        Properties of a replaced edge are discarded, not merged.

        Args:
            edge_type: Relationship type
            source: Source node id (need not exist)
            target: Target node id (need not exist)
            properties: Extra edge attributes
            expires_at: Epoch seconds after which the edge should be removed

        Returns:
            The newly stored record
        """
        edge = Edge.create(
            edge_type,
            source,
            target,
            self._clock(),
            properties=properties,
            expires_at=expires_at,
        )
        self._edges.pop(edge.id, None)
        self._edges[edge.id] = edge
        return edge.detached()

    def remove_edge(self, edge_id: str) -> bool:
        """
        Remove an edge. Idempotent.

        Returns:
            True if an edge was removed
        """
        return self._edges.pop(edge_id, None) is not None

    def get_edge(self, edge_id: str) -> Edge:
        """
        Get an edge by id.

        Raises:
            EdgeNotFoundError: If the id is unknown
        """
        try:
            return self._edges[edge_id].detached()
        except KeyError:
            raise EdgeNotFoundError(edge_id) from None

    def has_edge(self, edge_id: str) -> bool:
        """Check if an edge exists."""
        return edge_id in self._edges

    def edges(self) -> Tuple[Edge, ...]:
        """All edges, in insertion order, as a stable copy."""
        return tuple(e.detached() for e in self._edges.values())

    def edges_touching(self, node_ids: Iterable[str]) -> List[Edge]:
        """All edges with either endpoint in `node_ids`."""
        ids = set(node_ids)
        if not ids:
            return []
        return [e.detached() for e in self._edges.values() if e.touches(ids)]

    def expired_edges(self, now: Optional[float] = None) -> List[Edge]:
        """All ephemeral edges whose expiry is at or before `now`."""
        if now is None:
            now = self._clock()
        return [e.detached() for e in self._edges.values() if e.is_expired(now)]

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def snapshot(self) -> GraphSnapshot:
        """
        Take a consistent copy of the whole graph.

        Every record is detached from the store, so neither later mutations
        nor changes made by the reader leak across.
        """
        return GraphSnapshot(
            timestamp=now_utc(),
            nodes=tuple(n.detached() for n in self._nodes.values()),
            edges=tuple(e.detached() for e in self._edges.values()),
        )

    def clear(self) -> None:
        """Drop every node and edge."""
        self._nodes.clear()
        self._edges.clear()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _generate_id(self, node_type: str, now: float) -> str:
        """Fallback node id: "<type>_<epoch-ms>_<seq>"."""
        return f"{node_type}_{int(now * 1000)}_{next(self._id_sequence)}"

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __repr__(self) -> str:
        return f"GraphStore(nodes={self.node_count}, edges={self.edge_count})"
