"""
SWARMGRAPH EVICTION - Bounded Memory for a Live Graph

The sweeper is the system's only backpressure against unbounded growth.
It removes old, non-pinned nodes (and the edges that touch them) once the
store crosses its size thresholds.

Algorithm (one sweep):
1. If node_count < max_nodes AND edge_count < max_edges -> no-op.
2. cutoff = now - max_age
3. Remove every non-pinned node created before the cutoff; remove every
   edge created before the cutoff or touching a node removed here.
4. If still over max_nodes, remove the oldest non-pinned nodes (ties keep
   insertion order) until at max_nodes, cascading their edges.
5. Report before/after counts; the engine broadcasts gc:cleanup only if
   something changed.

Note on "age": upserting a node replaces it and resets created_at, so
step 4 is effectively least-recently-upserted first.
"""
import logging
from typing import Annotated, Callable, FrozenSet, List, Optional, Set

import msgspec

from core.graph_store import GraphStore
from core.ontology import NodeType


logger = logging.getLogger("swarmgraph.eviction")


# =============================================================================
# CONFIGURATION
# =============================================================================

def _default_pinned_types() -> FrozenSet[str]:
    return frozenset({
        NodeType.SWARM.value,
        NodeType.GLOBAL_AGENT.value,
        NodeType.COORDINATION_HUB.value,
    })


class EvictionConfig(msgspec.Struct, kw_only=True, frozen=True):
    """
    Eviction policy.

    Constraints are enforced when the config is decoded (msgspec.convert),
    see infrastructure.config.load_config.
    """
    max_nodes: Annotated[int, msgspec.Meta(gt=0)] = 1000       # Size gate for nodes
    max_edges: Annotated[int, msgspec.Meta(gt=0)] = 5000       # Size gate for edges
    max_age: Annotated[float, msgspec.Meta(gt=0)] = 3600.0     # Seconds
    interval: Annotated[float, msgspec.Meta(gt=0)] = 60.0      # Seconds between timer sweeps
    pinned_types: FrozenSet[str] = msgspec.field(default_factory=_default_pinned_types)
    enabled: bool = True                                       # Timer sweeps on/off


# =============================================================================
# RESULT
# =============================================================================

class SweepResult(msgspec.Struct, kw_only=True, frozen=True):
    """Outcome of one sweep."""
    nodes_before: int
    edges_before: int
    nodes_after: int
    edges_after: int
    swept: bool = False                 # False when the size gate short-circuited
    manual: bool = False                # True for on-demand sweeps
    removed_node_ids: List[str] = msgspec.field(default_factory=list)

    @property
    def changed(self) -> bool:
        return (
            self.nodes_before != self.nodes_after or
            self.edges_before != self.edges_after
        )

    @property
    def nodes_removed(self) -> int:
        return self.nodes_before - self.nodes_after

    @property
    def edges_removed(self) -> int:
        return self.edges_before - self.edges_after

    def to_payload(self) -> dict:
        """Wire payload for gc:cleanup and the manual-trigger response."""
        return {
            "before": {"nodes": self.nodes_before, "edges": self.edges_before},
            "after": {"nodes": self.nodes_after, "edges": self.edges_after},
            "removed": {"nodes": self.nodes_removed, "edges": self.edges_removed},
            "swept": self.swept,
            "manual": self.manual,
        }


# =============================================================================
# SWEEPER
# =============================================================================

class EvictionSweeper:
    """
    Applies the eviction policy to a GraphStore.

    The sweeper holds no graph state of its own; it must be called from
    the store's owner (the GraphEngine task) so a sweep never interleaves
    with ingestion.
    """

    def __init__(self, config: Optional[EvictionConfig] = None, clock: Optional[Callable[[], float]] = None):
        """
        Args:
            config: Eviction policy (defaults apply if None)
            clock: Time source; defaults to the swept store's clock
        """
        self.config = config or EvictionConfig()
        self._clock = clock

    def should_sweep(self, store: GraphStore) -> bool:
        """Size gate: True once either threshold is reached."""
        return (
            store.node_count >= self.config.max_nodes or
            store.edge_count >= self.config.max_edges
        )

    def sweep(self, store: GraphStore, manual: bool = False) -> SweepResult:
        """
        Run one sweep over `store`. Never raises.

        Args:
            store: The store to shrink
            manual: Marks the result as an on-demand sweep

        Returns:
            SweepResult with before/after counts
        """
        nodes_before = store.node_count
        edges_before = store.edge_count

        if not self.should_sweep(store):
            return SweepResult(
                nodes_before=nodes_before,
                edges_before=edges_before,
                nodes_after=nodes_before,
                edges_after=edges_before,
                manual=manual,
            )

        removed: List[str] = []
        try:
            now = (self._clock or store.clock)()
            removed.extend(self._evict_stale(store, now - self.config.max_age))
            removed.extend(self._evict_excess(store))
        except Exception as e:
            logger.error(f"Eviction sweep aborted: {e}", exc_info=True)

        result = SweepResult(
            nodes_before=nodes_before,
            edges_before=edges_before,
            nodes_after=store.node_count,
            edges_after=store.edge_count,
            swept=True,
            manual=manual,
            removed_node_ids=removed,
        )

        if result.changed:
            logger.info(
                f"Swept {result.nodes_removed} nodes and {result.edges_removed} edges "
                f"({result.nodes_after} nodes, {result.edges_after} edges remain)"
            )
        return result

    # =========================================================================
    # STEPS
    # =========================================================================

    def _is_pinned(self, node_type: str) -> bool:
        return node_type in self.config.pinned_types

    def _evict_stale(self, store: GraphStore, cutoff: float) -> List[str]:
        """Step 3: age-based removal of nodes and edges."""
        stale = [
            node.id for node in store.nodes()
            if not self._is_pinned(node.type) and node.created_at < cutoff
        ]
        stale_ids: Set[str] = set(stale)
        for node_id in stale:
            store.remove_node(node_id)

        for edge in store.edges():
            if edge.created_at < cutoff or edge.touches(stale_ids):
                store.remove_edge(edge.id)

        return stale

    def _evict_excess(self, store: GraphStore) -> List[str]:
        """Step 4: size-based removal of the oldest non-pinned nodes."""
        excess = store.node_count - self.config.max_nodes
        if excess <= 0:
            return []

        candidates = [n for n in store.nodes() if not self._is_pinned(n.type)]
        # sort is stable: equal timestamps keep insertion order
        candidates.sort(key=lambda n: n.created_at)
        victims = [n.id for n in candidates[:excess]]

        for node_id in victims:
            store.remove_node(node_id)
        for edge in store.edges_touching(victims):
            store.remove_edge(edge.id)

        return victims
