"""
SWARMGRAPH ANALYTICS - Aggregate Metrics over a Snapshot

Read-only analytics over a GraphSnapshot. Every value is recomputed on
each call; nothing is cached between requests.

Metrics:
- graph:        total counts, counts grouped by node/edge type
- performance:  active/completed tasks, active agents, mean task duration
- connectivity: average degree, clustering approximation, component count

All functions are pure: they observe a snapshot and never touch the store.

Clustering note:
    The clustering value divides the global triangle count by the number
    of possible triples C(n, 3) over ALL nodes. This is not the textbook
    average local clustering coefficient; it is kept as-is so dashboards
    built on it keep their scale.
"""
from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Sequence, Set, Tuple

import msgspec
import rustworkx as rx

from core.ontology import AgentStatus, NodeType, TaskStatus
from core.schemas import Edge, GraphSnapshot, Node, now_utc


# =============================================================================
# RESULT STRUCTURES
# =============================================================================

class GraphCounts(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """Size of the graph, overall and per type."""
    total_nodes: int
    total_edges: int
    nodes_by_type: Dict[str, int]
    edges_by_type: Dict[str, int]


class PerformanceMetrics(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """Task and agent activity."""
    active_tasks: int
    completed_tasks: int
    active_agents: int
    avg_task_duration: float


class ConnectivityMetrics(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """Structural metrics over the undirected graph."""
    avg_degree: float
    clustering: float
    components: int


class GraphMetrics(msgspec.Struct, kw_only=True, frozen=True):
    """Complete metrics report for one snapshot."""
    timestamp: str
    graph: GraphCounts
    performance: PerformanceMetrics
    connectivity: ConnectivityMetrics

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return msgspec.to_builtins(self)


# =============================================================================
# COUNTS
# =============================================================================

def count_by_type(items: Iterable) -> Dict[str, int]:
    """Count records (nodes or edges) grouped by their `type`."""
    return dict(Counter(item.type for item in items))


def count_with_status(nodes: Iterable[Node], node_type: str, status: str) -> int:
    """Count nodes of `node_type` whose status equals `status`."""
    return sum(1 for n in nodes if n.type == node_type and n.status == status)


def average_task_duration(nodes: Iterable[Node]) -> float:
    """
    Mean `duration` over completed tasks that carry one.

    Tasks with a missing or zero duration are skipped. Returns 0 if no
    task qualifies.
    """
    durations = [
        n.duration for n in nodes
        if n.type == NodeType.TASK.value
        and n.status == TaskStatus.COMPLETED.value
        and n.duration
    ]
    if not durations:
        return 0
    return sum(durations) / len(durations)


# =============================================================================
# CONNECTIVITY
# =============================================================================

def average_degree(node_count: int, edge_count: int) -> float:
    """2|E| / |V|, or 0 for an empty graph."""
    if node_count == 0:
        return 0
    return (edge_count * 2) / node_count


def build_adjacency(edges: Iterable[Edge]) -> Dict[str, List[str]]:
    """
    Undirected adjacency list from directed edges.

    Each edge appends to both endpoints' lists, so a pair joined by two
    edges (two types, or both directions) appears twice.
    """
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.source].append(edge.target)
        adjacency[edge.target].append(edge.source)
    return adjacency


def count_triangles(nodes: Sequence[Node], edges: Sequence[Edge]) -> float:
    """
    Count closed triangles through the store's nodes.

    For every node, every pair of entries in its adjacency list that are
    themselves joined (in either direction) counts once; the total is
    divided by 3 because each triangle is seen from all three corners.
    """
    adjacency = build_adjacency(edges)
    connected: Set[Tuple[str, str]] = set()
    for edge in edges:
        connected.add((edge.source, edge.target))
        connected.add((edge.target, edge.source))

    count = 0
    for node in nodes:
        neighbors = adjacency.get(node.id, [])
        for i in range(len(neighbors)):
            for j in range(i + 1, len(neighbors)):
                if (neighbors[i], neighbors[j]) in connected:
                    count += 1

    return count / 3


def clustering_coefficient(nodes: Sequence[Node], edges: Sequence[Edge]) -> float:
    """
    Triangle count divided by C(n, 3), n = number of nodes.

    Returns 0 when fewer than three nodes exist.
    """
    n = len(nodes)
    possible = n * (n - 1) * (n - 2) / 6
    if possible <= 0:
        return 0
    return count_triangles(nodes, edges) / possible


def connected_components(nodes: Sequence[Node], edges: Sequence[Edge]) -> int:
    """
    Number of connected components reachable from the store's nodes.

    Isolated nodes are singleton components. Dangling edge endpoints (ids
    with no node record) join whichever component they connect to, but a
    component made only of dangling ids is not counted.
    """
    if not nodes:
        return 0

    graph = rx.PyGraph(multigraph=True)
    index: Dict[str, int] = {}
    real: Set[int] = set()

    for node in nodes:
        idx = graph.add_node(node.id)
        index[node.id] = idx
        real.add(idx)

    for edge in edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in index:
                index[endpoint] = graph.add_node(endpoint)
        graph.add_edge(index[edge.source], index[edge.target], edge.type)

    return sum(
        1 for component in rx.connected_components(graph)
        if not real.isdisjoint(component)
    )


# =============================================================================
# METRICS ENGINE
# =============================================================================

def compute_metrics(snapshot: GraphSnapshot) -> GraphMetrics:
    """
    Compute the full metrics report for a snapshot.

    Args:
        snapshot: Frozen copy of the graph (GraphStore.snapshot())

    Returns:
        GraphMetrics with graph, performance and connectivity sections
    """
    nodes = snapshot.nodes
    edges = snapshot.edges

    return GraphMetrics(
        timestamp=now_utc(),
        graph=GraphCounts(
            total_nodes=len(nodes),
            total_edges=len(edges),
            nodes_by_type=count_by_type(nodes),
            edges_by_type=count_by_type(edges),
        ),
        performance=PerformanceMetrics(
            active_tasks=count_with_status(nodes, NodeType.TASK.value, TaskStatus.EXECUTING.value),
            completed_tasks=count_with_status(nodes, NodeType.TASK.value, TaskStatus.COMPLETED.value),
            active_agents=count_with_status(nodes, NodeType.AGENT.value, AgentStatus.ACTIVE.value),
            avg_task_duration=average_task_duration(nodes),
        ),
        connectivity=ConnectivityMetrics(
            avg_degree=average_degree(len(nodes), len(edges)),
            clustering=clustering_coefficient(nodes, edges),
            components=connected_components(nodes, edges),
        ),
    )
