"""
SWARMGRAPH CORE - Central exports for the graph state engine.

This module provides access to:
- Records and wire messages (Node, Edge, GraphSnapshot, DeltaMessage)
- The graph store (GraphStore) and its errors
- Event normalization (EventNormalizer)
- Eviction (EvictionConfig, EvictionSweeper)
- Analytics (compute_metrics)

The GraphEngine lives in core.engine and is imported from there.
"""

from core.schemas import (
    Node,
    Edge,
    GraphSnapshot,
    DeltaMessage,
    edge_id,
    encode_json,
)
from core.graph_store import (
    GraphStore,
    GraphError,
    NodeNotFoundError,
    EdgeNotFoundError,
)
from core.normalizer import EventNormalizer
from core.eviction import EvictionConfig, EvictionSweeper, SweepResult
from core.analytics import GraphMetrics, compute_metrics

__all__ = [
    # Records
    "Node",
    "Edge",
    "GraphSnapshot",
    "DeltaMessage",
    "edge_id",
    "encode_json",
    # Store
    "GraphStore",
    "GraphError",
    "NodeNotFoundError",
    "EdgeNotFoundError",
    # Pipeline
    "EventNormalizer",
    "EvictionConfig",
    "EvictionSweeper",
    "SweepResult",
    "GraphMetrics",
    "compute_metrics",
]
