"""
SWARMGRAPH SCHEMAS - The Grammar of the Swarm Graph

If ontology.py is the Dictionary (the words we can use),
schemas.py is the Grammar (how records are structured).

This module defines the data structures that flow through the engine:
- Node: A typed, attributed entity (swarm, agent, task, file, ...)
- Edge: A typed relationship, identified by its (from, type, to) triple
- GraphSnapshot: A frozen, consistent copy of every node and edge
- DeltaMessage: A single typed message pushed to subscribers
- Serialization helpers for the JSON wire format

Design Principles:
1. IMMUTABLE RECORDS: Node/Edge are frozen; the store swaps records instead
   of mutating them, so readers never see a half-applied change
2. ENUMERATED ATTRIBUTES: Known fields (status, progress, ...) get their own
   slots; everything else lands in the `properties` extension map
3. CAMELCASE WIRE: Fields are snake_case in Python, camelCase in JSON
4. KW_ONLY: Keyword arguments everywhere to prevent positional mix-ups
"""
import copy
import msgspec
from typing import Optional, Dict, Any, List, Tuple, Iterable, Mapping
from datetime import datetime, timezone


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> str:
    """Fast UTC timestamp as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def edge_id(source: str, edge_type: str, target: str) -> str:
    """
    Derive the deterministic edge id from its (from, type, to) triple.

    This is the dedup key: adding an edge with the same triple replaces
    the existing one.
    """
    return f"{source}_{edge_type}_{target}"


# Attributes with a dedicated slot on Node, and the type each is coerced to.
# Anything else from an event payload goes into Node.properties.
KNOWN_NODE_FIELDS: Dict[str, Any] = {
    "status": Optional[str],
    "progress": Optional[float],
    "priority": Optional[str],
    "capabilities": Optional[List[str]],
    "duration": Optional[float],
}

# Payload keys owned by the store itself; never copied from event data.
RESERVED_NODE_KEYS = frozenset({"id", "label", "createdAt", "updatedAt", "created_at", "updated_at"})

# Payload keys consulted, in order, for a node's display label.
LABEL_KEYS: Tuple[str, ...] = ("label", "name", "title", "path")


def split_attributes(data: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Split an event payload into known node fields and extension properties.

    Known values are coerced leniently ("12" -> 12.0 for a float slot). A
    value that cannot be coerced is kept under its key in `properties`.
    Both results are deep copies; nothing references the caller's payload.

    Returns:
        (known, properties) where `known` only holds KNOWN_NODE_FIELDS keys
    """
    known: Dict[str, Any] = {}
    properties: Dict[str, Any] = {}
    for key, value in data.items():
        if key in RESERVED_NODE_KEYS:
            continue
        field_type = KNOWN_NODE_FIELDS.get(key)
        if field_type is None:
            properties[key] = copy.deepcopy(value)
            continue
        try:
            known[key] = msgspec.convert(value, type=field_type, strict=False)
        except msgspec.ValidationError:
            properties[key] = copy.deepcopy(value)
    return known, properties


def resolve_label(node_type: str, data: Mapping[str, Any]) -> str:
    """Pick a display label: label -> name -> title -> path -> type."""
    for key in LABEL_KEYS:
        value = data.get(key)
        if value:
            return str(value)
    return node_type


# =============================================================================
# NODE (The Core Graph Record)
# =============================================================================

class Node(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    A node in the swarm graph.

    Timestamps are epoch seconds. `created_at` is reset on every upsert
    (the record is replaced wholesale) and is the age the eviction sweeper
    looks at; `updated_at` is bumped by patches as well.
    """
    # === Identity ===
    id: str                                    # Globally unique node id
    type: str                                  # Open type tag (NodeType.value or any string)
    label: str                                 # Display name

    # === Known Attributes ===
    status: Optional[str] = None               # e.g. "executing", "active"
    progress: Optional[float] = None           # 0-100 for tasks
    priority: Optional[str] = None             # "high" | "medium" | "low"
    capabilities: Optional[List[str]] = None   # Agent capabilities
    duration: Optional[float] = None           # Completed task duration

    # === Extension Point ===
    properties: Dict[str, Any] = msgspec.field(default_factory=dict)

    # === Timing ===
    created_at: float = 0.0
    updated_at: float = 0.0

    def with_changes(self, changes: Mapping[str, Any], now: float) -> "Node":
        """
        Return a copy with `changes` merged in and `updated_at` bumped.

        Known fields replace their slot; other keys merge into properties.
        A `label` key replaces the label. Identity and creation time are kept.
        """
        known, extra = split_attributes(changes)
        updates: Dict[str, Any] = dict(known)
        if "label" in changes and changes["label"]:
            updates["label"] = str(changes["label"])
        if extra:
            updates["properties"] = {**self.properties, **extra}
        return msgspec.structs.replace(self, updated_at=now, **updates)

    def detached(self) -> "Node":
        """Copy whose containers are not shared with this record."""
        return msgspec.structs.replace(
            self,
            properties=copy.deepcopy(self.properties),
            capabilities=list(self.capabilities) if self.capabilities is not None else None,
        )

    @classmethod
    def create(
        cls,
        node_id: str,
        node_type: str,
        data: Mapping[str, Any],
        now: float,
    ) -> "Node":
        """Build a fresh node record from an event payload."""
        known, properties = split_attributes(data)
        return cls(
            id=node_id,
            type=node_type,
            label=resolve_label(node_type, data),
            properties=properties,
            created_at=now,
            updated_at=now,
            **known,
        )


# =============================================================================
# EDGE (The Graph Relationship Record)
# =============================================================================

class Edge(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    A directed, typed relationship between two node ids.

    Endpoints are NOT checked against the node set: dangling edges are
    legal. An edge with `expires_at` set is ephemeral and is removed by
    the engine's expiry timer once that time passes.
    """
    # === Identity ===
    id: str                                    # edge_id(source, type, target)
    type: str                                  # EdgeType.value or any string
    source: str = msgspec.field(name="from")   # Source node id
    target: str = msgspec.field(name="to")     # Target node id

    # === Properties ===
    properties: Dict[str, Any] = msgspec.field(default_factory=dict)

    # === Timing ===
    created_at: float = 0.0
    updated_at: float = 0.0
    expires_at: Optional[float] = None         # None = permanent

    def touches(self, node_ids: Iterable[str]) -> bool:
        """True if either endpoint is in `node_ids`."""
        ids = node_ids if isinstance(node_ids, (set, frozenset)) else set(node_ids)
        return self.source in ids or self.target in ids

    def is_expired(self, now: float) -> bool:
        """True if this is an ephemeral edge whose expiry has passed."""
        return self.expires_at is not None and self.expires_at <= now

    def detached(self) -> "Edge":
        """Copy whose properties are not shared with this record."""
        return msgspec.structs.replace(self, properties=copy.deepcopy(self.properties))

    @classmethod
    def create(
        cls,
        edge_type: str,
        source: str,
        target: str,
        now: float,
        properties: Optional[Mapping[str, Any]] = None,
        expires_at: Optional[float] = None,
    ) -> "Edge":
        """Build a fresh edge record; the id is derived from the triple."""
        return cls(
            id=edge_id(source, edge_type, target),
            type=edge_type,
            source=source,
            target=target,
            properties=copy.deepcopy(dict(properties or {})),
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )


# =============================================================================
# SNAPSHOT & DELTA (What Subscribers See)
# =============================================================================

class GraphSnapshot(msgspec.Struct, kw_only=True, frozen=True):
    """
    A full, consistent copy of all current nodes and edges.

    Taken atomically by the store; safe to hand to long-running readers
    such as the metrics engine.
    """
    timestamp: str
    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "nodeCount": self.node_count,
            "edgeCount": self.edge_count,
            "nodes": [msgspec.to_builtins(n) for n in self.nodes],
            "edges": [msgspec.to_builtins(e) for e in self.edges],
        }


class DeltaMessage(msgspec.Struct, kw_only=True, frozen=True):
    """
    A single typed message pushed to subscribers.

    Wire shape is {type, data, timestamp, sequence}. `sequence` is assigned
    by the engine and increases by one per message, so subscribers can
    detect the apply order.
    """
    type: str                                  # DeltaType.value
    data: Any                                  # Node, Edge, dict, ...
    timestamp: str = msgspec.field(default_factory=now_utc)
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to plain builtins (dicts/lists/str) for JSON."""
        return msgspec.to_builtins(self)


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled msgspec encoder shared by the API and the WebSocket pump
_json_encoder = msgspec.json.Encoder()


def encode_json(obj: Any) -> bytes:
    """Encode any record, message or builtin structure to JSON bytes."""
    return _json_encoder.encode(obj)

