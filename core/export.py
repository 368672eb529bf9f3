"""
SWARMGRAPH EXPORT - Columnar Snapshots

Serializes a GraphSnapshot into two Apache Arrow IPC files (nodes, edges)
via polars, for renderers and notebooks that prefer columnar transfer over
JSON.

Wire format of the combined stream (GET /api/graph/stream):
    [u32 little-endian: len(nodes_ipc)] [nodes_ipc] [edges_ipc]
"""
import io
import struct
from typing import Any, Optional, Tuple

import polars as pl

from core.schemas import GraphSnapshot


NODE_SCHEMA = {
    "id": pl.Utf8,
    "type": pl.Utf8,
    "label": pl.Utf8,
    "status": pl.Utf8,
    "progress": pl.Float64,
    "priority": pl.Utf8,
    "created_at": pl.Float64,
    "updated_at": pl.Float64,
}

EDGE_SCHEMA = {
    "id": pl.Utf8,
    "source": pl.Utf8,
    "target": pl.Utf8,
    "type": pl.Utf8,
    "created_at": pl.Float64,
    "expires_at": pl.Float64,
}


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _number(value: Any) -> Optional[float]:
    """Payload numbers arrive untyped; anything non-numeric becomes null."""
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


def snapshot_frames(snapshot: GraphSnapshot) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """Build (nodes_df, edges_df) with fixed schemas, even when empty."""
    nodes_df = pl.DataFrame(
        {
            "id": [n.id for n in snapshot.nodes],
            "type": [n.type for n in snapshot.nodes],
            "label": [n.label for n in snapshot.nodes],
            "status": [_text(n.status) for n in snapshot.nodes],
            "progress": [_number(n.progress) for n in snapshot.nodes],
            "priority": [_text(n.priority) for n in snapshot.nodes],
            "created_at": [n.created_at for n in snapshot.nodes],
            "updated_at": [n.updated_at for n in snapshot.nodes],
        },
        schema=NODE_SCHEMA,
    )

    edges_df = pl.DataFrame(
        {
            "id": [e.id for e in snapshot.edges],
            "source": [e.source for e in snapshot.edges],
            "target": [e.target for e in snapshot.edges],
            "type": [e.type for e in snapshot.edges],
            "created_at": [e.created_at for e in snapshot.edges],
            "expires_at": [e.expires_at for e in snapshot.edges],
        },
        schema=EDGE_SCHEMA,
    )

    return nodes_df, edges_df


def snapshot_to_arrow(snapshot: GraphSnapshot) -> Tuple[bytes, bytes]:
    """
    Serialize a snapshot to Arrow IPC.

    Returns:
        Tuple of (nodes_arrow_bytes, edges_arrow_bytes)
    """
    nodes_df, edges_df = snapshot_frames(snapshot)

    nodes_buffer = io.BytesIO()
    edges_buffer = io.BytesIO()
    nodes_df.write_ipc(nodes_buffer)
    edges_df.write_ipc(edges_buffer)

    return nodes_buffer.getvalue(), edges_buffer.getvalue()


def pack_arrow(nodes_bytes: bytes, edges_bytes: bytes) -> bytes:
    """Concatenate both IPC files behind a length prefix."""
    return struct.pack("<I", len(nodes_bytes)) + nodes_bytes + edges_bytes


def unpack_arrow(payload: bytes) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """Inverse of pack_arrow, returning the two frames."""
    (nodes_len,) = struct.unpack_from("<I", payload)
    nodes_bytes = payload[4:4 + nodes_len]
    edges_bytes = payload[4 + nodes_len:]
    return pl.read_ipc(io.BytesIO(nodes_bytes)), pl.read_ipc(io.BytesIO(edges_bytes))
