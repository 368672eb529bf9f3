"""
Integration Tests for the SwarmGraph API

Tests the full HTTP + WebSocket stack against a live GraphEngine,
validating:
- Event ingestion over HTTP
- Snapshot, Arrow stream, metrics, GC and health endpoints
- WebSocket snapshot-then-deltas protocol and ping/pong
- Error handling (bad JSON, bad query params, stopped engine)

These tests use Starlette's TestClient as a context manager so the
lifespan starts and stops the engine.
"""
import io

import polars as pl
import pytest
from starlette.testclient import TestClient

from api.routes import create_app
from core.eviction import EvictionConfig
from core.export import unpack_arrow
from infrastructure.config import BroadcastConfig, SwarmGraphConfig


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def test_config():
    return SwarmGraphConfig(
        eviction=EvictionConfig(max_nodes=3, pinned_types=frozenset(), enabled=False),
        broadcast=BroadcastConfig(metrics_interval=0),
    )


@pytest.fixture
def api_client(test_config):
    """Create a test client with a running engine."""
    with TestClient(create_app(test_config)) as client:
        yield client


@pytest.fixture
def populated_client(api_client, swarm_events):
    response = api_client.post("/api/events", json=swarm_events)
    assert response.status_code == 200
    return api_client


# =============================================================================
# INGESTION TESTS
# =============================================================================

def test_post_single_event(api_client):
    """
    Validate ingesting a single event object.

    Verifies:
    - 200 with accepted/applied counts
    - The node is visible in the next snapshot
    """
    response = api_client.post("/api/events", json={"type": "swarm-init", "data": {"id": "swarm-1", "name": "Alpha"}})

    assert response.status_code == 200
    assert response.json() == {"accepted": 1, "applied": 1}

    graph = api_client.get("/api/graph").json()
    assert graph["nodeCount"] == 1
    assert graph["nodes"][0]["label"] == "Alpha"


def test_post_event_list(api_client, swarm_events):
    response = api_client.post("/api/events", json=swarm_events)

    assert response.json() == {"accepted": 5, "applied": 7}


def test_post_invalid_json_returns_400(api_client):
    response = api_client.post("/api/events", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert "error" in response.json()


def test_post_malformed_event_is_accepted_but_ignored(api_client):
    response = api_client.post("/api/events", json=[None, {"type": "x"}, {"data": {}}])

    assert response.json() == {"accepted": 3, "applied": 0}
    assert api_client.get("/api/health").json()["nodes"] == 0


# =============================================================================
# QUERY TESTS
# =============================================================================

def test_get_graph(populated_client):
    graph = populated_client.get("/api/graph").json()

    assert graph["nodeCount"] == 4
    assert graph["edgeCount"] == 3
    edge = next(e for e in graph["edges"] if e["type"] == "EXECUTES")
    assert edge["from"] == "agent-1"
    assert edge["to"] == "task-1"
    assert edge["id"] == "agent-1_EXECUTES_task-1"


def test_graph_stream_arrow(populated_client):
    """
    Validate the Arrow IPC stream.

    Verifies:
    - Combined stream splits into node and edge frames
    - Frame heights match the graph counts
    - format=nodes returns a single IPC file
    """
    response = populated_client.get("/api/graph/stream")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/vnd.apache.arrow.stream"
    nodes_df, edges_df = unpack_arrow(response.content)
    assert nodes_df.height == 4
    assert edges_df.height == 3
    assert set(nodes_df["id"].to_list()) == {"swarm-1", "agent-1", "agent-2", "task-1"}

    nodes_only = populated_client.get("/api/graph/stream?format=nodes")
    assert pl.read_ipc(io.BytesIO(nodes_only.content)).height == 4

    assert populated_client.get("/api/graph/stream?format=xml").status_code == 400


def test_graph_stream_empty_graph(api_client):
    nodes_df, edges_df = unpack_arrow(api_client.get("/api/graph/stream").content)

    assert nodes_df.height == 0
    assert "created_at" in edges_df.columns


def test_get_metrics(populated_client):
    metrics = populated_client.get("/api/metrics").json()

    assert metrics["graph"]["totalNodes"] == 4
    assert metrics["graph"]["nodesByType"] == {"Swarm": 1, "Agent": 2, "Task": 1}
    assert metrics["performance"]["activeAgents"] == 1
    assert metrics["connectivity"]["components"] == 1
    assert metrics["connectivity"]["avgDegree"] == 1.5


def test_gc_status_and_trigger(populated_client):
    """
    Validate the eviction endpoints.

    Verifies:
    - GET reports config and counts
    - POST sweeps (4 nodes >= max_nodes 3) and reports before/after
    """
    status = populated_client.get("/api/gc").json()
    assert status["config"]["maxNodes"] == 3
    assert status["nodes"] == 4
    assert status["lastSweep"] is None

    result = populated_client.post("/api/gc").json()
    assert result["before"]["nodes"] == 4
    assert result["after"]["nodes"] == 3
    assert result["manual"] is True

    assert populated_client.get("/api/gc").json()["lastSweep"]["removed"]["nodes"] == 1


def test_health(populated_client):
    health = populated_client.get("/api/health").json()

    assert health["status"] == "healthy"
    assert health["clients"] == 0
    assert health["nodes"] == 4
    assert health["edges"] == 3
    assert health["uptime"] >= 0


def test_recent_events(populated_client):
    recent = populated_client.get("/api/events/recent?limit=2").json()

    assert recent["count"] == 2
    assert [e["mutation_type"] for e in recent["events"]] == ["node:added", "edge:added"]

    for_agent = populated_client.get("/api/events/recent?node=agent-2").json()
    assert for_agent["count"] == 2

    assert populated_client.get("/api/events/recent?limit=abc").status_code == 400


def test_recent_events_since(populated_client):
    """
    Validate the since filter on recent events.

    Verifies:
    - Only events at or after the timestamp are returned
    - A timestamp after every event returns none
    """
    events = populated_client.get("/api/events/recent").json()["events"]
    cutoff = events[-1]["timestamp"]

    since = populated_client.get("/api/events/recent", params={"since": cutoff}).json()
    assert since["count"] >= 1
    assert all(e["timestamp"] >= cutoff for e in since["events"])
    assert since["events"][-1]["sequence"] == events[-1]["sequence"]

    later = populated_client.get("/api/events/recent", params={"since": "9999-01-01T00:00:00+00:00"}).json()
    assert later["count"] == 0


def test_cors_headers(api_client):
    response = api_client.get("/api/health", headers={"Origin": "http://dashboard.example"})

    assert response.headers["access-control-allow-origin"] == "*"


def test_stopped_engine_returns_503(test_config):
    # without the context manager the lifespan never starts the engine
    client = TestClient(create_app(test_config))

    response = client.get("/api/graph")

    assert response.status_code == 503
    assert client.get("/api/health").json()["status"] == "stopped"


# =============================================================================
# WEBSOCKET TESTS
# =============================================================================

def test_websocket_initial_snapshot_then_deltas(populated_client):
    """
    Validate the WebSocket protocol.

    Verifies:
    - First message is "initial" with the current counts
    - A later event arrives as node:added, then edge:added
    - Sequence numbers increase
    """
    with populated_client.websocket_connect("/ws") as websocket:
        initial = websocket.receive_json()
        assert initial["type"] == "initial"
        assert initial["data"]["nodeCount"] == 4
        assert initial["data"]["edgeCount"] == 3

        populated_client.post("/api/events", json={
            "type": "agent-spawn",
            "data": {"id": "agent-3", "swarmId": "swarm-1"},
        })

        added = websocket.receive_json()
        linked = websocket.receive_json()

    assert added["type"] == "node:added"
    assert added["data"]["id"] == "agent-3"
    assert linked["type"] == "edge:added"
    assert linked["data"]["from"] == "swarm-1"
    assert initial["sequence"] < added["sequence"] < linked["sequence"]


def test_websocket_root_path_and_ping(api_client):
    with api_client.websocket_connect("/") as websocket:
        assert websocket.receive_json()["type"] == "initial"

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["type"] == "pong"

        # non-JSON client messages are ignored
        websocket.send_text("hello")
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["type"] == "pong"


def test_websocket_counts_as_client(api_client):
    with api_client.websocket_connect("/ws") as websocket:
        websocket.receive_json()
        assert api_client.get("/api/health").json()["clients"] == 1


def test_websocket_ignores_binary_frames(api_client):
    with api_client.websocket_connect("/ws") as websocket:
        assert websocket.receive_json()["type"] == "initial"

        websocket.send_bytes(b"\x00\x01")
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["type"] == "pong"
        assert api_client.get("/api/health").json()["clients"] == 1
