"""
Unit tests for infrastructure/logger.py - MutationLogger

Tests the recent-delta log including:
- Summaries of node, edge, removal and sweep deltas
- Skipped message types
- Ring buffer bounds
- Queries by node, type and time
"""
from core.schemas import DeltaMessage, Edge, Node
from infrastructure.logger import EventBuffer, MutationEvent, MutationLogger


def _node_delta(node_id: str, sequence: int, delta_type: str = "node:added") -> DeltaMessage:
    node = Node.create(node_id, "Agent", {"status": "active"}, 1.0)
    return DeltaMessage(type=delta_type, data=node, sequence=sequence)


def _edge_delta(source: str, target: str, sequence: int) -> DeltaMessage:
    edge = Edge.create("COLLABORATES", source, target, 1.0)
    return DeltaMessage(type="edge:added", data=edge, sequence=sequence)


def test_record_summarizes_nodes_and_edges():
    """
    Validate the flattened event fields.

    Verifies:
    - Node deltas carry node id, type and status
    - Edge deltas carry edge id, type and endpoints
    """
    log = MutationLogger()

    node_event = log.record(_node_delta("agent-1", 1))
    edge_event = log.record(_edge_delta("agent-1", "agent-2", 2))

    assert node_event.node_id == "agent-1"
    assert node_event.node_type == "Agent"
    assert node_event.status == "active"
    assert edge_event.edge_id == "agent-1_COLLABORATES_agent-2"
    assert edge_event.source_id == "agent-1"
    assert edge_event.target_id == "agent-2"
    assert len(log) == 2


def test_record_summarizes_removals_and_sweeps():
    log = MutationLogger()

    removed = log.record(DeltaMessage(
        type="edge:removed",
        data={"id": "a_COLLABORATES_b", "type": "COLLABORATES", "from": "a", "to": "b"},
        sequence=1,
    ))
    swept = log.record(DeltaMessage(
        type="gc:cleanup",
        data={"removed": {"nodes": 3, "edges": 4}},
        sequence=2,
    ))

    assert removed.source_id == "a"
    assert swept.nodes_removed == 3
    assert swept.edges_removed == 4


def test_metrics_and_initial_messages_are_skipped():
    log = MutationLogger()

    assert log.record(DeltaMessage(type="metrics", data={}, sequence=0)) is None
    assert log.record(DeltaMessage(type="initial", data={}, sequence=0)) is None
    assert len(log) == 0


def test_pass_through_messages_are_recorded():
    log = MutationLogger()

    event = log.record(DeltaMessage(type="collaboration", data={"from": "a"}, sequence=5))

    assert event.mutation_type == "collaboration"
    assert event.node_id is None


def test_buffer_is_bounded():
    log = MutationLogger(buffer_size=3)
    for n in range(5):
        log.record(_node_delta(f"agent-{n}", n))

    recent = log.get_recent_events(10)

    assert [e.sequence for e in recent] == [2, 3, 4]


def test_queries_by_node_and_type():
    """
    Validate the query helpers.

    Verifies:
    - get_events_for_node includes edges touching the node
    - get_events_by_type filters by delta type
    - get_recent_events returns the tail, oldest first
    """
    log = MutationLogger()
    log.record(_node_delta("agent-1", 1))
    log.record(_node_delta("agent-2", 2))
    log.record(_edge_delta("agent-1", "agent-2", 3))
    log.record(_node_delta("agent-1", 4, delta_type="node:updated"))

    assert [e.sequence for e in log.get_events_for_node("agent-1")] == [1, 3, 4]
    assert [e.sequence for e in log.get_events_by_type("node:added")] == [1, 2]
    assert [e.sequence for e in log.get_recent_events(2)] == [3, 4]
    assert log.get_recent_events(0) == []


def test_events_since_timestamp():
    buffer = EventBuffer(max_size=10)
    buffer.append(MutationEvent(timestamp="2026-01-01T00:00:00+00:00", sequence=1, mutation_type="node:added"))
    buffer.append(MutationEvent(timestamp="2026-01-02T00:00:00+00:00", sequence=2, mutation_type="node:added"))

    assert [e.sequence for e in buffer.get_since("2026-01-01T12:00:00+00:00")] == [2]
    assert buffer.capacity == 10

    assert len(buffer) == 2
