"""
Unit tests for core/normalizer.py - EventNormalizer

Tests the mapping from lifecycle events to graph mutations including:
- Each inbound event type
- Hyphen/underscore type spelling and snake_case payload aliases
- Malformed and unknown events (no mutations, no exceptions)
- Ephemeral collaboration edges
"""
import pytest

from core.normalizer import (
    Announce,
    EventNormalizer,
    PatchNode,
    UpsertEdge,
    UpsertNode,
    pick,
)


@pytest.fixture
def normalizer(fake_clock):
    return EventNormalizer(clock=fake_clock)


# =============================================================================
# EVENT MAPPING TESTS
# =============================================================================

def test_swarm_init(normalizer):
    mutations = normalizer.normalize({"type": "swarm-init", "data": {"id": "swarm-1", "name": "Alpha"}})

    assert mutations == [UpsertNode(node_type="Swarm", data={"id": "swarm-1", "name": "Alpha"})]


def test_agent_spawn_links_to_swarm(normalizer):
    """
    Validate that agent-spawn creates the agent and its ORCHESTRATES edge.

    Verifies:
    - Node upsert comes first
    - Edge goes swarm -> agent
    """
    mutations = normalizer.normalize({
        "type": "agent-spawn",
        "data": {"id": "agent-1", "swarmId": "swarm-1", "name": "Coder"},
    })

    assert len(mutations) == 2
    assert isinstance(mutations[0], UpsertNode)
    assert mutations[0].node_type == "Agent"
    assert mutations[1] == UpsertEdge(edge_type="ORCHESTRATES", source="swarm-1", target="agent-1")


def test_agent_spawn_without_swarm_skips_edge(normalizer):
    mutations = normalizer.normalize({"type": "agent-spawn", "data": {"id": "agent-1"}})

    assert [type(m) for m in mutations] == [UpsertNode]


def test_task_orchestrate(normalizer):
    mutations = normalizer.normalize({"type": "task-orchestrate", "data": {"id": "task-1", "priority": "high"}})

    assert mutations == [UpsertNode(node_type="Task", data={"id": "task-1", "priority": "high"})]


def test_task_assign_records_start_time(normalizer, fake_clock):
    mutations = normalizer.normalize({"type": "task-assign", "data": {"agentId": "agent-1", "taskId": "task-1"}})

    assert mutations == [UpsertEdge(
        edge_type="EXECUTES",
        source="agent-1",
        target="task-1",
        properties={"startTime": fake_clock()},
    )]


def test_task_assign_missing_endpoint_is_skipped(normalizer):
    assert normalizer.normalize({"type": "task-assign", "data": {"agentId": "agent-1"}}) == []


def test_task_progress_defaults_status_to_executing(normalizer):
    """
    Validate task-progress becomes a patch.

    Verifies:
    - Progress is copied
    - Status defaults to "executing" when the payload has none
    - An explicit status wins
    """
    default = normalizer.normalize({"type": "task-progress", "data": {"taskId": "task-1", "progress": 50}})
    explicit = normalizer.normalize({
        "type": "task-progress",
        "data": {"taskId": "task-1", "progress": 100, "status": "completed"},
    })

    assert default == [PatchNode(node_id="task-1", changes={"progress": 50, "status": "executing"})]
    assert explicit[0].changes["status"] == "completed"


def test_file_operation(normalizer, fake_clock):
    """
    Validate file-operation mapping.

    Verifies:
    - File node id falls back to filePath
    - MODIFIES edge carries operation and timestamp
    - A file:modified announcement closes the list
    """
    data = {"taskId": "task-1", "filePath": "src/app.py", "operation": "write"}
    mutations = normalizer.normalize({"type": "file-operation", "data": data})

    assert mutations[0] == UpsertNode(node_type="File", data=dict(data, id="src/app.py"))
    assert mutations[1] == UpsertEdge(
        edge_type="MODIFIES",
        source="task-1",
        target="src/app.py",
        properties={"operation": "write", "timestamp": fake_clock()},
    )
    assert mutations[2] == Announce(message_type="file:modified", data=data)


def test_issue_update(normalizer):
    data = {"taskId": "task-1", "issueId": "ISSUE-7", "title": "Crash on start"}
    mutations = normalizer.normalize({"type": "issue-update", "data": data})

    assert mutations[0].node_type == "Issue"
    assert mutations[0].data["id"] == "ISSUE-7"
    assert mutations[1] == UpsertEdge(edge_type="IMPLEMENTS", source="task-1", target="ISSUE-7")
    assert mutations[2] == Announce(message_type="issue:linked", data=data)


def test_issue_update_without_task_has_no_edge(normalizer):
    mutations = normalizer.normalize({"type": "issue-update", "data": {"id": "ISSUE-7"}})

    assert [type(m) for m in mutations] == [UpsertNode, Announce]


def test_agent_message(normalizer):
    data = {"from": "agent-1", "to": "agent-2", "protocol": "consensus", "messages": 3}
    mutations = normalizer.normalize({"type": "agent-message", "data": data})

    assert mutations == [
        UpsertEdge(
            edge_type="COLLABORATES",
            source="agent-1",
            target="agent-2",
            properties={"protocol": "consensus", "messages": 3},
        ),
        Announce(message_type="collaboration", data=data),
    ]


def test_agent_message_with_ttl_is_ephemeral(fake_clock):
    """
    Validate that collaboration edges can expire.

    Verifies:
    - The configured TTL sets expires_at
    - A per-event ttl overrides the configured one
    """
    normalizer = EventNormalizer(clock=fake_clock, collaboration_ttl=3.0)
    data = {"from": "agent-1", "to": "agent-2"}

    configured = normalizer.normalize({"type": "agent-message", "data": data})[0]
    override = normalizer.normalize({"type": "agent-message", "data": dict(data, ttl=10)})[0]

    assert configured.expires_at == fake_clock() + 3.0
    assert override.expires_at == fake_clock() + 10


# =============================================================================
# SPELLING & ALIAS TESTS
# =============================================================================

def test_underscore_type_spelling(normalizer):
    hyphen = normalizer.normalize({"type": "swarm-init", "data": {"id": "s"}})
    underscore = normalizer.normalize({"type": "swarm_init", "data": {"id": "s"}})

    assert hyphen == underscore


def test_snake_case_payload_alias(normalizer):
    mutations = normalizer.normalize({"type": "task-assign", "data": {"agent_id": "a", "task_id": "t"}})

    assert mutations[0].source == "a"
    assert mutations[0].target == "t"


def test_pick_treats_empty_as_missing():
    assert pick({"swarmId": ""}, "swarmId") is None
    assert pick({"swarm_id": 7}, "swarmId") == "7"
    assert pick({}, "swarmId") is None


# =============================================================================
# MALFORMED INPUT TESTS
# =============================================================================

@pytest.mark.parametrize("event", [
    None,
    "swarm-init",
    42,
    [],
    {},
    {"type": "swarm-init"},
    {"data": {"id": "s"}},
    {"type": "swarm-init", "data": None},
    {"type": "swarm-init", "data": "not-a-mapping"},
    {"type": None, "data": {}},
])
def test_malformed_events_yield_nothing(normalizer, event):
    assert normalizer.normalize(event) == []


def test_unknown_event_type_yields_nothing(normalizer):
    assert normalizer.normalize({"type": "agent-teleport", "data": {"id": "a"}}) == []


def test_normalizer_never_raises_on_bad_ttl(normalizer):
    event = {"type": "agent-message", "data": {"from": "a", "to": "b", "ttl": "soon"}}
    assert normalizer.normalize(event) == []
