"""
SWARMGRAPH ENGINE - The Single Writer

Owns the GraphStore and serializes every access to it. Inbound events,
subscriptions, queries and timer ticks are all commands on one bounded
asyncio.Queue, drained by one owner task; each command runs to completion
before the next starts.

Flow:
    ingest(event) -> EventNormalizer -> [Mutation] -> queue
    owner task    -> GraphStore mutation -> DeltaMessage -> BroadcastHub
    timers        -> queue (sweep / expire edges / push metrics)

Guarantees:
- Every subscriber observes deltas in apply order; sequence numbers
  increase by one per delta
- A new subscriber receives the snapshot and is registered in the same
  step, so it misses no delta and sees none twice
- A failing command is logged and reported to its waiter only; the
  owner task keeps running

Usage:
    engine = GraphEngine(config=load_config())
    await engine.start()

    await engine.ingest({"type": "swarm-init", "data": {"id": "swarm-1"}}, wait=True)
    subscriber = await engine.subscribe()
    metrics = await engine.metrics()

    await engine.stop()
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.analytics import GraphMetrics, compute_metrics
from core.eviction import EvictionSweeper, SweepResult
from core.graph_store import GraphError, GraphStore
from core.normalizer import Announce, EventNormalizer, Mutation, PatchNode, UpsertEdge, UpsertNode
from core.ontology import DeltaType
from core.schemas import DeltaMessage, Edge, GraphSnapshot, now_utc
from infrastructure.broadcast import BroadcastHub, Subscriber
from infrastructure.config import SwarmGraphConfig
from infrastructure.logger import MutationLogger


logger = logging.getLogger("swarmgraph.engine")


class EngineNotRunning(GraphError):
    """Raised when a command is submitted to a stopped engine."""
    def __init__(self, message: str = "Graph engine is not running"):
        super().__init__(message)


# =============================================================================
# COMMANDS
# =============================================================================

class CommandKind(str, Enum):
    """Work items the owner task understands."""
    INGEST = "ingest"
    SUBSCRIBE = "subscribe"
    SNAPSHOT = "snapshot"
    METRICS = "metrics"
    GC_STATUS = "gc_status"
    SWEEP = "sweep"
    EXPIRE_EDGES = "expire_edges"
    PUSH_METRICS = "push_metrics"
    STOP = "stop"


class Command:
    """One queued work item and, optionally, the future its caller awaits."""
    __slots__ = ("kind", "payload", "future")

    def __init__(self, kind: CommandKind, payload: Any = None, future: Optional[asyncio.Future] = None):
        self.kind = kind
        self.payload = payload
        self.future = future

    def resolve(self, result: Any) -> None:
        if self.future is not None and not self.future.done():
            self.future.set_result(result)

    def fail(self, error: BaseException) -> None:
        if self.future is not None and not self.future.done():
            self.future.set_exception(error)


# =============================================================================
# ENGINE
# =============================================================================

class GraphEngine:
    """
    The graph's serialization point.

    All collaborators are injectable; anything omitted is built from
    `config`.
    """

    def __init__(
        self,
        config: Optional[SwarmGraphConfig] = None,
        store: Optional[GraphStore] = None,
        normalizer: Optional[EventNormalizer] = None,
        sweeper: Optional[EvictionSweeper] = None,
        hub: Optional[BroadcastHub] = None,
        mutation_log: Optional[MutationLogger] = None,
    ):
        self.config = config if config is not None else SwarmGraphConfig()
        # collaborators may be empty (len() == 0), so test against None
        self.store = store if store is not None else GraphStore()
        if normalizer is None:
            normalizer = EventNormalizer(
                clock=self.store.clock,
                collaboration_ttl=self.config.engine.collaboration_ttl,
            )
        self.normalizer = normalizer
        self.sweeper = sweeper if sweeper is not None else EvictionSweeper(self.config.eviction)
        self.hub = hub if hub is not None else BroadcastHub(self.config.broadcast.channel_size)
        if mutation_log is None:
            mutation_log = MutationLogger(self.config.logging.mutation_buffer)
        self.mutation_log = mutation_log

        self._queue: Optional[asyncio.Queue] = None
        self._owner: Optional[asyncio.Task] = None
        self._timers: List[asyncio.Task] = []
        self._accepting = False
        self._sequence = 0
        self._started_at: Optional[float] = None
        self._last_sweep: Optional[SweepResult] = None
        self._last_sweep_at: Optional[str] = None

        self._handlers: Dict[CommandKind, Callable[[Command], Any]] = {
            CommandKind.INGEST: self._handle_ingest,
            CommandKind.SUBSCRIBE: self._handle_subscribe,
            CommandKind.SNAPSHOT: lambda cmd: self.store.snapshot(),
            CommandKind.METRICS: lambda cmd: compute_metrics(self.store.snapshot()),
            CommandKind.GC_STATUS: self._handle_gc_status,
            CommandKind.SWEEP: self._handle_sweep,
            CommandKind.EXPIRE_EDGES: self._handle_expire_edges,
            CommandKind.PUSH_METRICS: self._handle_push_metrics,
        }

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._accepting and self._owner is not None and not self._owner.done()

    @property
    def sequence(self) -> int:
        """Sequence number of the last delta broadcast."""
        return self._sequence

    async def start(self) -> None:
        """Start the owner task and the timers. Idempotent."""
        if self.running:
            return

        self._queue = asyncio.Queue(maxsize=self.config.engine.queue_size)
        self._accepting = True
        self._started_at = time.monotonic()
        self._owner = asyncio.create_task(self._run(), name="swarmgraph-owner")

        eviction = self.sweeper.config
        if eviction.enabled:
            self._timers.append(self._start_timer(eviction.interval, CommandKind.SWEEP))
        self._timers.append(self._start_timer(self.config.engine.expiry_interval, CommandKind.EXPIRE_EDGES))
        if self.config.broadcast.metrics_interval > 0:
            self._timers.append(self._start_timer(self.config.broadcast.metrics_interval, CommandKind.PUSH_METRICS))

        logger.info(
            f"Graph engine started (eviction {'on' if eviction.enabled else 'off'}, "
            f"{len(self._timers)} timers)"
        )

    async def stop(self) -> None:
        """
        Stop accepting commands, apply what is already queued, then shut
        down the owner task and close every subscriber.
        """
        if self._owner is None:
            return

        self._accepting = False

        for timer in self._timers:
            timer.cancel()
        await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers.clear()

        if not self._owner.done():
            await self._queue.put(Command(CommandKind.STOP))
            await self._owner
        self._owner = None

        # anything enqueued behind STOP will never run
        while not self._queue.empty():
            self._queue.get_nowait().fail(EngineNotRunning())

        self.hub.close_all()
        logger.info(f"Graph engine stopped ({self.store.node_count} nodes, {self.store.edge_count} edges)")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def ingest(self, event: Any, wait: bool = False) -> Optional[int]:
        """
        Queue one inbound event.

        Malformed or unknown events are accepted and yield no mutations.

        Args:
            event: {"type": ..., "data": {...}}
            wait: Wait until the event's mutations are applied

        Returns:
            Number of mutations applied if `wait`, else None
        """
        mutations = self.normalizer.normalize(event)
        return await self._submit(CommandKind.INGEST, mutations, wait=wait)

    async def subscribe(self, channel_size: Optional[int] = None) -> Subscriber:
        """
        Register a subscriber whose first message is the current snapshot.
        """
        return await self._submit(CommandKind.SUBSCRIBE, channel_size, wait=True)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self.hub.unsubscribe(subscriber)

    async def snapshot(self) -> GraphSnapshot:
        """Consistent copy of the whole graph."""
        return await self._submit(CommandKind.SNAPSHOT, wait=True)

    async def metrics(self) -> GraphMetrics:
        """Metrics over a consistent snapshot."""
        return await self._submit(CommandKind.METRICS, wait=True)

    async def gc_status(self) -> Dict[str, Any]:
        """Eviction config, current counts and the last sweep outcome."""
        return await self._submit(CommandKind.GC_STATUS, wait=True)

    async def trigger_gc(self) -> SweepResult:
        """
        Run a sweep now, even when timer sweeps are disabled.

        The size gate still applies: below both thresholds nothing is removed.
        """
        return await self._submit(CommandKind.SWEEP, True, wait=True)

    async def expire_edges(self) -> int:
        """Remove ephemeral edges whose expiry has passed; returns how many."""
        return await self._submit(CommandKind.EXPIRE_EDGES, wait=True)

    def health(self) -> Dict[str, Any]:
        """Liveness summary. Reads counters only; does not queue."""
        uptime = time.monotonic() - self._started_at if self._started_at is not None else 0.0
        return {
            "status": "healthy" if self.running else "stopped",
            "clients": self.hub.subscriber_count,
            "nodes": self.store.node_count,
            "edges": self.store.edge_count,
            "uptime": uptime,
        }

    # =========================================================================
    # QUEUE
    # =========================================================================

    async def _submit(self, kind: CommandKind, payload: Any = None, wait: bool = False) -> Any:
        if not self.running:
            raise EngineNotRunning()

        future = asyncio.get_running_loop().create_future() if wait else None
        # blocks while the queue is full
        await self._queue.put(Command(kind, payload, future))
        if future is None:
            return None
        return await future

    def _start_timer(self, interval: float, kind: CommandKind) -> asyncio.Task:
        return asyncio.create_task(self._tick(interval, kind), name=f"swarmgraph-{kind.value}")

    async def _tick(self, interval: float, kind: CommandKind) -> None:
        """Enqueue `kind` every `interval` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self._queue.put(Command(kind))

    async def _run(self) -> None:
        """Owner task: apply commands one at a time until STOP."""
        while True:
            command = await self._queue.get()
            if command.kind is CommandKind.STOP:
                command.resolve(None)
                return

            try:
                command.resolve(self._handlers[command.kind](command))
            except Exception as e:
                logger.error(f"Command {command.kind.value} failed: {e}", exc_info=True)
                command.fail(e)

    # =========================================================================
    # HANDLERS (owner task only)
    # =========================================================================

    def _broadcast(self, delta_type: str, data: Any) -> DeltaMessage:
        self._sequence += 1
        message = DeltaMessage(type=delta_type, data=data, sequence=self._sequence)
        self.mutation_log.record(message)
        self.hub.publish(message)
        return message

    def _handle_ingest(self, command: Command) -> int:
        applied = 0
        for mutation in command.payload:
            if self._apply(mutation):
                applied += 1
        return applied

    def _apply(self, mutation: Mutation) -> bool:
        """Apply one mutation and broadcast its delta."""
        if isinstance(mutation, UpsertNode):
            node = self.store.upsert_node(mutation.node_type, mutation.data)
            self._broadcast(DeltaType.NODE_ADDED.value, node)
            return True

        if isinstance(mutation, UpsertEdge):
            edge = self.store.upsert_edge(
                mutation.edge_type,
                mutation.source,
                mutation.target,
                properties=mutation.properties,
                expires_at=mutation.expires_at,
            )
            self._broadcast(DeltaType.EDGE_ADDED.value, edge)
            return True

        if isinstance(mutation, PatchNode):
            node = self.store.patch_node(mutation.node_id, mutation.changes)
            if node is None:
                logger.debug(f"Patch for unknown node {mutation.node_id} ignored")
                return False
            self._broadcast(DeltaType.NODE_UPDATED.value, node)
            return True

        if isinstance(mutation, Announce):
            self._broadcast(mutation.message_type, mutation.data)
            return True

        raise TypeError(f"Unknown mutation: {type(mutation).__name__}")

    def _handle_subscribe(self, command: Command) -> Subscriber:
        subscriber = self.hub.subscribe(command.payload)
        subscriber.offer(DeltaMessage(
            type=DeltaType.INITIAL.value,
            data=self.store.snapshot().to_dict(),
            sequence=self._sequence,
        ))
        logger.info(f"Subscriber {subscriber.id} connected ({self.hub.subscriber_count} total)")
        return subscriber

    def _handle_gc_status(self, command: Command) -> Dict[str, Any]:
        config = self.sweeper.config
        return {
            "config": {
                "maxNodes": config.max_nodes,
                "maxEdges": config.max_edges,
                "maxAge": config.max_age,
                "interval": config.interval,
                "pinnedTypes": sorted(config.pinned_types),
                "enabled": config.enabled,
            },
            "nodes": self.store.node_count,
            "edges": self.store.edge_count,
            "lastSweep": self._last_sweep.to_payload() if self._last_sweep else None,
            "lastSweepAt": self._last_sweep_at,
        }

    def _handle_sweep(self, command: Command) -> SweepResult:
        manual = bool(command.payload)
        result = self.sweeper.sweep(self.store, manual=manual)
        if result.changed:
            # no-op sweeps leave the last reported sweep in place
            self._last_sweep = result
            self._last_sweep_at = now_utc()
            self._broadcast(DeltaType.GC_CLEANUP.value, result.to_payload())
        return result

    def _handle_expire_edges(self, command: Command) -> int:
        expired = self.store.expired_edges()
        for edge in expired:
            self.store.remove_edge(edge.id)
            self._broadcast(DeltaType.EDGE_REMOVED.value, _edge_ref(edge))
        if expired:
            logger.debug(f"Expired {len(expired)} ephemeral edges")
        return len(expired)

    def _handle_push_metrics(self, command: Command) -> Optional[GraphMetrics]:
        if self.hub.subscriber_count == 0:
            return None
        metrics = compute_metrics(self.store.snapshot())
        self._broadcast(DeltaType.METRICS.value, metrics)
        return metrics


def _edge_ref(edge: Edge) -> Dict[str, Any]:
    """Identifying fields of a removed edge."""
    return {"id": edge.id, "type": edge.type, "from": edge.source, "to": edge.target}
