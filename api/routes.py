"""
SWARMGRAPH API ROUTES - The HTTP and WebSocket Interface

Thin Starlette layer over the GraphEngine. Every handler delegates to the
engine held on app.state; no graph state lives in this module.

Endpoints:
- GET  /api/graph             - Full graph snapshot (JSON)
- GET  /api/graph/stream      - Graph as Arrow IPC stream
- GET  /api/metrics           - Graph, performance and connectivity metrics
- GET  /api/gc                - Eviction config, counts and last sweep
- POST /api/gc                - Run an eviction sweep now
- GET  /api/health            - Liveness, client and graph counts
- POST /api/events            - Ingest one lifecycle event or a list of them
- GET  /api/events/recent     - Recently broadcast deltas
- WS   /ws (and /)            - Snapshot, then live deltas

WebSocket Protocol:
1. Client connects
2. Server sends {"type": "initial", "data": <snapshot>, ...}
3. Server pushes every delta in apply order
4. Client may send {"type": "ping"}; server answers {"type": "pong"}
5. After heartbeat_interval seconds of client silence the server sends
   {"type": "heartbeat"}

Design:
- Starlette routes for ASGI compatibility with Granian
- msgspec for fast JSON serialization
- Lifespan starts and stops the engine
- One pump task per WebSocket drains that connection's Subscriber
"""
import asyncio
import contextlib
import logging
from typing import Any, List, Optional

import msgspec
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from core.engine import EngineNotRunning, GraphEngine
from core.export import pack_arrow, snapshot_to_arrow
from core.schemas import encode_json, now_utc
from infrastructure.broadcast import Subscriber
from infrastructure.config import SwarmGraphConfig, load_config


# =============================================================================
# LOGGING
# =============================================================================

logger = logging.getLogger("swarmgraph.api")

ARROW_MEDIA_TYPE = "application/vnd.apache.arrow.stream"


# =============================================================================
# HELPERS
# =============================================================================

def json_response(data: Any, status_code: int = 200) -> Response:
    """Create JSON response using msgspec for speed."""
    return Response(
        content=encode_json(data),
        status_code=status_code,
        media_type="application/json"
    )


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    """Create error response."""
    return JSONResponse(
        {"error": message},
        status_code=status_code
    )


def get_engine(connection) -> GraphEngine:
    """The engine owned by the app serving this request or socket."""
    return connection.app.state.engine


# =============================================================================
# GRAPH
# =============================================================================

async def get_graph(request: Request) -> Response:
    """Full snapshot: timestamp, nodeCount, edgeCount, nodes, edges."""
    snapshot = await get_engine(request).snapshot()
    return json_response(snapshot.to_dict())


async def graph_stream(request: Request) -> Response:
    """
    Get graph as Apache Arrow IPC stream.

    Query params:
        format: "nodes" | "edges" | "both" (default: "both")

    "both" returns the two IPC files behind a u32 length prefix for the
    nodes part.
    """
    format_type = request.query_params.get("format", "both")
    if format_type not in ("nodes", "edges", "both"):
        return error_response(f"Unknown format: {format_type}")

    snapshot = await get_engine(request).snapshot()
    nodes_bytes, edges_bytes = snapshot_to_arrow(snapshot)

    if format_type == "nodes":
        content, filename = nodes_bytes, "nodes.arrow"
    elif format_type == "edges":
        content, filename = edges_bytes, "edges.arrow"
    else:
        content, filename = pack_arrow(nodes_bytes, edges_bytes), "graph.arrow"

    return Response(
        content=content,
        media_type=ARROW_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


async def get_metrics(request: Request) -> Response:
    metrics = await get_engine(request).metrics()
    return json_response(metrics)


# =============================================================================
# EVICTION
# =============================================================================

async def get_gc(request: Request) -> Response:
    """Eviction policy, current counts and the outcome of the last sweep."""
    return json_response(await get_engine(request).gc_status())


async def trigger_gc(request: Request) -> Response:
    """Run a sweep now; returns before/after/removed counts."""
    result = await get_engine(request).trigger_gc()
    return json_response(result.to_payload())


# =============================================================================
# HEALTH
# =============================================================================

async def health(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(get_engine(request).health())


# =============================================================================
# EVENTS
# =============================================================================

async def post_events(request: Request) -> Response:
    """
    Ingest lifecycle events.

    Body is one event object or a JSON array of them. The response is sent
    after every event has been applied, so a following GET /api/graph
    observes them.
    """
    body = await request.body()
    try:
        payload = msgspec.json.decode(body)
    except msgspec.DecodeError as e:
        return error_response(f"Invalid JSON: {e}")

    events: List[Any] = payload if isinstance(payload, list) else [payload]
    engine = get_engine(request)

    applied = 0
    for event in events:
        applied += await engine.ingest(event, wait=True)

    return json_response({"accepted": len(events), "applied": applied})


async def recent_events(request: Request) -> Response:
    """
    Recently broadcast deltas, oldest first.

    Query params:
        limit: Maximum number of events (default 100)
        node: Only events touching this node id
        type: Only events of this delta type
        since: Only events at or after this ISO-8601 timestamp
    """
    try:
        limit = int(request.query_params.get("limit", "100"))
    except ValueError:
        return error_response("limit must be an integer")
    if limit < 0:
        return error_response("limit must be non-negative")

    mutation_log = get_engine(request).mutation_log
    node_id = request.query_params.get("node")
    delta_type = request.query_params.get("type")
    since = request.query_params.get("since")

    if node_id:
        events = mutation_log.get_events_for_node(node_id)
    elif delta_type:
        events = mutation_log.get_events_by_type(delta_type)
    elif since:
        events = mutation_log.get_events_since(since)
    else:
        events = mutation_log.get_recent_events(limit)

    events = events[-limit:] if limit else []
    return json_response({"count": len(events), "events": events})


# =============================================================================
# WEBSOCKET
# =============================================================================

async def _pump(websocket: WebSocket, subscriber: Subscriber, send_lock: asyncio.Lock) -> None:
    """Forward a subscriber's channel to its socket until either closes."""
    try:
        async for message in subscriber:
            async with send_lock:
                await websocket.send_text(encode_json(message).decode())
    except Exception as e:
        # transport failure: only this subscriber goes away
        logger.debug(f"Send to {subscriber.id} failed: {e}")
        subscriber.close()


async def _listen(websocket: WebSocket, send_lock: asyncio.Lock, heartbeat: float) -> None:
    """Answer pings and send heartbeats until the client disconnects."""
    while True:
        try:
            message = await asyncio.wait_for(
                websocket.receive(),
                timeout=heartbeat
            )
        except asyncio.TimeoutError:
            async with send_lock:
                await websocket.send_json({"type": "heartbeat", "timestamp": now_utc()})
            continue

        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))

        text = message.get("text")
        if text is None:
            logger.debug("Ignoring binary client frame")
            continue

        try:
            data = msgspec.json.decode(text)
        except msgspec.DecodeError:
            logger.debug("Ignoring non-JSON client message")
            continue

        if isinstance(data, dict) and data.get("type") == "ping":
            async with send_lock:
                await websocket.send_json({"type": "pong", "timestamp": now_utc()})


async def graph_websocket(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for real-time graph updates.

    The connection lives until the client disconnects or its subscriber
    is closed (slow consumer, or engine shutdown).
    """
    engine = get_engine(websocket)
    await websocket.accept()

    try:
        subscriber = await engine.subscribe()
    except EngineNotRunning:
        await websocket.close(code=1013)
        return

    send_lock = asyncio.Lock()
    pump = asyncio.create_task(_pump(websocket, subscriber, send_lock))
    listener = asyncio.create_task(
        _listen(websocket, send_lock, engine.config.broadcast.heartbeat_interval)
    )

    try:
        done, _ = await asyncio.wait({pump, listener}, return_when=asyncio.FIRST_COMPLETED)
        if pump in done:
            # channel closed by the server side
            with contextlib.suppress(Exception):
                await websocket.close(code=1001)
        elif listener.exception() is not None and not isinstance(listener.exception(), WebSocketDisconnect):
            logger.warning(f"WebSocket {subscriber.id} receive failed: {listener.exception()}")
    finally:
        engine.unsubscribe(subscriber)
        for task in (pump, listener):
            task.cancel()
        await asyncio.gather(pump, listener, return_exceptions=True)
        logger.info(f"Subscriber {subscriber.id} disconnected")


# =============================================================================
# APPLICATION
# =============================================================================

def create_routes() -> List[Route]:
    """Create HTTP routes."""
    return [
        Route("/api/graph", get_graph, methods=["GET"]),
        Route("/api/graph/stream", graph_stream, methods=["GET"]),
        Route("/api/metrics", get_metrics, methods=["GET"]),
        Route("/api/gc", get_gc, methods=["GET"]),
        Route("/api/gc", trigger_gc, methods=["POST"]),
        Route("/api/health", health, methods=["GET"]),
        Route("/api/events", post_events, methods=["POST"]),
        Route("/api/events/recent", recent_events, methods=["GET"]),
    ]


def create_websocket_routes() -> List[WebSocketRoute]:
    """Create WebSocket routes."""
    return [
        WebSocketRoute("/ws", graph_websocket),
        WebSocketRoute("/", graph_websocket),
    ]


async def engine_not_running(request: Request, exc: Exception) -> JSONResponse:
    return error_response(str(exc), status_code=503)


def create_app(config: Optional[SwarmGraphConfig] = None, engine: Optional[GraphEngine] = None) -> Starlette:
    """
    Create the Starlette application.

    Args:
        config: Loaded configuration (load_config() if None)
        engine: Pre-built engine; one is built from `config` if None
    """
    from starlette.middleware import Middleware
    from starlette.middleware.cors import CORSMiddleware

    if engine is None:
        engine = GraphEngine(config if config is not None else load_config())

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        await engine.start()
        try:
            yield
        finally:
            await engine.stop()

    # Observers are browsers on arbitrary origins
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )
    ]

    app = Starlette(
        routes=create_routes() + create_websocket_routes(),
        middleware=middleware,
        exception_handlers={EngineNotRunning: engine_not_running},
        lifespan=lifespan,
        debug=False,
    )
    app.state.engine = engine
    return app


# Application instance for ASGI servers
app = create_app()
