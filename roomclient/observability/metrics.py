"""Prometheus Metrics - Room client observability.

Exports:
- Join attempts by outcome
- Signaling request counts and latency per operation
- Remote stream consume counts and latency
- Remote peer / stream and local producer gauges
- Errors by component
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# -----------------------------------------------------------------------------
# Latency Histograms
# -----------------------------------------------------------------------------

SIGNALING_REQUEST_LATENCY = Histogram(
    "roomclient_signaling_request_seconds",
    "Signaling request round-trip time",
    ["operation"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

CONSUME_LATENCY = Histogram(
    "roomclient_consume_seconds",
    "Remote stream consume duration (request + engine consume + resume)",
    buckets=[0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

JOIN_LATENCY = Histogram(
    "roomclient_join_seconds",
    "Time from join request to joined state",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

# -----------------------------------------------------------------------------
# Counters
# -----------------------------------------------------------------------------

ROOM_JOINS = Counter(
    "roomclient_room_joins_total",
    "Join attempts by outcome",
    ["status"],  # success, error, cancelled
)

ROOM_LEAVES = Counter(
    "roomclient_room_leaves_total",
    "Completed leave sequences",
)

SIGNALING_REQUESTS = Counter(
    "roomclient_signaling_requests_total",
    "Signaling requests by operation and outcome",
    ["operation", "status"],  # ok, timeout, decode_error, rejected, not_connected
)

CONSUMES = Counter(
    "roomclient_consumes_total",
    "Remote stream consume attempts",
    ["status"],  # success, error, skipped
)

ERRORS = Counter(
    "roomclient_errors_total",
    "Total errors by component",
    ["component", "type"],  # signaling, media, capture, room
)

# -----------------------------------------------------------------------------
# Gauges
# -----------------------------------------------------------------------------

REMOTE_PEERS = Gauge(
    "roomclient_remote_peers",
    "Remote peers currently present in the room",
)

REMOTE_STREAMS = Gauge(
    "roomclient_remote_streams",
    "Remote streams currently announced",
)

LOCAL_PRODUCERS = Gauge(
    "roomclient_local_producers",
    "Local producers currently published",
)

# -----------------------------------------------------------------------------
# Info
# -----------------------------------------------------------------------------

BUILD_INFO = Info(
    "roomclient_build",
    "Build information",
)


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def record_signaling_request(operation: str, status: str, latency_s: float) -> None:
    """Record a completed signaling request."""
    SIGNALING_REQUESTS.labels(operation=operation, status=status).inc()
    SIGNALING_REQUEST_LATENCY.labels(operation=operation).observe(latency_s)


def record_join(status: str, latency_s: float | None = None) -> None:
    """Record a join attempt outcome."""
    ROOM_JOINS.labels(status=status).inc()
    if latency_s is not None:
        JOIN_LATENCY.observe(latency_s)


def record_leave() -> None:
    """Record a completed leave sequence."""
    ROOM_LEAVES.inc()


def record_consume(status: str, latency_s: float | None = None) -> None:
    """Record a consume attempt."""
    CONSUMES.labels(status=status).inc()
    if latency_s is not None:
        CONSUME_LATENCY.observe(latency_s)


def record_error(component: str, error_type: str) -> None:
    """Record error by component."""
    ERRORS.labels(component=component, type=error_type).inc()


def update_room_gauges(peers: int, streams: int, local_producers: int) -> None:
    """Update peer/stream/producer gauges."""
    REMOTE_PEERS.set(peers)
    REMOTE_STREAMS.set(streams)
    LOCAL_PRODUCERS.set(local_producers)


def set_build_info(version: str, engine: str) -> None:
    """Set build information."""
    BUILD_INFO.info({
        "version": version,
        "media_engine": engine,
    })
