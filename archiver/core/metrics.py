"""
Prometheus Metrics Registry

Provides Prometheus-compatible metrics for:
- Frames received from and dropped by the Frigate event feed
- Clip upload outcomes and in-flight uploads
- WebSocket connection attempts and keepalive misses
"""
import logging

from prometheus_client import (
    Counter, Gauge, Info,
    CollectorRegistry, start_http_server,
)

from archiver import APP_VERSION

logger = logging.getLogger(__name__)

# Custom registry to avoid conflicts with the default registry
REGISTRY = CollectorRegistry()

# ============================================================================
# Application Info
# ============================================================================

app_info = Info(
    'app',
    'Application information',
    registry=REGISTRY
)
app_info.info({'version': APP_VERSION})

# ============================================================================
# Event Feed Metrics
# ============================================================================

frames_received_total = Counter(
    'frames_received_total',
    'Total frames received from the Frigate WebSocket',
    registry=REGISTRY
)

frames_dropped_total = Counter(
    'frames_dropped_total',
    'Frames discarded before scheduling an upload',
    ['reason'],  # decode_error, missing_start_time, invalid_start_time
    registry=REGISTRY
)

# ============================================================================
# Upload Metrics
# ============================================================================

clip_uploads_total = Counter(
    'clip_uploads_total',
    'Clip upload attempts by outcome',
    ['status'],  # success, download_failed, upload_failed, error
    registry=REGISTRY
)

clip_uploads_pending = Gauge(
    'clip_uploads_pending',
    'Frames being classified plus clip uploads scheduled but not yet finished',
    registry=REGISTRY
)

# ============================================================================
# Connection Metrics
# ============================================================================

stream_connections_total = Counter(
    'stream_connections_total',
    'WebSocket connection attempts by outcome',
    ['status'],  # connected, failed
    registry=REGISTRY
)

keepalive_missed_pongs_total = Counter(
    'keepalive_missed_pongs_total',
    'Keepalive pings that were not acknowledged in time',
    registry=REGISTRY
)


def record_frame_dropped(reason: str) -> None:
    frames_dropped_total.labels(reason=reason).inc()


def record_upload(status: str) -> None:
    clip_uploads_total.labels(status=status).inc()


def record_connection(status: str) -> None:
    stream_connections_total.labels(status=status).inc()


def start_metrics_server(port: int) -> None:
    """
    Expose the metrics registry over HTTP.

    Args:
        port: TCP port for the /metrics endpoint
    """
    start_http_server(port, registry=REGISTRY)
    logger.info(
        f"Metrics server listening on port {port}",
        extra={"event_type": "metrics_server_started", "port": port}
    )
