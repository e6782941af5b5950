"""
Prometheus Metrics for Observability

Tracks model loading, tiled processing performance and HTTP traffic.
Exposes /api/v1/metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "pipeline_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Model Loading
model_loads_total = Counter(
    "model_loads_total",
    "Total number of model load attempts",
    labelnames=["status"]
)

model_load_seconds = Histogram(
    "model_load_seconds",
    "Time to load and introspect a model",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0]
)

# Processing Requests
processing_requests_total = Counter(
    "processing_requests_total",
    "Total number of image processing requests",
    labelnames=["status", "failure_stage"]
)

processing_busy_rejections_total = Counter(
    "processing_busy_rejections_total",
    "Requests rejected because the processor was busy"
)

active_processing_gauge = Gauge(
    "active_processing_requests",
    "Number of image processing requests in flight"
)

# Tiles
tiles_processed_total = Counter(
    "tiles_processed_total",
    "Total number of tiles run through the model"
)

tile_inference_seconds = Histogram(
    "tile_inference_seconds",
    "Time spent running one tile through the model",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 60.0]
)

# Application Info
app_info = Info(
    "dejpeg_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("compositing"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_model_load(status: str, load_time_seconds: float = None):
    """Record a model load attempt."""
    model_loads_total.labels(status=status).inc()
    if load_time_seconds is not None:
        model_load_seconds.observe(load_time_seconds)


def record_tile_completion(inference_seconds: float):
    """Record one finished tile."""
    tiles_processed_total.inc()
    tile_inference_seconds.observe(inference_seconds)


def record_processing_started():
    active_processing_gauge.inc()


def record_processing_finished(status: str, failure_stage: str = "none"):
    """Record the end of a processing request."""
    processing_requests_total.labels(status=status, failure_stage=failure_stage).inc()
    active_processing_gauge.dec()


def record_busy_rejection():
    processing_busy_rejections_total.inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
