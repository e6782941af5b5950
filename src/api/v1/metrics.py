"""
Metrics Endpoint

GET /api/v1/metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from src.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
    - pipeline_latency_seconds (per stage)
    - model_loads_total / model_load_seconds
    - processing_requests_total / processing_busy_rejections_total
    - tiles_processed_total / tile_inference_seconds
    - http_requests_total
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
