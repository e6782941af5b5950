"""
API v1 Router Module - Restoration Service

All v1 endpoints are prefixed with /api/v1/

- /api/v1/models  - model library (upload, load, list, delete)
- /api/v1/process - tiled restoration (PNG or SSE progress stream)
- /api/v1/status  - processing progress
- /api/v1/metrics - Prometheus exposition
"""

from fastapi import APIRouter

from src.api.v1.models import router as models_router
from src.api.v1.process import router as process_router
from src.api.v1.metrics import router as metrics_router
from src.api.v1.status import router as status_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(models_router, prefix="/models", tags=["models"])
api_v1_router.include_router(process_router, prefix="/process", tags=["processing"])
api_v1_router.include_router(status_router, prefix="/status", tags=["status"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
