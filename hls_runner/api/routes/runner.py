# hls_runner/api/routes/runner.py
"""
API routes for Runner management.
Handles core endpoints for runner health and status.
"""

from datetime import datetime

from fastapi import APIRouter, Depends

from hls_runner.__version__ import __version__
from hls_runner.api.routes.conversion import get_manager
from hls_runner.core.auth import verify_token
from hls_runner.core.config import config
from hls_runner.managers.conversion_manager import ConversionManager

# Create API router with prefix and tags for OpenAPI documentation
router = APIRouter(prefix="/runner", tags=["Runner"])

# ======================================================
# Health & Status Endpoints
# ======================================================


@router.get(
    "/health",
    response_model=dict,
    summary="Check runner health",
    description="Health check endpoint to verify the runner is up",
)
async def health_check() -> dict:
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now().isoformat(),
    }


@router.get(
    "/status",
    response_model=dict,
    summary="Get runner status",
    description="Returns toolchain resolution and conversion activity",
    dependencies=[Depends(verify_token)],
)
async def runner_status(manager: ConversionManager = Depends(get_manager)) -> dict:
    """
    Detailed status endpoint for runner monitoring and debugging.

    Returns:
        dict: Toolchain paths, active conversions and output root
    """
    return {
        "version": __version__,
        "toolchain": manager.toolchain.as_dict(),
        "active_conversions": manager.active_count(),
        "total_conversions": len(manager.list()),
        "output_root": config.OUTPUT_ROOT,
    }
