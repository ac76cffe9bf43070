# hls_runner/api/routes/conversion.py
"""
Conversion routes for HLS Runner.
Handles conversion start, status tracking, cancellation and cleanup endpoints.
"""

from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from hls_runner.core.auth import verify_token
from hls_runner.core.config import config
from hls_runner.core.setup_logging import setup_default_logging
from hls_runner.encoding.encoders import available_encoders, select
from hls_runner.encoding.options import VideoCodecFamily
from hls_runner.managers.conversion_manager import (
    ConversionManager,
    ConversionNotFoundError,
    ConversionRunningError,
    OutputDirectoryBusyError,
)
from hls_runner.models.models import ConversionRequest, ConversionResultResponse

# Configure logging
logger = setup_default_logging()

router = APIRouter(tags=["Conversion"], dependencies=[Depends(verify_token)])

# ======================================================
# Utility Functions
# ======================================================


def get_manager(request: Request) -> ConversionManager:
    """Conversion manager built at application startup."""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Conversion manager not initialized",
        )
    return manager


def _resolve_output_dir(relative: str) -> Path:
    """Resolve an output directory under OUTPUT_ROOT and reject path traversal."""
    root = Path(config.OUTPUT_ROOT).resolve()
    target = (root / relative).resolve(strict=False)
    if target == root or not target.is_relative_to(root):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="output_dir must be a subdirectory of the output root",
        )
    return target


def _get_state(manager: ConversionManager, conversion_id: str):
    try:
        return manager.get(conversion_id)
    except ConversionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversion not found")


# ======================================================
# API Endpoints
# ======================================================


@router.get(
    "/encoders",
    response_model=dict,
    summary="List video encoders",
    description="Encoders known to the runner, whether the local ffmpeg supports them, and the encoder selected per codec family",
)
def list_encoders(manager: ConversionManager = Depends(get_manager)) -> dict:
    """
    Probe encoder support.

    Declared as a plain function: probing runs ffmpeg and must not block the event loop.
    """
    support = available_encoders(manager.encoder_probe)
    return {
        "encoders": [
            {
                "name": encoder.value,
                "display_name": encoder.display_name,
                "family": encoder.family.value,
                "hardware": encoder.is_hardware,
                "supported": supported,
            }
            for encoder, supported in support.items()
        ],
        "selected": {
            family.value: select(None, family, manager.encoder_probe).value
            for family in VideoCodecFamily
        },
    }


@router.post(
    "/conversions",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=dict,
    responses={
        409: {"description": "Output directory already in use"},
        503: {"description": "ffmpeg not available"},
    },
    summary="Start a conversion",
    description="Start converting a source file into an HLS asset in the background",
)
def start_conversion(
    conversion_request: ConversionRequest,
    manager: ConversionManager = Depends(get_manager),
) -> dict:
    """
    Start a conversion.

    Args:
        conversion_request: Source, destination and encoding overrides
        manager: Conversion manager

    Returns:
        dict: Initial conversion state
    """
    if not manager.toolchain.available:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ffmpeg executable not found on the runner",
        )

    input_path = Path(conversion_request.input_path)
    if not input_path.is_file():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Input file not found: {conversion_request.input_path}",
        )

    output_dir = _resolve_output_dir(conversion_request.output_dir)
    try:
        options = conversion_request.options.to_options(config.default_options())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    try:
        state = manager.start(
            str(input_path),
            str(output_dir),
            options,
            excluded=conversion_request.excluded,
            completion_callback=conversion_request.completion_callback,
        )
    except OutputDirectoryBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info(f"Conversion {state.conversion_id} accepted for {input_path}")
    return state.snapshot()


@router.get(
    "/conversions",
    response_model=List[dict],
    summary="List conversions",
    description="State of every conversion known to this runner",
)
async def list_conversions(manager: ConversionManager = Depends(get_manager)) -> List[dict]:
    return [state.snapshot() for state in manager.list()]


@router.get(
    "/conversions/{conversion_id}",
    response_model=dict,
    responses={404: {"description": "Conversion not found"}},
    summary="Get conversion state",
)
async def get_conversion(
    conversion_id: str, manager: ConversionManager = Depends(get_manager)
) -> dict:
    return _get_state(manager, conversion_id).snapshot()


@router.post(
    "/conversions/{conversion_id}/cancel",
    response_model=ConversionResultResponse,
    responses={404: {"description": "Conversion not found"}},
    summary="Cancel a conversion",
    description="Terminate the running ffmpeg processes of a conversion",
)
async def cancel_conversion(
    conversion_id: str, manager: ConversionManager = Depends(get_manager)
) -> ConversionResultResponse:
    _get_state(manager, conversion_id)
    cancelled = manager.cancel(conversion_id)
    return ConversionResultResponse(
        conversion_id=conversion_id,
        status="cancelling" if cancelled else "not running",
    )


@router.post(
    "/conversions/{conversion_id}/cleanup",
    response_model=ConversionResultResponse,
    responses={
        404: {"description": "Conversion not found"},
        409: {"description": "Conversion still running"},
    },
    summary="Clean up a conversion",
    description="Remove the files written by a finished conversion",
)
def cleanup_conversion(
    conversion_id: str, manager: ConversionManager = Depends(get_manager)
) -> ConversionResultResponse:
    _get_state(manager, conversion_id)
    try:
        removed = manager.cleanup(conversion_id)
    except ConversionRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ConversionResultResponse(conversion_id=conversion_id, status="cleaned", removed=removed)
