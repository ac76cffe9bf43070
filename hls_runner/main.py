# hls_runner/main.py
"""
Main FastAPI application for HLS Runner.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hls_runner.__version__ import __description__, __version__
from hls_runner.api.routes import conversion, runner
from hls_runner.core.config import config, is_pytest_run
from hls_runner.core.setup_logging import setup_default_logging
from hls_runner.encoding.toolchain import resolve_toolchain
from hls_runner.managers.conversion_manager import ConversionManager

logger = setup_default_logging()

# Validate configuration when serving (tests use their own settings)
if not is_pytest_run():
    config.validate_configuration()


def create_manager() -> ConversionManager:
    """Resolve the toolchain and build the conversion manager from the configuration."""
    toolchain = resolve_toolchain(
        config.FFMPEG_SEARCH_PATHS, ffmpeg=config.FFMPEG_PATH, ffprobe=config.FFPROBE_PATH
    )
    return ConversionManager(
        toolchain,
        max_log_lines=config.MAX_LOG_LINES,
        grace_period=config.PROCESS_TERMINATE_GRACE_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Builds the conversion manager on startup and cancels running
    conversions on shutdown.

    Args:
        app: FastAPI application instance
    """
    if getattr(app.state, "manager", None) is None:
        app.state.manager = create_manager()
    logger.info(f"HLS runner {__version__} started, output root: {config.OUTPUT_ROOT}")

    yield

    logger.info("Shutting down HLS runner")
    app.state.manager.cancel_all()


# FastAPI application configuration
app = FastAPI(
    title="HLS Runner",
    description=__description__,
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=config.CORS_ALLOW_METHODS,
    allow_headers=config.CORS_ALLOW_HEADERS,
)

app.include_router(runner.router)
app.include_router(conversion.router)


@app.get("/", tags=["Runner"])
async def root():
    """
    Root endpoint with API information and links.

    Returns:
        Dict: API information and available endpoints
    """
    return {
        "message": "HLS Runner API",
        "version": __version__,
        "documentation": {"swagger": "/docs", "redoc": "/redoc", "openapi": "/openapi.json"},
        "health_check": "/runner/health",
    }
