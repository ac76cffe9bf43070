# launcher.py
"""
Launcher for the HLS Runner API.
Runs a single uvicorn instance configured from the environment.
"""

import sys

from hls_runner.core.config import config
from hls_runner.core.setup_logging import get_uvicorn_log_config, setup_default_logging

# Configure logging
logger = setup_default_logging()


def main():
    """
    Main entry point: validate the configuration and serve the API.
    """
    import uvicorn

    try:
        config.validate_configuration()
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    print(f"🚀 Starting HLS runner on {config.HLS_RUNNER_HOST}:{config.HLS_RUNNER_PORT}")
    print(f"   Output root: {config.OUTPUT_ROOT}")
    print("   Press Ctrl+C to stop")

    uvicorn.run(
        "hls_runner.main:app",
        host=config.HLS_RUNNER_HOST,
        port=config.HLS_RUNNER_PORT,
        log_config=get_uvicorn_log_config(json_format=config.LOG_JSON),
        access_log=True,
        workers=1,
    )


def run_dev():
    """Run the API with Uvicorn reload (development mode)."""
    import uvicorn

    print(f"[DEV] Starting HLS runner on {config.HLS_RUNNER_HOST}:{config.HLS_RUNNER_PORT}")

    uvicorn.run(
        "hls_runner.main:app",
        host=config.HLS_RUNNER_HOST,
        port=config.HLS_RUNNER_PORT,
        reload=True,
        access_log=True,
        workers=1,
    )


if __name__ == "__main__":
    main()
