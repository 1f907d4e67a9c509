#!/usr/bin/env python3
"""
QuickPe Wallet Entry Point

Starts the FastAPI server with host and port taken from QUICKPE_* settings.
"""

import sys

import uvicorn

from quickpe.config import get_config
from quickpe.logging_config import setup_logging


def run_server(debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )
    uvicorn.run(
        "quickpe.api:create_app",
        factory=True,
        host=config.api_host,
        port=config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )


if __name__ == "__main__":
    config = get_config()
    print("Starting QuickPe Wallet...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug="--reload" in sys.argv)
    except KeyboardInterrupt:
        print("\nShutting down QuickPe Wallet...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
