#!/usr/bin/env python3
"""
SecBank Entry Point

Starts the FastAPI server with the settings from SecbankConfig
(environment variables prefixed SECBANK_ or a .env file).
"""

import sys

import uvicorn

from secbank.api import create_app
from secbank.api.deps import get_banking_system
from secbank.config import get_config
from secbank.logging_config import setup_logging


def run_server(host: str, port: int, debug: bool = False):
    """Run the FastAPI server"""
    system = get_banking_system()
    app = create_app(system)
    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level="debug" if debug else "info"
        )
    finally:
        system.shutdown()


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info("Starting SecBank API on %s:%d%s", config.api_host, config.api_port, config.api_prefix)

    try:
        run_server(host=config.api_host, port=config.api_port, debug=config.log_level.upper() == "DEBUG")
    except KeyboardInterrupt:
        logger.info("Shutting down SecBank API")
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)
