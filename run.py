#!/usr/bin/env python3
"""
Time-Locked Savings Ledger Entry Point

Starts the FastAPI server with settings taken from TIMELOCK_* environment
variables (see timelock_savings/config.py).
"""

import sys

from timelock_savings.api import run_server
from timelock_savings.config import get_config
from timelock_savings.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format)
    logger.info(f"Starting savings ledger API on {config.api_host}:{config.api_port}")

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        logger.info("Shutting down savings ledger API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
