#!/usr/bin/env python3
"""
Loan Accounting Engine Entry Point

Starts the FastAPI server with settings taken from LOAN_ACCOUNTING_* environment variables.
"""

import sys

from loan_accounting.api import run_server
from loan_accounting.config import get_config
from loan_accounting.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format)
    logger.info("Starting loan accounting API on %s:%s", config.api_host, config.api_port)
    
    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down loan accounting API")
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)
