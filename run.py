#!/usr/bin/env python3
"""
Loan Portfolio Service Entry Point

Starts the FastAPI server with the configured storage backend.
"""

import sys

from loan_portfolio.config import get_config
from loan_portfolio.logging_config import setup_logging
from loan_portfolio.api import run_server


if __name__ == "__main__":
    settings = get_config()
    logger = setup_logging(settings.log_level, log_file=settings.log_file)

    logger.info("Starting loan portfolio service on %s:%s", settings.api_host, settings.api_port)
    if not settings.auth_enabled:
        logger.warning("Authentication disabled; requests act as %s", settings.dev_user_id)

    try:
        run_server(host=settings.api_host, port=settings.api_port, debug=False)
    except KeyboardInterrupt:
        logger.info("Shutting down loan portfolio service")
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)
