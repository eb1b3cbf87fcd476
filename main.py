"""
Funding Arbitrage Scanner - Main Entry Point
Serves funding rate arbitrage opportunities between Lighter and Hyperliquid.
"""
import sys

import uvicorn

from config import get_settings
from utils.logging_config import setup_logging


def main():
    settings = get_settings()
    loggers = setup_logging(log_level=settings.log_level, log_dir=settings.log_dir)
    logger = loggers['system']

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    try:
        uvicorn.run(
            "server:create_app",
            factory=True,
            host=settings.host,
            port=settings.port,
            reload=False,
            log_level=settings.log_level.lower(),
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
