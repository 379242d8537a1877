"""Entry point for running forged daemon.

This module provides the CLI entry point for starting the daemon.
"""

import logging
import sys

import uvicorn

from forge_library.config import load_config

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the forged daemon.

    Loads configuration and starts the uvicorn server.
    """
    try:
        # Load configuration
        config = load_config()

        # Start uvicorn server
        uvicorn.run(
            "forged.main:app",
            host=config.host,
            port=config.port,
            log_level=config.log_level.lower(),
        )

    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Failed to start daemon: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
