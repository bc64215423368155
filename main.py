#!/usr/bin/env python3
"""Entry point for the frag-probe dashboard service.

This module starts the HTTP API that funds a probe wallet, streams
transactions at the configured RPC endpoint and shows the gateway
leader rotation.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

import uvicorn

from src.frag_probe.app import create_app
from src.frag_probe.config import ProbeConfig


async def main() -> None:
    """Main entry point for the frag-probe service.

    Parses startup arguments, loads configuration from the environment
    (and a .env file if present) and serves the API until interrupted.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="frag-probe - transaction latency probe and gateway leader dashboard",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  RPC_URL               - RPC endpoint probe transactions are sent to
  REGISTRY_RPC_URL      - Gateway registry JSON-RPC endpoint
  FUNDING_PRIVATE_KEY   - Key of the account that funds airdrops (optional)
  FUNDING_RPC_URL       - RPC endpoint used for airdrops (default: RPC_URL)
  FUNDING_URL           - Airdrop endpoint used by the probe session
  EXPLORER_URL          - Block explorer base URL for transaction links
  HOST / PORT           - HTTP bind address (default: 127.0.0.1:8000)
  LOG_LEVEL            - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Bind host (default: HOST or 127.0.0.1)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Bind port (default: PORT or 8000)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)
    logger.info("=== frag-probe Starting ===")
    logger.info("Loading configuration from environment...")

    try:
        config: ProbeConfig = ProbeConfig.from_env(host=args.host, port=args.port)
        config.log_config()

        app = create_app(config)
        server = uvicorn.Server(uvicorn.Config(
            app,
            host=config.server.host,
            port=config.server.port,
            log_level=args.log_level.lower()
        ))
        logger.info(f"Serving on http://{config.server.host}:{config.server.port}")
        await server.serve()

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - RPC_URL: RPC endpoint probe transactions are sent to")
        logger.error("  - REGISTRY_RPC_URL: Gateway registry JSON-RPC endpoint")
        logger.error("  - FUNDING_PRIVATE_KEY: 64 hex characters, optionally 0x-prefixed")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    # Run the main async function
    asyncio.run(main())
