#!/usr/bin/env python3
"""Entry point for the swap bridge service.

Runs the bridge until interrupted, or performs a one-off administrative
action (queueing a retry, printing status) against the configured store.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

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

from swap_bridge.bridge import Bridge
from swap_bridge.db.store import BridgeStore
from swap_bridge.config import BridgeConfig


async def run_admin(config: BridgeConfig, args: argparse.Namespace) -> None:
    """Store-only actions; no chain connection is made."""
    store = BridgeStore(config.database.url)
    await store.init()
    try:
        if args.retry_swap is not None:
            retry = await store.create_retry(args.retry_swap)
            logger.info(f"Retry {retry.id} queued for swap {args.retry_swap}")
        if args.status:
            status = {"cursors": await store.cursors(), "records": await store.status_counts()}
            print(json.dumps(status, indent=2))
    finally:
        await store.close()


async def main() -> None:
    """Main entry point for the swap bridge.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Swap Bridge - fill cross-chain swaps between swap agent contracts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  BRIDGE_CONFIG          - Path to the JSON configuration (overridden by --config)
  <CHAIN>_PRIVATE_KEY    - Signing key per chain when key_manager.key_type is 'local'
  LOG_LEVEL              - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("BRIDGE_CONFIG", "config.json"),
        help="Path to the bridge configuration file (default: config.json)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    parser.add_argument(
        "--retry-swap",
        type=int,
        metavar="SWAP_ID",
        help="Queue a retry for a swap that ended at sent_fail, then exit"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        default=False,
        help="Print cursors and record counts, then exit"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)

    bridge: Bridge | None = None
    try:
        config: BridgeConfig = BridgeConfig.from_file(args.config)
        logger.info("Configuration loaded successfully")

        if args.retry_swap is not None or args.status:
            await run_admin(config, args)
            return

        logger.info("=== Swap Bridge Starting ===")
        config.log_config()
        bridge = Bridge(config)
        await bridge.run()

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error(f"Please check {args.config} and the signing keys:")
        logger.error("  - chains: at least two, each with name, chain_id, rpc_url, swap_agent_address")
        logger.error("  - <CHAIN>_PRIVATE_KEY: Required per chain for local key management")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
        if bridge is not None:
            bridge.stop()
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
