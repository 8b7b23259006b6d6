"""
Run the indexer for every enabled chain.

    ENABLED_CHAINS=mainnet DATABASE_URL=postgresql://... python -m amm_indexer
"""

import asyncio
import logging
import signal
import sys

from .config import ConfigError, get_config
from .runner import IndexerRunner

logger = logging.getLogger(__name__)


async def main() -> int:
    logger.info("=" * 80)
    logger.info("Starting AMM indexer")
    logger.info("=" * 80)

    try:
        runner = IndexerRunner(get_config())
        runner.build()
    except ConfigError as e:
        logger.error(f"❌ Invalid configuration: {e}")
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, runner.stop)

    status = await runner.run()
    for chain, state in status.items():
        logger.info(f"  {chain}: {state}")
    if runner.failures:
        for chain_id, reason in runner.failures.items():
            logger.error(f"  chain {chain_id}: {reason}")
        return 1
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
