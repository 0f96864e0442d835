"""
Command line entry point.

    python -m instapod [--config PATH] [--once] [--log-level LEVEL]

Without --once the HTTP server is started and runs are driven by the cron
timer and the admin trigger. With --once a single run is executed and the
process exits.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import uvicorn

from instapod.config import load_config
from instapod.errors import ConfigInvalid
from instapod.logs import setup_logging
from instapod.pipeline import build_orchestrator
from instapod.scheduler import CronTimer, RunGuard
from instapod.sources.instapaper import InstapaperClient
from instapod.state import StateStore
from instapod.web.server import create_app

logger = logging.getLogger(__name__)

EXIT_CONFIG_INVALID = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="instapod",
        description="Turn Instapaper bookmarks into a podcast feed",
    )
    parser.add_argument("--config", default=None,
                        help="Path to config.yaml (default: $CONFIG_PATH or ./config.yaml)")
    parser.add_argument("--once", action="store_true",
                        help="Run the pipeline a single time and exit")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level (default: INFO)")
    return parser.parse_args(argv)


async def _run_once(guard: RunGuard, source: InstapaperClient) -> None:
    async with source:
        await guard.run("cli")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_config(args.config)
    except ConfigInvalid as e:
        logger.error(f"✗ {e}")
        return EXIT_CONFIG_INVALID

    state = StateStore(config.data_path)
    source = InstapaperClient(config.instapaper)
    orchestrator = build_orchestrator(config, state, source=source)
    guard = RunGuard(orchestrator.run)

    if config.translation.enabled:
        logger.info(f"Translation enabled: {config.translation.model} -> {config.translation.target_language}")
    else:
        logger.info("Translation disabled (no translation.api_key)")

    if args.once:
        asyncio.run(_run_once(guard, source))
        return 0

    timer = CronTimer(config.schedule.cron, guard)
    app = create_app(config, state, guard, timer, source=source)
    logger.info(f"Starting Instapod on http://{config.server.host}:{config.server.port}")
    logger.info(f"  Feed: {config.server.base_url.rstrip('/')}/feed")
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_level=args.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
