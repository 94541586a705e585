"""Main entry point for the mxtoot bridge.

Starts one bot per configured account and serves the Matrix
application-service endpoint until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys

import structlog
from aiohttp import web

from .appservice import AppServiceResource
from .commands import CommandDispatcher
from .config import BridgeConfig, load_config
from .dedup import TransactionDeduper
from .models import init_db
from .registry import BotRegistry
from .store import PersistenceStore

logger = structlog.get_logger()


def configure_logging(log_level: str = "INFO") -> None:
    """Configure stdlib logging and structlog."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class MxTootBridge:
    """Main bridge application."""

    def __init__(self, config: BridgeConfig):
        """Initialize bridge.

        Args:
            config: Bridge configuration
        """
        self.config = config
        self.store = None
        self.registry = None
        self.resource = None
        self._stop_event = asyncio.Event()

    async def setup(self) -> None:
        """Initialize database, bots and the HTTP resource."""
        logger.info("Initializing database", url=self.config.database.url)
        session_maker = await init_db(self.config.database.url)
        self.store = PersistenceStore(session_maker)

        self.registry = BotRegistry(self.config, self.store)
        dispatcher = CommandDispatcher(self.registry, prefix=self.config.matrix.command_prefix)
        self.resource = AppServiceResource(
            registry=self.registry,
            deduper=TransactionDeduper(self.store),
            dispatcher=dispatcher,
            hs_token=self.config.matrix.hs_token,
        )

        logger.info(
            "Bridge initialized",
            bots=len(self.registry.bots),
            misconfigured=len(self.registry.failed),
        )

    def shutdown(self) -> None:
        """Ask the running bridge to stop."""
        self._stop_event.set()

    async def run(self) -> None:
        """Run the bridge until shutdown is requested."""
        await self.setup()

        runner = web.AppRunner(self.resource.create_app())
        await runner.setup()

        # Bots start after the database is ready and stop before it goes away
        async with self.registry:
            site = web.TCPSite(runner, self.config.matrix.host, self.config.matrix.port)
            await site.start()
            logger.info(
                "Application service started",
                host=self.config.matrix.host,
                port=self.config.matrix.port,
            )
            try:
                await self._stop_event.wait()
            finally:
                logger.info("Shutting down...")
                await runner.cleanup()


async def async_main(config: BridgeConfig | None = None) -> None:
    """Async main entry point."""
    if config is None:
        config = load_config()

    configure_logging(config.log_level)

    bridge = MxTootBridge(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, bridge.shutdown)

    await bridge.run()


def main() -> None:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="mxtoot - relay Mastodon statuses and notifications into Matrix rooms"
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        help="Override application-service port",
    )
    args = parser.parse_args()

    if args.config:
        config = BridgeConfig.from_yaml(args.config)
    else:
        config = load_config()

    if args.port:
        config.matrix.port = args.port

    try:
        asyncio.run(async_main(config))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
