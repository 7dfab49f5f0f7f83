"""
Main entry point for Market Watcher.

Runs the async loop that polls the market and sends notifications.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from urllib.parse import urlparse

import coloredlogs

from market_watcher.catalog import CatalogFetcher, Snapshot
from market_watcher.commands import CommandHandler
from market_watcher.config import load_config
from market_watcher.delivery import DeliveryReport, deliver
from market_watcher.diff import diff_snapshots
from market_watcher.notifier import Notifier
from market_watcher.registry import Receiver, SubscriptionRegistry
from market_watcher.router import route
from market_watcher.simplex import SimpleXNotifier
from market_watcher.storage import Storage
from market_watcher.telegram import TelegramNotifier

logger = logging.getLogger(__name__)


def redact_proxy_url(proxy_url: str) -> str:
    """
    Redact credentials from a proxy URL for safe logging.

    Parameters
    ----------
    proxy_url : str
        The proxy URL potentially containing credentials.

    Returns
    -------
    str
        The proxy URL with password redacted.
    """
    try:
        parsed = urlparse(proxy_url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:****@{netloc}"
            return f"{parsed.scheme}://{netloc}{parsed.path}"
        return proxy_url
    except ValueError:
        return "<proxy url>"


class MarketWatcher:
    """
    Main market watcher application.

    Owns the previous market snapshot and runs poll cycles one after
    another: fetch, diff, route, deliver.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the market watcher.

        Parameters
        ----------
        config_path : str | Path
            Path to the YAML configuration file.
        """
        self.config = load_config(config_path)
        self.storage: Storage | None = None
        self.registry: SubscriptionRegistry | None = None
        self.fetcher: CatalogFetcher | None = None
        self.notifiers: list[Notifier] = []
        self.commands: CommandHandler | None = None
        self.previous: Snapshot = {}
        self._running = False
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the market watcher."""
        logger.info("Starting Market Watcher")

        self.storage = Storage(self.config.storage.database_path)
        await self.storage.initialize()

        self.registry = SubscriptionRegistry(self.storage)
        await self.registry.load()
        await self.registry.seed(Receiver.from_config(rule) for rule in self.config.rules)

        proxy_url = self.config.defaults.proxy
        if proxy_url:
            logger.info("Using proxy: %s", redact_proxy_url(proxy_url))

        self.fetcher = CatalogFetcher(
            timeout=self.config.defaults.request_timeout,
            max_retries=self.config.defaults.max_retries,
            user_agent=self.config.defaults.user_agent,
            proxy_url=proxy_url,
        )

        candidates: list[Notifier] = []
        telegram: TelegramNotifier | None = None
        if self.config.telegram is not None:
            telegram = TelegramNotifier(self.config.telegram, proxy_url=proxy_url)
            candidates.append(telegram)
        if self.config.simplex is not None:
            candidates.append(SimpleXNotifier(self.config.simplex))

        for notifier in candidates:
            if await notifier.test_connection():
                self.notifiers.append(notifier)
            else:
                logger.error("Failed to connect to %s, disabling it", notifier.platform)
                await notifier.close()

        if not self.notifiers:
            logger.error("No notifier could connect, exiting")
            await self.stop()
            sys.exit(1)

        # Establish the baseline so the first tick diffs against real data
        try:
            self.previous = await self.fetcher.fetch(
                self.config.market.endpoint, self.config.market.show_hidden
            )
        except Exception as e:
            logger.error("Failed to fetch initial market snapshot: %s", e)
            await self.stop()
            sys.exit(1)

        self.commands = CommandHandler(
            self.registry,
            lambda: self.previous,
            language=self.config.market.description_language,
            fallback_language=self.config.market.fallback_language,
        )

        self._running = True

        self._tasks.append(asyncio.create_task(self._poll_loop()))
        if telegram is not None and telegram in self.notifiers and telegram.config.commands:
            self._tasks.append(asyncio.create_task(telegram.poll_commands(self.commands)))

        logger.info(
            "Market Watcher started: %d package(s), %d receiver(s)",
            len(self.previous),
            len(self.registry.receivers),
        )

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Watcher tasks cancelled")

    async def stop(self) -> None:
        """Stop the market watcher gracefully."""
        logger.info("Stopping Market Watcher")
        self._running = False

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.fetcher:
            await self.fetcher.close()
        if self.storage:
            await self.storage.close()
        for notifier in self.notifiers:
            await notifier.close()

        logger.info("Market Watcher stopped")

    async def _poll_loop(self) -> None:
        """Run poll cycles until stopped, waiting the interval between cycles."""
        interval = self.config.market.interval / 1000

        while self._running:
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                raise

            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error polling market: %s", e)

    async def poll_once(self) -> DeliveryReport | None:
        """
        Run one poll cycle.

        Returns
        -------
        DeliveryReport | None
            Delivery outcome, or None when nothing had to be sent.

        Raises
        ------
        aiohttp.ClientError
            If the market could not be fetched; the previous snapshot is kept.
        """
        if not self.fetcher or not self.registry:
            raise RuntimeError("Components not initialized")

        market = self.config.market
        current = await self.fetcher.fetch(market.endpoint, market.show_hidden)

        changes = diff_snapshots(self.previous, current, market)
        self.previous = current

        if not changes:
            logger.debug("No market changes")
            return None

        plan = route(changes, self.registry.receivers)
        if not plan:
            logger.info("Detected %d market change(s), no interested receivers", len(changes))
            return None

        logger.info(
            "Detected %d market change(s), sending %d notification(s)",
            len(changes),
            len(plan),
        )

        report = await deliver(plan, self.notifiers, market.broadcast_delay / 1000)

        logger.info(
            "Delivered %d notification(s), %d failed, %d without notifier",
            report.sent,
            report.failed,
            report.unroutable,
        )
        return report


def setup_logging(verbose: bool = False) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    verbose : bool
        If True, set log level to DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO

    coloredlogs.install(
        level=level,
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    for name in ("httpx", "httpcore", "telegram", "aiohttp", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Plugin market watcher with chat notifications",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    setup_logging(args.verbose)

    config_path = Path(args.config)
    if not config_path.exists():
        logger.error("Configuration file not found: %s", config_path)
        sys.exit(1)

    watcher = MarketWatcher(config_path)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(watcher.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        loop.run_until_complete(watcher.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        loop.run_until_complete(watcher.stop())
        loop.close()


if __name__ == "__main__":
    main()
