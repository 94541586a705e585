"""Supervision of all configured bots."""

import asyncio
from typing import Callable

import structlog

from .bot import BotInstance, build_bot
from .config import AccountConfig, BridgeConfig, ConfigurationError, parse_account
from .mastodon_client import MastodonClient
from .matrix_client import MatrixClient
from .store import PersistenceStore

logger = structlog.get_logger()

MastodonFactory = Callable[[AccountConfig], MastodonClient]
MatrixFactory = Callable[[AccountConfig], MatrixClient]


class UnknownBotError(KeyError):
    """No bot is configured under the requested account id."""


def default_mastodon_factory(account: AccountConfig) -> MastodonClient:
    return MastodonClient(
        base_url=account.mastodon_url,
        access_token=account.mastodon_access_token,
    )


class BotRegistry:
    """Builds, starts and stops one bot per configured account.

    A failure of one bot (configuration, start or stop) is logged with its
    account id and never affects the others.
    """

    def __init__(
        self,
        config: BridgeConfig,
        store: PersistenceStore,
        mastodon_factory: MastodonFactory = default_mastodon_factory,
        matrix_factory: MatrixFactory | None = None,
    ):
        """Initialize registry and build every bot.

        Args:
            config: Bridge configuration
            store: Persistence store shared by all bots
            mastodon_factory: Builds the Mastodon client of an account
            matrix_factory: Builds the Matrix client of an account; defaults to
                the homeserver of ``config.matrix`` with the AS token
        """
        self.config = config
        self.store = store
        self.mastodon_factory = mastodon_factory
        self.matrix_factory = matrix_factory or self._default_matrix_factory
        self.bots: dict[str, BotInstance] = {}
        self.failed: dict[str, str] = {}

        for position, raw in enumerate(config.accounts):
            try:
                account = parse_account(raw, position)
                self.bots[account.account_id] = build_bot(
                    account,
                    self.mastodon_factory(account),
                    self.matrix_factory(account),
                    store,
                )
            except ConfigurationError as e:
                self.failed[e.account_id] = e.message
                logger.error(
                    "Invalid bot configuration",
                    account_id=e.account_id,
                    error=e.message,
                )

    def _default_matrix_factory(self, account: AccountConfig) -> MatrixClient:
        return MatrixClient(
            homeserver_url=self.config.matrix.homeserver_url,
            access_token=self.config.matrix.as_token,
            user_id=account.matrix_user_id,
        )

    def bot(self, account_id: str) -> BotInstance:
        """Get a bot by account id.

        Raises:
            UnknownBotError: If no such bot exists
        """
        try:
            return self.bots[account_id]
        except KeyError:
            raise UnknownBotError(account_id) from None

    def bot_for_user(self, user_id: str) -> BotInstance | None:
        """Find the bot acting as a Matrix user."""
        for bot in self.bots.values():
            if bot.config.matrix_user_id == user_id:
                return bot
        return None

    def bots_in_room(self, room_id: str) -> list[BotInstance]:
        """Bots that accept commands in a room."""
        return [bot for bot in self.bots.values() if room_id in bot.config.rooms]

    def is_bot_user(self, user_id: str) -> bool:
        return self.bot_for_user(user_id) is not None

    async def _start_bot(self, bot: BotInstance) -> bool:
        try:
            started = await bot.ingestor.start()
        except Exception as e:
            logger.error("Failed to start bot", account_id=bot.account_id, error=str(e), exc_info=True)
            return False
        if not started:
            logger.error("Bot did not start", account_id=bot.account_id)
        return started

    async def _stop_bot(self, bot: BotInstance) -> None:
        try:
            await bot.ingestor.stop()
        except Exception as e:
            logger.error("Failed to stop bot", account_id=bot.account_id, error=str(e), exc_info=True)

    async def start_all(self) -> dict[str, bool]:
        """Start every bot concurrently.

        Returns:
            Mapping of account id to whether its stream started
        """
        bots = list(self.bots.values())
        results = await asyncio.gather(*(self._start_bot(bot) for bot in bots))
        started = {bot.account_id: ok for bot, ok in zip(bots, results)}
        logger.info(
            "Bots started",
            started=sum(1 for ok in started.values() if ok),
            total=len(started),
            misconfigured=len(self.failed),
        )
        return started

    async def stop_all(self) -> None:
        """Stop every bot concurrently, continuing past failures."""
        await asyncio.gather(*(self._stop_bot(bot) for bot in self.bots.values()))
        logger.info("Bots stopped", total=len(self.bots))

    async def restart(self, account_id: str) -> bool:
        """Reopen a bot's stream, e.g. after a stream error.

        Raises:
            UnknownBotError: If no such bot exists
        """
        return await self._start_bot(self.bot(account_id))

    async def close(self) -> None:
        """Close all bots' HTTP clients."""
        for bot in self.bots.values():
            await bot.close()

    async def __aenter__(self) -> "BotRegistry":
        await self.start_all()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop_all()
        await self.close()
