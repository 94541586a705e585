"""Dispatch of Matrix events received through the application service."""

from typing import Any

import structlog

from .bot import BotInstance
from .registry import BotRegistry

logger = structlog.get_logger()

HELP_TEXT = (
    "Commands:\n"
    "{prefix} start - start streaming from Mastodon\n"
    "{prefix} stop - stop streaming\n"
    "{prefix} status - show streaming status\n"
    "{prefix} help - show this help"
)


class CommandDispatcher:
    """Routes room events to the bots they concern.

    Invites for a bot user make that bot join the room. Messages starting
    with the command prefix control the bots configured for that room.
    """

    def __init__(self, registry: BotRegistry, prefix: str = "!toot"):
        self.registry = registry
        self.prefix = prefix

    async def dispatch_all(self, events: list[dict[str, Any]]) -> int:
        """Dispatch a transaction's events in order.

        Returns:
            Number of events handled
        """
        for event in events:
            await self.dispatch(event)
        return len(events)

    async def dispatch(self, event: dict[str, Any]) -> None:
        """Handle one event; errors are logged, not raised."""
        if not isinstance(event, dict):
            logger.warning("Ignoring malformed event", event_type=type(event).__name__)
            return
        event_type = event.get("type")
        try:
            if event_type == "m.room.member":
                await self._handle_member(event)
            elif event_type == "m.room.message":
                await self._handle_message(event)
        except Exception as e:
            logger.error(
                "Event dispatch failed",
                event_id=event.get("event_id"),
                type=event_type,
                error=str(e),
            )

    async def _handle_member(self, event: dict[str, Any]) -> None:
        content = event.get("content") or {}
        if content.get("membership") != "invite":
            return
        bot = self.registry.bot_for_user(event.get("state_key", ""))
        if bot is None:
            return
        await bot.matrix.join_room(event["room_id"])

    async def _handle_message(self, event: dict[str, Any]) -> None:
        if self.registry.is_bot_user(event.get("sender", "")):
            return
        body = ((event.get("content") or {}).get("body") or "").strip()
        if body != self.prefix and not body.startswith(self.prefix + " "):
            return

        args = body[len(self.prefix):].split()
        command = args[0].lower() if args else "help"
        room_id = event.get("room_id", "")

        for bot in self.registry.bots_in_room(room_id):
            reply = await self.execute(bot, command)
            await bot.matrix.send_notice(room_id, reply)

    async def execute(self, bot: BotInstance, command: str) -> str:
        """Run a command for a bot and return the reply text."""
        logger.info("Bot command", account_id=bot.account_id, command=command)
        if command == "start":
            if await self.registry.restart(bot.account_id):
                return "Streaming started"
            return "Failed to start streaming"
        if command == "stop":
            await bot.ingestor.stop()
            return "Streaming stopped"
        if command == "status":
            state = await self.registry.store.get_state(bot.account_id)
            delivered = state.delivered_count if state else 0
            failed = state.failed_count if state else 0
            return (
                f"Streaming: {bot.ingestor.state.value}, "
                f"delivered: {delivered}, failed: {failed}"
            )
        return HELP_TEXT.format(prefix=self.prefix)
