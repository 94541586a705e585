"""Consumer of one account's Mastodon user stream."""

import asyncio
from enum import Enum

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

from .delivery import DeliveryService
from .events import FeedEvent, classify_notification, classify_status
from .mastodon_client import MastodonApiError, MastodonClient, StreamSubscription
from .mastodon_types import Notification, Status
from .renderer import EventRenderer
from .store import PersistenceStore

logger = structlog.get_logger()

STREAM_FAILURE_NOTICE = "Streaming failed: {message}"


class IngestorState(str, Enum):
    """Lifecycle states of a stream ingestor."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class StreamIngestor:
    """Owns the live user stream of one bot.

    Events are rendered and delivered one at a time, in stream order. After a
    stream error the ingestor stays stopped until ``start()`` is called again.
    """

    def __init__(
        self,
        account_id: str,
        mastodon_client: MastodonClient,
        renderer: EventRenderer,
        delivery: DeliveryService,
        store: PersistenceStore,
    ):
        self.account_id = account_id
        self.mastodon = mastodon_client
        self.renderer = renderer
        self.delivery = delivery
        self.store = store
        self.state = IngestorState.STOPPED
        self._subscription: StreamSubscription | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self.state is IngestorState.RUNNING

    async def start(self) -> bool:
        """Open the user stream unless it is already running.

        Returns:
            True if streaming, False if the stream could not be opened
        """
        async with self._lock:
            if self.state is IngestorState.RUNNING:
                return True

            self._cancel_subscription()
            self.state = IngestorState.STARTING
            try:
                self._subscription = await self.mastodon.open_user_stream(self)
            except (MastodonApiError, httpx.HTTPError) as e:
                self.state = IngestorState.STOPPED
                logger.error("Failed streaming", account_id=self.account_id, error=str(e))
                return False
            except Exception as e:
                self.state = IngestorState.STOPPED
                logger.error(
                    "Failed streaming",
                    account_id=self.account_id,
                    error=str(e),
                    exc_info=True,
                )
                return False

            self.state = IngestorState.RUNNING
            logger.info("Streaming started", account_id=self.account_id)

        await self._persist_running(True)
        return True

    async def stop(self) -> None:
        """Close the user stream. Safe to call at any time."""
        async with self._lock:
            was_running = self.state is IngestorState.RUNNING
            self._cancel_subscription()
            self.state = IngestorState.STOPPED
        if was_running:
            logger.info("Streaming stopped", account_id=self.account_id)
            await self._persist_running(False)

    def _cancel_subscription(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    async def _persist_running(self, running: bool) -> None:
        try:
            await self.store.set_running(self.account_id, running)
        except SQLAlchemyError as e:
            logger.error("Failed to persist bot state", account_id=self.account_id, error=str(e))

    # === Stream listener ===

    async def on_status(self, status: Status) -> None:
        await self._relay(classify_status(status))

    async def on_notification(self, notification: Notification) -> None:
        await self._relay(classify_notification(notification))

    async def on_delete(self, status_id: str) -> None:
        logger.debug("Ignoring deleted status", account_id=self.account_id, status_id=status_id)

    async def on_stream_error(self, message: str) -> None:
        """The stream broke: fall back to STOPPED and tell the rooms."""
        self._subscription = None
        self.state = IngestorState.STOPPED
        logger.error("Stream error", account_id=self.account_id, error=message)
        await self.delivery.notify(STREAM_FAILURE_NOTICE.format(message=message))
        await self._persist_running(False)

    async def _relay(self, event: FeedEvent) -> None:
        text = await self.renderer.render(event)
        report = await self.delivery.deliver(text)
        logger.debug(
            "Relayed event",
            account_id=self.account_id,
            kind=event.kind.value,
            delivered=len(report.delivered),
            failed=len(report.failed),
        )
