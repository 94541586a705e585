"""Delivery of rendered messages into the bot's Matrix rooms."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from sqlalchemy.exc import SQLAlchemyError

from .formatting import html_to_text
from .matrix_client import MatrixClient
from .store import PersistenceStore

logger = structlog.get_logger()


@dataclass
class DeliveryReport:
    """Outcome of one delivery."""
    rooms: list[str] = field(default_factory=list)
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and not self.failed


class DeliveryService:
    """Writes text into every room the bot has joined."""

    def __init__(self, account_id: str, matrix_client: MatrixClient, store: PersistenceStore):
        self.account_id = account_id
        self.matrix = matrix_client
        self.store = store

    async def deliver(self, text: str) -> DeliveryReport:
        """Send ``text`` as a formatted notice to all joined rooms. Never raises."""
        plain = html_to_text(text)
        return await self._fan_out(
            lambda room_id: self.matrix.send_formatted_notice(room_id, plain, text)
        )

    async def notify(self, text: str) -> DeliveryReport:
        """Send a plain-text notice to all joined rooms. Never raises."""
        return await self._fan_out(lambda room_id: self.matrix.send_notice(room_id, text))

    async def _fan_out(self, send) -> DeliveryReport:
        report = DeliveryReport()
        try:
            report.rooms = await self.matrix.joined_rooms()
        except Exception as e:
            report.error = str(e)
            logger.error(
                "Failed to list joined rooms",
                account_id=self.account_id,
                error=str(e),
            )

        for room_id in report.rooms:
            try:
                await send(room_id)
                report.delivered.append(room_id)
            except Exception as e:
                report.failed[room_id] = str(e)
                logger.error(
                    "Failed to write a message",
                    account_id=self.account_id,
                    room_id=room_id,
                    error=str(e),
                )

        await self._record(report)
        return report

    async def _record(self, report: DeliveryReport) -> None:
        """Add the outcome to the account's counters."""
        try:
            async with self.store.unit_of_work(self.account_id) as uow:
                state = await uow.state()
                state.delivered_count += len(report.delivered)
                state.failed_count += len(report.failed)
                if report.delivered:
                    state.last_delivery_at = datetime.now(timezone.utc)
                if report.error or report.failed:
                    state.last_error = report.error or next(iter(report.failed.values()))
        except SQLAlchemyError as e:
            logger.error(
                "Failed to record delivery",
                account_id=self.account_id,
                error=str(e),
            )
