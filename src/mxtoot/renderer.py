"""Rendering of Mastodon events into Matrix message text."""

import asyncio
from typing import Any

import httpx
import structlog

from .config import AccountConfig
from .events import EventKind, FeedEvent
from .formatting import DateTimeFormatter
from .mastodon_client import MastodonApiError, MastodonClient
from .mastodon_types import (
    Account,
    Application,
    Attachment,
    Emoji,
    Mention,
    Notification,
    Status,
    Tag,
)
from .templates import TemplateCache, render_template

logger = structlog.get_logger()

RENDER_FAILURE_MESSAGE = "Cannot create a post"


def _blank_none(value: Any) -> Any:
    """Replace None with the empty string, recursively."""
    if value is None:
        return ""
    if isinstance(value, dict):
        return {key: _blank_none(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_blank_none(item) for item in value]
    return value


def unknown_notification_line(notification: Notification) -> str:
    """Diagnostic line for a notification type the bridge has no template for."""
    return (
        f"Unknown notification: {notification.type} "
        f"at [{notification.created_at}]: {notification.id}"
    )


def account_to_map(account: Account) -> dict[str, Any]:
    return {
        "id": account.id,
        "username": account.username,
        "acct": account.acct,
        "display_name": account.display_name,
        "locked": account.locked,
        "created_at": account.created_at,
        "followers_count": account.followers_count,
        "following_count": account.following_count,
        "statuses_count": account.statuses_count,
        "note": account.note,
        "url": account.url,
        "avatar": account.avatar,
        "header": account.header,
    }


def emoji_to_map(emoji: Emoji) -> dict[str, Any]:
    return {"shortcode": emoji.shortcode, "static_url": emoji.static_url, "url": emoji.url}


def attachment_to_map(attachment: Attachment) -> dict[str, Any]:
    return {
        "id": attachment.id,
        "type": attachment.type,
        "url": attachment.url,
        "remote_url": attachment.remote_url,
        "preview_url": attachment.preview_url,
        "text_url": attachment.text_url,
    }


def mention_to_map(mention: Mention) -> dict[str, Any]:
    return {"id": mention.id, "username": mention.username, "acct": mention.acct, "url": mention.url}


def tag_to_map(tag: Tag) -> dict[str, Any]:
    return {"name": tag.name, "url": tag.url}


def application_to_map(application: Application | None) -> dict[str, Any]:
    if application is None:
        return {}
    return {"name": application.name, "website": application.website}


class EventRenderer:
    """Turns classified events into message text through the account's templates."""

    def __init__(
        self,
        config: AccountConfig,
        templates: TemplateCache,
        formatter: DateTimeFormatter,
        mastodon_client: MastodonClient,
    ):
        """Initialize renderer.

        Args:
            config: Account configuration
            templates: The account's template cache
            formatter: The account's timestamp formatter
            mastodon_client: Client used to fetch missing parent content
        """
        self.config = config
        self.templates = templates
        self.formatter = formatter
        self.mastodon = mastodon_client

    async def render(self, event: FeedEvent) -> str:
        """Render an event. Never raises.

        Returns:
            Message text, the unknown-notification line, or
            RENDER_FAILURE_MESSAGE if rendering failed
        """
        if event.kind is EventKind.UNKNOWN:
            return unknown_notification_line(event.notification)

        try:
            template = self.templates.template_for(event.template_kind)
            if event.is_status:
                context = await self.status_context(event.status)
            else:
                context = self.notification_context(event.notification)
            return render_template(template, _blank_none(context))
        except Exception as e:
            logger.error(
                "Failed to render event",
                account_id=self.config.account_id,
                kind=event.kind.value,
                error=str(e),
                exc_info=True,
            )
            return RENDER_FAILURE_MESSAGE

    async def status_context(self, status: Status) -> dict[str, Any]:
        """Build the template context of a status, with optional enrichment."""
        context = self.status_to_map(status, expand_reblog=True)
        if not self.config.fetch_missing_statuses:
            return context

        if status.in_reply_to_id is not None:
            parent = await self._fetch(self.mastodon.get_status, status.in_reply_to_id, "status")
            if parent is not None:
                context["in_reply_to"] = self.status_to_map(parent, expand_reblog=False)

        if status.in_reply_to_account_id is not None:
            account = await self._fetch(
                self.mastodon.get_account, status.in_reply_to_account_id, "account"
            )
            if account is not None:
                context["in_reply_to_account"] = account_to_map(account)

        return context

    async def _fetch(self, lookup, entity_id: str, entity: str):
        """Run a timeboxed lookup; return None on any failure."""
        try:
            return await asyncio.wait_for(lookup(entity_id), self.config.fetch_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Timed out fetching missing content",
                account_id=self.config.account_id,
                entity=entity,
                entity_id=entity_id,
            )
        except (MastodonApiError, httpx.HTTPError) as e:
            logger.error(
                "Cannot fetch missing content",
                account_id=self.config.account_id,
                entity=entity,
                entity_id=entity_id,
                error=str(e),
            )
        except Exception as e:
            logger.error(
                "Cannot parse missing content",
                account_id=self.config.account_id,
                entity=entity,
                entity_id=entity_id,
                error=str(e),
                exc_info=True,
            )
        return None

    def notification_context(self, notification: Notification) -> dict[str, Any]:
        """Build the template context of a notification."""
        context: dict[str, Any] = {
            "id": notification.id,
            "created_at": notification.created_at,
            "account": account_to_map(notification.account),
            "type": notification.type,
        }
        if notification.status is not None:
            context["status"] = self.status_to_map(notification.status, expand_reblog=True)
        return context

    def status_to_map(self, status: Status, expand_reblog: bool) -> dict[str, Any]:
        """Flatten a status. Only one level of reblog is expanded."""
        context: dict[str, Any] = {
            "id": status.id,
            "uri": status.uri,
            "url": status.url,
            "account": account_to_map(status.account),
            "in_reply_to_id": status.in_reply_to_id,
            "in_reply_to_account_id": status.in_reply_to_account_id,
            "content": status.content,
            "created_at": self.formatter.format(status.created_at),
            "emojis": [emoji_to_map(e) for e in status.emojis if e is not None],
            "reblogs_count": status.reblogs_count,
            "favourites_count": status.favourites_count,
            "reblogged": status.reblogged,
            "favourited": status.favourited,
            "sensitive": status.sensitive,
            "spoiler_text": status.spoiler_text,
            "visibility": status.visibility,
            "media_attachments": [
                attachment_to_map(a) for a in status.media_attachments if a is not None
            ],
            "mentions": [mention_to_map(m) for m in status.mentions if m is not None],
            "tags": [tag_to_map(t) for t in status.tags if t is not None],
            "application": application_to_map(status.application),
        }
        if expand_reblog and status.reblog is not None:
            context["reblog"] = self.status_to_map(status.reblog, expand_reblog=False)
        return context
