"""Tests for event classification and rendering."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from mxtoot.events import EventKind, FeedEvent, classify_notification, classify_status
from mxtoot.formatting import DateTimeFormatter
from mxtoot.mastodon_client import MastodonApiError
from mxtoot.mastodon_types import Application, Emoji, Notification, Status, Tag
from mxtoot.renderer import RENDER_FAILURE_MESSAGE, EventRenderer
from mxtoot.templates import TemplateCache, TemplateKind


def make_renderer(account_config, mastodon_client, **overrides) -> EventRenderer:
    config = account_config.model_copy(update=overrides) if overrides else account_config
    return EventRenderer(
        config,
        TemplateCache(config),
        DateTimeFormatter.from_config(config),
        mastodon_client,
    )


class TestClassifyStatus:
    """Tests for status classification precedence."""

    def test_plain_status_is_post(self, sample_status):
        assert classify_status(sample_status).kind is EventKind.POST

    def test_reply(self, sample_status):
        sample_status.in_reply_to_id = "100"
        assert classify_status(sample_status).kind is EventKind.REPLY

    def test_boost_wins_over_reply(self, sample_status, sample_account):
        inner = Status(id="150", account=sample_account, in_reply_to_id="100")
        sample_status.reblog = inner
        sample_status.in_reply_to_id = "100"

        event = classify_status(sample_status)

        assert event.kind is EventKind.BOOST
        assert event.template_kind is TemplateKind.BOOST


class TestClassifyNotification:
    """Tests for notification classification."""

    @pytest.mark.parametrize("raw_type,kind", [
        ("mention", EventKind.MENTION),
        ("reblog", EventKind.REBLOG),
        ("favourite", EventKind.FAVOURITE),
        ("follow", EventKind.FOLLOW),
    ])
    def test_known_types(self, sample_notification, raw_type, kind):
        sample_notification.type = raw_type
        event = classify_notification(sample_notification)
        assert event.kind is kind
        assert event.raw_type is None

    def test_reblog_uses_boost_template(self, sample_notification):
        sample_notification.type = "reblog"
        assert classify_notification(sample_notification).template_kind is TemplateKind.BOOST

    def test_unknown_type_keeps_raw_type(self, sample_notification):
        sample_notification.type = "poll"
        event = classify_notification(sample_notification)
        assert event.kind is EventKind.UNKNOWN
        assert event.raw_type == "poll"
        assert event.template_kind is None


class TestEventRendererStatus:
    """Tests for rendering statuses."""

    @pytest.mark.asyncio
    async def test_post_template(self, account_config, mock_mastodon_client, sample_status):
        renderer = make_renderer(account_config, mock_mastodon_client)

        text = await renderer.render(classify_status(sample_status))

        assert text == "POST alice: <p>Hello Matrix</p> @ 2024-03-05 14:30"

    @pytest.mark.asyncio
    async def test_boost_of_reply_uses_boost_template(
        self, account_config, mock_mastodon_client, sample_status
    ):
        inner = Status(
            id="150",
            account=sample_status.account.__class__(id="3", acct="carol"),
            in_reply_to_id="100",
            created_at="2024-03-05T10:00:00Z",
        )
        sample_status.reblog = inner

        text = await make_renderer(account_config, mock_mastodon_client).render(
            classify_status(sample_status)
        )

        assert text == "BOOST alice <- carol"

    @pytest.mark.asyncio
    async def test_reply_template(self, account_config, mock_mastodon_client, sample_status):
        sample_status.in_reply_to_id = "100"
        text = await make_renderer(account_config, mock_mastodon_client).render(
            classify_status(sample_status)
        )
        assert text.startswith("REPLY alice:")
        mock_mastodon_client.get_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_field_renders_empty(
        self, account_config, mock_mastodon_client, sample_status
    ):
        renderer = make_renderer(
            account_config, mock_mastodon_client, post_format="[{{spoiler_text}}]{{nothing.here}}"
        )
        assert await renderer.render(classify_status(sample_status)) == "[]"

    @pytest.mark.asyncio
    async def test_template_failure_yields_diagnostic(
        self, account_config, mock_mastodon_client, sample_status
    ):
        sample_status.created_at = "not a timestamp"
        renderer = make_renderer(account_config, mock_mastodon_client)

        assert await renderer.render(classify_status(sample_status)) == RENDER_FAILURE_MESSAGE


class TestEventRendererEnrichment:
    """Tests for fetching missing parent content."""

    @pytest.mark.asyncio
    async def test_fetches_parent_status_and_account(
        self, account_config, mock_mastodon_client, sample_status
    ):
        sample_status.in_reply_to_id = "100"
        sample_status.in_reply_to_account_id = "2"
        renderer = make_renderer(account_config, mock_mastodon_client, fetch_missing_statuses=True)

        context = await renderer.status_context(sample_status)

        mock_mastodon_client.get_status.assert_awaited_once_with("100")
        mock_mastodon_client.get_account.assert_awaited_once_with("2")
        assert context["in_reply_to"]["content"] == "<p>parent</p>"
        assert context["in_reply_to_account"]["display_name"] == "Bob"

    @pytest.mark.asyncio
    async def test_fetch_failure_omits_field(
        self, account_config, mock_mastodon_client, sample_status
    ):
        sample_status.in_reply_to_id = "100"
        sample_status.in_reply_to_account_id = "2"
        mock_mastodon_client.get_status = AsyncMock(
            side_effect=MastodonApiError(404, "Record not found")
        )
        renderer = make_renderer(account_config, mock_mastodon_client, fetch_missing_statuses=True)

        context = await renderer.status_context(sample_status)

        assert "in_reply_to" not in context
        assert "in_reply_to_account" in context

    @pytest.mark.asyncio
    async def test_undecodable_parent_omits_field_only(
        self, account_config, mock_mastodon_client, sample_status
    ):
        """A parent that cannot be decoded drops that field, not the message."""
        sample_status.in_reply_to_id = "100"
        mock_mastodon_client.get_status = AsyncMock(
            side_effect=json.JSONDecodeError("Expecting value", "<html>", 0)
        )
        renderer = make_renderer(account_config, mock_mastodon_client, fetch_missing_statuses=True)

        text = await renderer.render(classify_status(sample_status))

        assert text == "REPLY alice: <p>Hello Matrix</p>"

    @pytest.mark.asyncio
    async def test_fetch_timeout_omits_field(
        self, account_config, mock_mastodon_client, sample_status
    ):
        async def slow_lookup(status_id):
            await asyncio.sleep(1)

        sample_status.in_reply_to_id = "100"
        mock_mastodon_client.get_status = AsyncMock(side_effect=slow_lookup)
        renderer = make_renderer(
            account_config,
            mock_mastodon_client,
            fetch_missing_statuses=True,
            fetch_timeout_seconds=0.01,
        )

        context = await renderer.status_context(sample_status)

        assert "in_reply_to" not in context

    @pytest.mark.asyncio
    async def test_reply_still_rendered_when_fetch_fails(
        self, account_config, mock_mastodon_client, sample_status
    ):
        sample_status.in_reply_to_id = "100"
        mock_mastodon_client.get_status = AsyncMock(side_effect=MastodonApiError(500, "boom"))
        renderer = make_renderer(account_config, mock_mastodon_client, fetch_missing_statuses=True)

        text = await renderer.render(classify_status(sample_status))

        assert text == "REPLY alice: <p>Hello Matrix</p>"


class TestStatusToMap:
    """Tests for status flattening."""

    def test_fields(self, account_config, mock_mastodon_client, sample_status):
        sample_status.emojis = [Emoji(shortcode="blob"), None]
        sample_status.tags = [None, Tag(name="matrix", url="https://mastodon.example/tags/matrix")]
        sample_status.application = Application(name="Web", website=None)
        renderer = make_renderer(account_config, mock_mastodon_client)

        context = renderer.status_to_map(sample_status, expand_reblog=True)

        assert context["id"] == "200"
        assert context["account"]["acct"] == "alice"
        assert context["created_at"] == "2024-03-05 14:30"
        assert context["emojis"] == [{"shortcode": "blob", "static_url": "", "url": ""}]
        assert [t["name"] for t in context["tags"]] == ["matrix"]
        assert context["application"] == {"name": "Web", "website": None}
        assert "reblog" not in context

    def test_missing_application_is_empty_mapping(
        self, account_config, mock_mastodon_client, sample_status
    ):
        renderer = make_renderer(account_config, mock_mastodon_client)
        assert renderer.status_to_map(sample_status, expand_reblog=True)["application"] == {}

    def test_reblog_expanded_one_level_only(
        self, account_config, mock_mastodon_client, sample_status, sample_account
    ):
        innermost = Status(id="1", account=sample_account, created_at="2024-01-01T00:00:00Z")
        inner = Status(
            id="2", account=sample_account, created_at="2024-01-01T00:00:00Z", reblog=innermost
        )
        sample_status.reblog = inner
        renderer = make_renderer(account_config, mock_mastodon_client)

        context = renderer.status_to_map(sample_status, expand_reblog=True)

        assert context["reblog"]["id"] == "2"
        assert "reblog" not in context["reblog"]


class TestEventRendererNotification:
    """Tests for rendering notifications."""

    @pytest.mark.asyncio
    async def test_mention(self, account_config, mock_mastodon_client, sample_notification):
        text = await make_renderer(account_config, mock_mastodon_client).render(
            classify_notification(sample_notification)
        )
        assert text == "MENTION alice: <p>Hello Matrix</p>"

    @pytest.mark.asyncio
    async def test_follow_keeps_raw_timestamp(
        self, account_config, mock_mastodon_client, sample_notification
    ):
        sample_notification.type = "follow"
        sample_notification.status = None

        text = await make_renderer(account_config, mock_mastodon_client).render(
            classify_notification(sample_notification)
        )

        assert text == "FOLLOW alice at 2024-03-05T14:31:00.000Z"

    def test_context_without_status(self, account_config, mock_mastodon_client, sample_account):
        notification = Notification(id="9", type="follow", created_at="x", account=sample_account)
        context = make_renderer(account_config, mock_mastodon_client).notification_context(
            notification
        )
        assert "status" not in context
        assert context["type"] == "follow"

    @pytest.mark.asyncio
    async def test_unknown_notification_line(self, account_config, mock_mastodon_client):
        notification = Notification(id="42", type="poll", created_at="2024-03-05T14:31:00.000Z")

        text = await make_renderer(account_config, mock_mastodon_client).render(
            classify_notification(notification)
        )

        assert text == "Unknown notification: poll at [2024-03-05T14:31:00.000Z]: 42"

    @pytest.mark.asyncio
    async def test_unknown_event_never_uses_template(self, account_config, mock_mastodon_client):
        renderer = make_renderer(account_config, mock_mastodon_client)
        event = FeedEvent(
            kind=EventKind.UNKNOWN,
            notification=Notification(id="1", type="weird"),
            raw_type="weird",
        )

        assert (await renderer.render(event)).startswith("Unknown notification: weird")
        assert len(renderer.templates) == 0
