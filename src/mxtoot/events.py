"""Classification of stream events into a closed set of kinds.

Classification happens once, when an event enters the bot; everything
downstream works with ``FeedEvent.kind`` instead of raw type strings.
"""

from dataclasses import dataclass
from enum import Enum

from .mastodon_types import Notification, Status
from .templates import TemplateKind


class EventKind(str, Enum):
    """Kinds of stream event the bridge relays."""
    POST = "post"
    REPLY = "reply"
    BOOST = "boost"
    MENTION = "mention"
    REBLOG = "reblog"
    FAVOURITE = "favourite"
    FOLLOW = "follow"
    UNKNOWN = "unknown"


# Template used for each kind (UNKNOWN has none)
EVENT_TEMPLATES = {
    EventKind.POST: TemplateKind.POST,
    EventKind.REPLY: TemplateKind.REPLY,
    EventKind.BOOST: TemplateKind.BOOST,
    EventKind.MENTION: TemplateKind.MENTION,
    EventKind.REBLOG: TemplateKind.BOOST,
    EventKind.FAVOURITE: TemplateKind.FAVOURITE,
    EventKind.FOLLOW: TemplateKind.FOLLOW,
}

NOTIFICATION_KINDS = {
    "mention": EventKind.MENTION,
    "reblog": EventKind.REBLOG,
    "favourite": EventKind.FAVOURITE,
    "follow": EventKind.FOLLOW,
}


@dataclass
class FeedEvent:
    """A classified stream event.

    Status kinds carry ``status``; notification kinds carry ``notification``.
    ``raw_type`` keeps the notification type string for UNKNOWN.
    """
    kind: EventKind
    status: Status | None = None
    notification: Notification | None = None
    raw_type: str | None = None

    @property
    def is_status(self) -> bool:
        return self.status is not None and self.notification is None

    @property
    def template_kind(self) -> TemplateKind | None:
        return EVENT_TEMPLATES.get(self.kind)


def classify_status(status: Status) -> FeedEvent:
    """Classify a status: boost, then reply, then post."""
    if status.reblog is not None:
        kind = EventKind.BOOST
    elif status.in_reply_to_id is not None:
        kind = EventKind.REPLY
    else:
        kind = EventKind.POST
    return FeedEvent(kind=kind, status=status)


def classify_notification(notification: Notification) -> FeedEvent:
    """Classify a notification by its type string."""
    kind = NOTIFICATION_KINDS.get(notification.type, EventKind.UNKNOWN)
    return FeedEvent(
        kind=kind,
        notification=notification,
        raw_type=notification.type if kind is EventKind.UNKNOWN else None,
    )
