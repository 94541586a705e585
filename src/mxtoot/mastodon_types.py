"""Mastodon API entities (statuses, accounts, notifications).

Only the fields the bridge renders are kept. Every entity is built from the
already-decoded JSON object returned by the REST or streaming API.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Account:
    """A Mastodon account."""
    id: str = ""
    username: str = ""
    acct: str = ""
    display_name: str = ""
    locked: bool = False
    created_at: str = ""
    followers_count: int = 0
    following_count: int = 0
    statuses_count: int = 0
    note: str = ""
    url: str = ""
    avatar: str = ""
    header: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Account":
        """Parse account from dictionary."""
        return cls(
            id=str(data.get("id", "")),
            username=data.get("username", ""),
            acct=data.get("acct", ""),
            display_name=data.get("display_name", ""),
            locked=bool(data.get("locked", False)),
            created_at=data.get("created_at", ""),
            followers_count=data.get("followers_count", 0),
            following_count=data.get("following_count", 0),
            statuses_count=data.get("statuses_count", 0),
            note=data.get("note", ""),
            url=data.get("url", ""),
            avatar=data.get("avatar", ""),
            header=data.get("header", ""),
        )


@dataclass
class Emoji:
    """A custom emoji."""
    shortcode: str = ""
    static_url: str = ""
    url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Emoji":
        """Parse emoji from dictionary."""
        return cls(
            shortcode=data.get("shortcode", ""),
            static_url=data.get("static_url", ""),
            url=data.get("url", ""),
        )


@dataclass
class Attachment:
    """A media attachment."""
    id: str = ""
    type: str = ""
    url: str = ""
    remote_url: str | None = None
    preview_url: str = ""
    text_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        """Parse attachment from dictionary."""
        return cls(
            id=str(data.get("id", "")),
            type=data.get("type", ""),
            url=data.get("url", ""),
            remote_url=data.get("remote_url"),
            preview_url=data.get("preview_url", ""),
            text_url=data.get("text_url"),
        )


@dataclass
class Mention:
    """A mentioned account."""
    id: str = ""
    username: str = ""
    acct: str = ""
    url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Mention":
        """Parse mention from dictionary."""
        return cls(
            id=str(data.get("id", "")),
            username=data.get("username", ""),
            acct=data.get("acct", ""),
            url=data.get("url", ""),
        )


@dataclass
class Tag:
    """A hashtag."""
    name: str = ""
    url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tag":
        """Parse tag from dictionary."""
        return cls(name=data.get("name", ""), url=data.get("url", ""))


@dataclass
class Application:
    """The application a status was posted with."""
    name: str = ""
    website: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Application":
        """Parse application from dictionary."""
        return cls(name=data.get("name", ""), website=data.get("website"))


def _parse_list(items: list[Any] | None, parser) -> list[Any]:
    """Parse a list of entities, keeping null entries as None."""
    return [parser(item) if item is not None else None for item in items or []]


@dataclass
class Status:
    """A status (toot).

    A boost wraps the boosted status in ``reblog``.
    """
    id: str = ""
    uri: str = ""
    url: str | None = None
    account: Account = field(default_factory=Account)
    in_reply_to_id: str | None = None
    in_reply_to_account_id: str | None = None
    reblog: "Status | None" = None
    content: str = ""
    created_at: str = ""
    emojis: list[Emoji | None] = field(default_factory=list)
    reblogs_count: int = 0
    favourites_count: int = 0
    reblogged: bool = False
    favourited: bool = False
    sensitive: bool = False
    spoiler_text: str = ""
    visibility: str = "public"
    media_attachments: list[Attachment | None] = field(default_factory=list)
    mentions: list[Mention | None] = field(default_factory=list)
    tags: list[Tag | None] = field(default_factory=list)
    application: Application | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Status":
        """Parse status from dictionary."""
        reblog = data.get("reblog")
        application = data.get("application")
        in_reply_to_id = data.get("in_reply_to_id")
        in_reply_to_account_id = data.get("in_reply_to_account_id")
        return cls(
            id=str(data.get("id", "")),
            uri=data.get("uri", ""),
            url=data.get("url"),
            account=Account.from_dict(data.get("account") or {}),
            in_reply_to_id=str(in_reply_to_id) if in_reply_to_id is not None else None,
            in_reply_to_account_id=(
                str(in_reply_to_account_id) if in_reply_to_account_id is not None else None
            ),
            reblog=cls.from_dict(reblog) if reblog else None,
            content=data.get("content", ""),
            created_at=data.get("created_at", ""),
            emojis=_parse_list(data.get("emojis"), Emoji.from_dict),
            reblogs_count=data.get("reblogs_count", 0),
            favourites_count=data.get("favourites_count", 0),
            reblogged=bool(data.get("reblogged", False)),
            favourited=bool(data.get("favourited", False)),
            sensitive=bool(data.get("sensitive", False)),
            spoiler_text=data.get("spoiler_text", ""),
            visibility=data.get("visibility", "public"),
            media_attachments=_parse_list(data.get("media_attachments"), Attachment.from_dict),
            mentions=_parse_list(data.get("mentions"), Mention.from_dict),
            tags=_parse_list(data.get("tags"), Tag.from_dict),
            application=Application.from_dict(application) if application else None,
        )


@dataclass
class Notification:
    """A notification (mention, reblog, favourite, follow, ...)."""
    id: str = ""
    type: str = ""
    created_at: str = ""
    account: Account = field(default_factory=Account)
    status: Status | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        """Parse notification from dictionary."""
        status = data.get("status")
        return cls(
            id=str(data.get("id", "")),
            type=data.get("type", ""),
            created_at=data.get("created_at", ""),
            account=Account.from_dict(data.get("account") or {}),
            status=Status.from_dict(status) if status else None,
        )
