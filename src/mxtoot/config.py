"""Configuration for the mxtoot Mastodon -> Matrix bridge."""

from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_POST_FORMAT = (
    "<b>{{account.display_name}}</b> (@{{account.acct}}):<br>{{content}}"
    '<br><a href="{{url}}">{{created_at}}</a>'
)
DEFAULT_REPLY_FORMAT = (
    "<b>{{account.display_name}}</b> replied"
    "{{#in_reply_to_account}} to @{{acct}}{{/in_reply_to_account}}:<br>{{content}}"
    '<br><a href="{{url}}">{{created_at}}</a>'
)
DEFAULT_BOOST_FORMAT = (
    "<b>{{account.display_name}}</b> boosted "
    "{{#reblog}}<b>{{account.display_name}}</b>:<br>{{content}}"
    '<br><a href="{{url}}">{{created_at}}</a>{{/reblog}}'
    "{{#status}}your status:<br>{{content}}{{/status}}"
)
DEFAULT_MENTION_FORMAT = (
    "<b>{{account.display_name}}</b> mentioned you:<br>"
    "{{#status}}{{content}}<br><a href=\"{{url}}\">{{created_at}}</a>{{/status}}"
)
DEFAULT_FAVOURITE_FORMAT = (
    "<b>{{account.display_name}}</b> favourited your status:<br>"
    "{{#status}}{{content}}{{/status}}"
)
DEFAULT_FOLLOW_FORMAT = (
    '<b>{{account.display_name}}</b> (<a href="{{account.url}}">@{{account.acct}}</a>) '
    "followed you"
)


class ConfigurationError(Exception):
    """Invalid per-account configuration detected while building a bot."""

    def __init__(self, account_id: str, message: str):
        self.account_id = account_id
        self.message = message
        super().__init__(f"Account {account_id}: {message}")


class MatrixConfig(BaseSettings):
    """Matrix homeserver and application-service settings."""

    model_config = SettingsConfigDict(env_prefix="MATRIX_")

    homeserver_url: str = Field(
        default="http://localhost:8008",
        description="Matrix homeserver Client-Server API base URL"
    )
    as_token: str = Field(
        default="",
        description="Application-service token used to call the homeserver"
    )
    hs_token: str = Field(
        default="",
        description="Token the homeserver presents when pushing transactions"
    )
    host: str = Field(
        default="0.0.0.0",
        description="Host address for the application-service endpoint"
    )
    port: int = Field(
        default=9000,
        ge=1,
        le=65535,
        description="Port for the application-service endpoint"
    )
    command_prefix: str = Field(
        default="!toot",
        description="Prefix of bot commands typed in Matrix rooms"
    )


class DatabaseConfig(BaseSettings):
    """Database settings."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    url: str = Field(
        default="sqlite+aiosqlite:///mxtoot.db",
        description="SQLAlchemy database URL"
    )


class AccountConfig(BaseModel):
    """Settings of one bridged Mastodon account (one bot).

    Loaded once when the bot is built and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    account_id: str = Field(min_length=1, description="Unique bot identifier")
    mastodon_url: str = Field(description="Mastodon instance base URL")
    mastodon_access_token: str = Field(description="Mastodon OAuth access token")
    matrix_user_id: str = Field(description="Matrix user the bot acts as")
    rooms: list[str] = Field(
        default_factory=list,
        description="Rooms where the bot accepts commands"
    )

    post_format: str = DEFAULT_POST_FORMAT
    reply_format: str = DEFAULT_REPLY_FORMAT
    boost_format: str = DEFAULT_BOOST_FORMAT
    mention_format: str = DEFAULT_MENTION_FORMAT
    favourite_format: str = DEFAULT_FAVOURITE_FORMAT
    follow_format: str = DEFAULT_FOLLOW_FORMAT

    date_time_format: str = Field(
        default="dd.MM.yyyy HH:mm:ss",
        description="LDML date/time pattern for status timestamps"
    )
    date_time_locale: str = Field(default="en", description="Locale for timestamps")
    fetch_missing_statuses: bool = Field(
        default=False,
        description="Fetch the parent status and account of replies"
    )
    fetch_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Timeout for each missing-content fetch"
    )

    @field_validator("mastodon_url")
    @classmethod
    def validate_mastodon_url(cls, v: str) -> str:
        """Require an http(s) URL without trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("mastodon_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("matrix_user_id")
    @classmethod
    def validate_matrix_user_id(cls, v: str) -> str:
        """Require a fully qualified Matrix user id."""
        if not v.startswith("@") or ":" not in v:
            raise ValueError("matrix_user_id must look like @localpart:server")
        return v

    def template_source(self, kind: str) -> str:
        """Return the configured template string for a template kind."""
        return getattr(self, f"{kind}_format")


class BridgeConfig(BaseSettings):
    """Main bridge configuration combining all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Sub-configs
    matrix: MatrixConfig = Field(default_factory=MatrixConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Raw entries; each one is validated on its own by parse_account() so a
    # broken account only disables its own bot.
    accounts: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Bridged Mastodon accounts, one bot each"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator("accounts", mode="before")
    @classmethod
    def dump_account_models(cls, v: Any) -> Any:
        """Accept AccountConfig instances next to plain mappings."""
        if not isinstance(v, list):
            return v
        return [item.model_dump() if isinstance(item, AccountConfig) else item for item in v]

    @model_validator(mode="after")
    def validate_unique_accounts(self) -> "BridgeConfig":
        """Reject duplicate account ids."""
        seen: set[str] = set()
        for raw in self.accounts:
            account_id = raw.get("account_id")
            if account_id is None:
                continue
            if account_id in seen:
                raise ValueError(f"Duplicate account_id: {account_id}")
            seen.add(account_id)
        return self

    @classmethod
    def from_yaml(cls, path: str) -> "BridgeConfig":
        """Load configuration from YAML file."""
        import yaml
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})


def parse_account(raw: dict[str, Any], position: int = 0) -> AccountConfig:
    """Validate one raw account entry.

    Raises:
        ConfigurationError: Naming the account id, or its position in the list
            when the id itself is missing
    """
    try:
        return AccountConfig.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        account_id = raw.get("account_id") or f"#{position}"
        raise ConfigurationError(str(account_id), problems) from e


def load_config() -> BridgeConfig:
    """Load configuration from environment and .env file."""
    return BridgeConfig()
