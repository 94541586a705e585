"""Text helpers: timestamp formatting and HTML to plain text."""

from datetime import datetime, timezone

from babel import Locale, UnknownLocaleError
from babel.dates import format_datetime
from bs4 import BeautifulSoup

from .config import AccountConfig, ConfigurationError

_SAMPLE_DATETIME = datetime(2000, 1, 1, tzinfo=timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as sent by Mastodon (``...Z`` included)."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DateTimeFormatter:
    """Formats Mastodon timestamps with an account's pattern and locale.

    Built once per bot; a pure function of the account configuration.
    """

    def __init__(self, pattern: str, locale: Locale):
        self.pattern = pattern
        self.locale = locale

    @classmethod
    def from_config(cls, config: AccountConfig) -> "DateTimeFormatter":
        """Build the formatter of an account.

        Raises:
            ConfigurationError: If the locale or pattern is invalid
        """
        try:
            locale = Locale.parse(config.date_time_locale)
        except (UnknownLocaleError, ValueError) as e:
            raise ConfigurationError(
                config.account_id, f"invalid date_time_locale {config.date_time_locale!r}"
            ) from e

        formatter = cls(config.date_time_format, locale)
        try:
            formatter.format_datetime(_SAMPLE_DATETIME)
        except (ValueError, KeyError) as e:
            raise ConfigurationError(
                config.account_id, f"invalid date_time_format {config.date_time_format!r}"
            ) from e
        return formatter

    def format_datetime(self, value: datetime) -> str:
        return format_datetime(value, self.pattern, tzinfo=timezone.utc, locale=self.locale)

    def format(self, iso_timestamp: str) -> str:
        """Format an ISO-8601 timestamp string.

        Raises:
            ValueError: If the timestamp is not ISO-8601
        """
        return self.format_datetime(parse_iso_datetime(iso_timestamp))


def html_to_text(html: str) -> str:
    """Plain-text rendering of an HTML fragment."""
    soup = BeautifulSoup(html, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    return soup.get_text()
