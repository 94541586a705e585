"""Message templates: one compiled Mustache template per event kind."""

from enum import Enum
from typing import Any

import pystache
import structlog
from pystache.parsed import ParsedTemplate
from pystache.parser import ParsingError

from .config import AccountConfig, ConfigurationError

logger = structlog.get_logger()


class TemplateKind(str, Enum):
    """Kinds of message a template exists for."""
    POST = "post"
    REPLY = "reply"
    BOOST = "boost"
    MENTION = "mention"
    FAVOURITE = "favourite"
    FOLLOW = "follow"


def _no_escape(value: str) -> str:
    return value


class _MessageRenderer(pystache.Renderer):
    """Renderer writing booleans the way Mastodon's JSON does."""

    def str_coerce(self, val):
        if isinstance(val, bool):
            return "true" if val else "false"
        return str(val)


# Output is HTML meant for formatted notices, so values are inserted verbatim.
_renderer = _MessageRenderer(escape=_no_escape, missing_tags="ignore")


def compile_template(source: str) -> ParsedTemplate:
    """Parse a Mustache template.

    Raises:
        ParsingError: On malformed template syntax
    """
    return pystache.parse(source)


def render_template(template: ParsedTemplate, context: dict[str, Any]) -> str:
    """Render a compiled template; missing fields render as empty strings."""
    return _renderer.render(template, context)


class TemplateCache:
    """Lazily compiled templates of one account.

    Owned by a single bot and keyed by ``(account_id, kind)``. Entries live
    as long as the bot; a restart builds a new cache.
    """

    def __init__(self, config: AccountConfig):
        self.config = config
        self._templates: dict[tuple[str, TemplateKind], ParsedTemplate] = {}

    def validate(self) -> None:
        """Parse every configured template without caching it.

        Raises:
            ConfigurationError: If any template has malformed syntax
        """
        for kind in TemplateKind:
            try:
                compile_template(self.config.template_source(kind.value))
            except ParsingError as e:
                raise ConfigurationError(
                    self.config.account_id, f"invalid {kind.value} template: {e}"
                ) from e

    def template_for(self, kind: TemplateKind) -> ParsedTemplate:
        """Return the compiled template for ``kind``, compiling it on first use."""
        key = (self.config.account_id, TemplateKind(kind))
        template = self._templates.get(key)
        if template is None:
            try:
                template = compile_template(self.config.template_source(key[1].value))
            except ParsingError as e:
                raise ConfigurationError(
                    self.config.account_id, f"invalid {key[1].value} template: {e}"
                ) from e
            self._templates[key] = template
            logger.debug("Compiled template", account_id=self.config.account_id, kind=key[1].value)
        return template

    def __len__(self) -> int:
        return len(self._templates)
