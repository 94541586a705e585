"""Assembly of one bot from its account configuration."""

from dataclasses import dataclass

from .config import AccountConfig
from .delivery import DeliveryService
from .formatting import DateTimeFormatter
from .ingestor import StreamIngestor
from .mastodon_client import MastodonClient
from .matrix_client import MatrixClient
from .renderer import EventRenderer
from .store import PersistenceStore
from .templates import TemplateCache


@dataclass
class BotInstance:
    """Runtime pairing of an account with its clients and pipeline."""
    config: AccountConfig
    mastodon: MastodonClient
    matrix: MatrixClient
    templates: TemplateCache
    formatter: DateTimeFormatter
    renderer: EventRenderer
    delivery: DeliveryService
    ingestor: StreamIngestor

    @property
    def account_id(self) -> str:
        return self.config.account_id

    @property
    def running(self) -> bool:
        return self.ingestor.running

    async def close(self) -> None:
        """Close the bot's HTTP clients."""
        await self.mastodon.close()
        await self.matrix.close()


def build_bot(
    config: AccountConfig,
    mastodon: MastodonClient,
    matrix: MatrixClient,
    store: PersistenceStore,
) -> BotInstance:
    """Build a bot, validating its templates and timestamp settings.

    Raises:
        ConfigurationError: If the account configuration is unusable
    """
    templates = TemplateCache(config)
    templates.validate()
    formatter = DateTimeFormatter.from_config(config)

    renderer = EventRenderer(config, templates, formatter, mastodon)
    delivery = DeliveryService(config.account_id, matrix, store)
    ingestor = StreamIngestor(config.account_id, mastodon, renderer, delivery, store)

    return BotInstance(
        config=config,
        mastodon=mastodon,
        matrix=matrix,
        templates=templates,
        formatter=formatter,
        renderer=renderer,
        delivery=delivery,
        ingestor=ingestor,
    )
