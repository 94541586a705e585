"""mxtoot: Mastodon -> Matrix bridge.

Relays statuses and notifications of Mastodon accounts into Matrix rooms,
one bot per account, and accepts Matrix application-service transactions.

Key components:
- config: Pydantic configuration management
- mastodon_client / matrix_client: HTTP clients of both networks
- templates: Mustache templates per event kind
- renderer: Event -> message text
- ingestor: Mastodon user stream consumer
- delivery: Message fan-out into joined rooms
- registry: Lifecycle of all bots
- dedup: Application-service transaction deduplication
- appservice: HTTP endpoint for the homeserver
- main: Entry point
"""

from .bot import BotInstance, build_bot
from .config import AccountConfig, BridgeConfig, ConfigurationError, load_config
from .dedup import TransactionDeduper
from .delivery import DeliveryReport, DeliveryService
from .events import EventKind, FeedEvent, classify_notification, classify_status
from .ingestor import IngestorState, StreamIngestor
from .registry import BotRegistry, UnknownBotError
from .renderer import EventRenderer
from .templates import TemplateCache, TemplateKind

__version__ = "0.1.0"

__all__ = [
    # Bots
    "BotInstance",
    "BotRegistry",
    "UnknownBotError",
    "build_bot",
    # Config
    "AccountConfig",
    "BridgeConfig",
    "ConfigurationError",
    "load_config",
    # Pipeline
    "DeliveryReport",
    "DeliveryService",
    "EventKind",
    "EventRenderer",
    "FeedEvent",
    "IngestorState",
    "StreamIngestor",
    "TemplateCache",
    "TemplateKind",
    "classify_notification",
    "classify_status",
    # Transactions
    "TransactionDeduper",
]
