"""Pytest configuration and fixtures for mxtoot bridge tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mxtoot.config import AccountConfig, BridgeConfig
from mxtoot.mastodon_client import MastodonClient, StreamSubscription
from mxtoot.mastodon_types import Account, Notification, Status
from mxtoot.matrix_client import MatrixClient
from mxtoot.models import Base
from mxtoot.store import PersistenceStore


@pytest.fixture
def account_config() -> AccountConfig:
    """Create test account configuration with short, predictable templates."""
    return AccountConfig(
        account_id="alice",
        mastodon_url="https://mastodon.example",
        mastodon_access_token="test_access_token",
        matrix_user_id="@alice_bot:matrix.example",
        rooms=["!control:matrix.example"],
        post_format="POST {{account.acct}}: {{content}} @ {{created_at}}",
        reply_format="REPLY {{account.acct}}: {{content}}",
        boost_format="BOOST {{account.acct}}{{#reblog}} <- {{account.acct}}{{/reblog}}",
        mention_format="MENTION {{account.acct}}{{#status}}: {{content}}{{/status}}",
        favourite_format="FAV {{account.acct}}",
        follow_format="FOLLOW {{account.acct}} at {{created_at}}",
        date_time_format="yyyy-MM-dd HH:mm",
        date_time_locale="en",
    )


@pytest.fixture
def config(account_config) -> BridgeConfig:
    """Create test bridge configuration."""
    return BridgeConfig(
        matrix={
            "homeserver_url": "http://localhost:8008",
            "as_token": "test_as_token",
            "hs_token": "test_hs_token",
        },
        database={"url": "sqlite+aiosqlite:///:memory:"},
        accounts=[account_config],
    )


@pytest_asyncio.fixture
async def session_maker():
    """Create in-memory database session maker for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, expire_on_commit=False)
    yield maker

    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_maker) -> PersistenceStore:
    """Create persistence store over the in-memory database."""
    return PersistenceStore(session_maker)


@pytest_asyncio.fixture
async def session(session_maker) -> AsyncSession:
    """Create database session for tests."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def mock_mastodon_client() -> MagicMock:
    """Create mock Mastodon client."""
    client = MagicMock(spec=MastodonClient)
    subscription = MagicMock(spec=StreamSubscription)
    client.open_user_stream = AsyncMock(return_value=subscription)
    client.get_status = AsyncMock(return_value=Status(
        id="100",
        content="<p>parent</p>",
        created_at="2024-01-01T10:00:00.000Z",
        account=Account(id="2", acct="bob"),
    ))
    client.get_account = AsyncMock(return_value=Account(id="2", acct="bob", display_name="Bob"))
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_matrix_client() -> MagicMock:
    """Create mock Matrix client."""
    client = MagicMock(spec=MatrixClient)
    client.joined_rooms = AsyncMock(return_value=["!a:matrix.example", "!b:matrix.example"])
    client.send_notice = AsyncMock(return_value="$notice")
    client.send_formatted_notice = AsyncMock(return_value="$formatted")
    client.join_room = AsyncMock(return_value="!joined:matrix.example")
    client.close = AsyncMock()
    return client


@pytest.fixture
def sample_account() -> Account:
    """Sample Mastodon account."""
    return Account(
        id="1",
        username="alice",
        acct="alice",
        display_name="Alice",
        url="https://mastodon.example/@alice",
    )


@pytest.fixture
def sample_status(sample_account) -> Status:
    """Sample plain status."""
    return Status(
        id="200",
        uri="https://mastodon.example/users/alice/statuses/200",
        url="https://mastodon.example/@alice/200",
        account=sample_account,
        content="<p>Hello Matrix</p>",
        created_at="2024-03-05T14:30:00.000Z",
    )


@pytest.fixture
def sample_notification(sample_account, sample_status) -> Notification:
    """Sample mention notification."""
    return Notification(
        id="300",
        type="mention",
        created_at="2024-03-05T14:31:00.000Z",
        account=sample_account,
        status=sample_status,
    )
