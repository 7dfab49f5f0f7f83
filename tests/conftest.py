"""
Shared fixtures for Market Watcher tests.

Provides common test fixtures for use across all test modules.
"""

import json
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from market_watcher.catalog import PackageEntry, Snapshot
from market_watcher.config import AppConfig, MarketConfig, ReceiverConfig, TelegramConfig
from market_watcher.registry import ReceiverKey, SubscriptionRegistry
from market_watcher.storage import Storage


# Path to test fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def sample_config_path(fixtures_dir: Path) -> Path:
    """Return path to sample config file."""
    return fixtures_dir / "sample_config.yaml"


@pytest.fixture
def sample_index(fixtures_dir: Path) -> dict[str, Any]:
    """Return the decoded sample market index."""
    return json.loads((fixtures_dir / "sample_index.json").read_text(encoding="utf-8"))


@pytest.fixture
def market_options() -> MarketConfig:
    """Create market options with every display flag off."""
    return MarketConfig()


@pytest.fixture
def foo_entry() -> PackageEntry:
    """
    Create a fully populated package entry.

    Returns
    -------
    PackageEntry
        Entry with publisher and localized description.
    """
    return PackageEntry(
        name="foo",
        version="1.0.0",
        title="koishi-plugin-foo",
        publisher="alice",
        description={"zh": "示例插件", "en": "Example plugin"},
    )


@pytest.fixture
def previous_snapshot() -> Snapshot:
    """Snapshot with a single package at version 1.0."""
    return {"foo": PackageEntry(name="foo", version="1.0")}


@pytest.fixture
def current_snapshot() -> Snapshot:
    """Snapshot where foo was updated and bar was added."""
    return {
        "foo": PackageEntry(name="foo", version="1.1"),
        "bar": PackageEntry(name="bar", version="1.0"),
    }


@pytest.fixture
def session_key() -> ReceiverKey:
    """Identity of a Telegram chat."""
    return ReceiverKey("telegram", "1234567890", "-1001")


@pytest.fixture
def minimal_telegram_config() -> TelegramConfig:
    """Create a minimal valid Telegram configuration."""
    return TelegramConfig(bot_token="1234567890:ABCdefGHIjklMNOpqrsTUVwxyz")


@pytest.fixture
def minimal_config_dict() -> dict[str, Any]:
    """
    Create a minimal valid configuration dictionary.

    Returns
    -------
    dict
        Configuration dictionary that can be used to create AppConfig.
    """
    return {
        "telegram": {
            "bot_token": "1234567890:ABCdefGHIjklMNOpqrsTUVwxyz",
        },
    }


@pytest.fixture
def full_config_dict(minimal_config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Create a fully configured configuration dictionary.

    Returns
    -------
    dict
        Complete configuration dictionary with all options.
    """
    config = minimal_config_dict.copy()
    config["market"] = {
        "endpoint": "https://market.example.com/index.json",
        "interval": 60000,
        "show_hidden": True,
        "show_deletion": True,
        "show_publisher": True,
        "show_description": True,
        "description_language": "en",
        "fallback_language": "zh",
        "broadcast_delay": 500,
    }
    config["defaults"] = {
        "request_timeout": 60,
        "max_retries": 5,
        "proxy": "socks5://localhost:1080",
    }
    config["storage"] = {
        "database_path": "data/test.db",
    }
    config["rules"] = [
        {
            "platform": "telegram",
            "self_id": "1234567890",
            "channel_id": "-1001",
            "plugins": ["foo"],
        }
    ]
    return config


@pytest.fixture
def minimal_app_config(minimal_telegram_config: TelegramConfig) -> AppConfig:
    """Create a minimal valid app configuration."""
    return AppConfig(
        telegram=minimal_telegram_config,
        rules=[ReceiverConfig(platform="telegram", self_id="1234567890", channel_id="-1001")],
    )


@pytest_asyncio.fixture
async def in_memory_storage() -> AsyncGenerator[Storage, None]:
    """
    Create an in-memory SQLite storage for testing.

    Yields
    ------
    Storage
        An initialized in-memory storage instance.
    """
    storage = Storage(":memory:")
    await storage.initialize()
    yield storage
    await storage.close()


@pytest_asyncio.fixture
async def registry(in_memory_storage: Storage) -> SubscriptionRegistry:
    """Create an empty registry backed by in-memory storage."""
    return SubscriptionRegistry(in_memory_storage)


@pytest.fixture
def mock_notifier() -> MagicMock:
    """
    Create a mock Telegram notifier.

    Returns
    -------
    MagicMock
        A notifier answering for telegram/1234567890.
    """
    notifier = MagicMock()
    notifier.platform = "telegram"
    notifier.self_id = "1234567890"
    notifier.send_message = AsyncMock(return_value=True)
    notifier.test_connection = AsyncMock(return_value=True)
    notifier.close = AsyncMock()
    return notifier


@pytest.fixture
def mock_telegram_bot() -> MagicMock:
    """
    Create a mock Telegram bot.

    Returns
    -------
    MagicMock
        A mock Bot instance with common methods mocked.
    """
    bot = MagicMock()
    bot.send_message = AsyncMock()
    bot.get_me = AsyncMock(return_value=MagicMock(username="test_bot"))
    bot.get_updates = AsyncMock(return_value=[])
    bot.shutdown = AsyncMock()
    return bot
