"""Pytest configuration and fixtures for Apple Store watch tests."""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from alerts import AlertDispatcher, AlertMemory
from catalog import Catalog
from config import AppConfig, AreaConfig
from errors import AudioPlaybackError
from inventory.base import InventorySource
from lifecycle import LifecycleController, RunState
from models import Area, AvailabilityResult, ItemKey, WatchItem
from poller import Poller
from watchlist import WatchList


class FakeInventorySource(InventorySource):
    """
    Scripted availability source.

    Each key answers from its queued results in order, then repeats the last
    one. A queued exception is raised instead of returned.
    """

    def __init__(self, catalog: Catalog, logger: logging.Logger, config: AppConfig):
        super().__init__(catalog, session=None, logger=logger, config=config)
        self.script: Dict[ItemKey, List] = {}
        self.delays: Dict[ItemKey, float] = {}
        self.calls: List[ItemKey] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def set_results(self, key: ItemKey, *results):
        self.script[key] = list(results)

    async def _fetch_availability(self, item: WatchItem, area: Area) -> AvailabilityResult:
        self.calls.append(item.key)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(item.key, 0)
            if delay:
                await asyncio.sleep(delay)

            queue = self.script.get(item.key) or [False]
            outcome = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(outcome, Exception):
                raise outcome
            return AvailabilityResult(key=item.key, available=outcome, deep_link=area.bag_url)
        finally:
            self.in_flight -= 1


class FakeSoundPlayer:
    """Counts plays instead of making noise."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.plays = 0

    def play(self):
        self.plays += 1
        if self.fail:
            raise AudioPlaybackError("no audio device")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir):
    """Test application configuration with short timings."""
    return AppConfig(
        settings_file=str(temp_dir / "settings.json"),
        catalog_file=None,
        default_area="us",
        tick_interval_seconds=0.05,
        max_concurrent_queries=2,
        query_timeout=1.0,
        tick_timeout=2.0,
        start_paused=False,
        backoff_base_seconds=0,
        backoff_factor=2.0,
        backoff_max_seconds=60,
        notification_timeout=1.0,
        enable_sound=True,
        alert_sound_file=None,
        alert_sound_repeat=1,
        enable_notifications=True,
        open_browser_on_alert=False,
        default_notify_url="",
        memory_log_every_n_ticks=0,
        log_buffer_lines=100,
    )


@pytest.fixture
def area_configs():
    return {
        "us": AreaConfig(
            code="us",
            title="United States",
            base_url="https://www.apple.com/",
            stores={"R001": "Store A", "R002": "Store B"},
            products={"P1": "iPhone 16", "P2": "iPhone 16 Pro"},
        ),
        "hk": AreaConfig(
            code="hk",
            title="Hong Kong",
            base_url="https://www.apple.com/hk",
            stores={"R409": "Causeway Bay"},
            products={"H1": "iPhone 16"},
        ),
    }


@pytest.fixture
def catalog(area_configs):
    return Catalog.from_configs(area_configs, "us")


@pytest.fixture
def mock_logger():
    """Mock logger for testing."""
    return Mock(spec=logging.Logger)


@pytest.fixture
def alert_memory():
    return AlertMemory()


@pytest.fixture
def watchlist(catalog, alert_memory, mock_logger):
    return WatchList(catalog, alert_memory, mock_logger)


@pytest.fixture
def lifecycle(mock_logger):
    return LifecycleController(RunState.RUNNING, mock_logger)


@pytest.fixture
def fake_source(catalog, mock_logger, test_config):
    return FakeInventorySource(catalog, mock_logger, test_config)


@pytest.fixture
def fake_sound():
    return FakeSoundPlayer()


@pytest.fixture
def mock_notification_manager():
    manager = Mock()
    manager.send_push = AsyncMock(return_value=True)
    return manager


@pytest.fixture
def dispatcher(mock_notification_manager, fake_sound, mock_logger, test_config):
    return AlertDispatcher(mock_notification_manager, fake_sound, mock_logger, test_config)


@pytest.fixture
def make_poller(watchlist, lifecycle, fake_source, dispatcher, alert_memory, mock_logger, test_config):
    """Factory for a poller wired to the fake source; keyword overrides pass through."""
    def _make(config: Optional[AppConfig] = None, **kwargs) -> Poller:
        return Poller(
            watchlist=watchlist,
            lifecycle=lifecycle,
            source=fake_source,
            dispatcher=dispatcher,
            alert_memory=alert_memory,
            logger=mock_logger,
            config=config or test_config,
            **kwargs
        )
    return _make


@pytest.fixture
def sample_item():
    return WatchItem(
        area_code="us",
        store_code="R001",
        product_code="P1",
        notify_url="https://api.day.app/test-key",
        store_title="Store A",
        product_title="iPhone 16",
    )


def make_response(status: int = 200, json_data=None, text: str = "", headers: Optional[dict] = None):
    """Mock aiohttp response."""
    response = AsyncMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)
    response.headers = headers or {}
    return response


def make_session(*responses) -> MagicMock:
    """Mock aiohttp session whose get/post yield ``responses`` in order as async context managers."""
    session = MagicMock()

    def _contexts():
        for response in responses:
            context = MagicMock()
            context.__aenter__ = AsyncMock(return_value=response)
            context.__aexit__ = AsyncMock(return_value=False)
            yield context

    session.get.side_effect = list(_contexts())
    session.post.side_effect = list(_contexts())
    session.close = AsyncMock()
    return session
