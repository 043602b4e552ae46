"""The watch engine: one instance wiring catalog, watch list, poller and alerts."""

import asyncio
import concurrent.futures
import logging
import threading
from typing import Callable, List, Optional

import aiohttp

from alerts import AlertDispatcher, AlertMemory
from audio import SoundPlayer
from catalog import Catalog
from config import APP_CONFIG, AppConfig
from errors import NotFoundError
from inventory import AppleInventorySource, InventorySource
from lifecycle import LifecycleController, RunState, StateListener
from logging_config import LOGGER_NAME, RecentLogHandler
from memory_monitor import MemoryMonitor
from models import Area, ItemKey, TickReport, UserSettings, WatchItem
from notifications import NotificationManager
from persistence import SettingsManager
from poller import Poller
from watchlist import WatchList

SourceFactory = Callable[[aiohttp.ClientSession], InventorySource]
DispatcherFactory = Callable[[aiohttp.ClientSession], AlertDispatcher]


class WatchEngine:
    """
    Owns the watch list and runs the poll loop on a background thread.

    The loop thread hosts its own asyncio event loop and the shared HTTP
    session. Every public method is synchronous and safe to call from the
    front end's thread.
    """

    def __init__(
        self,
        config: AppConfig = APP_CONFIG,
        logger: Optional[logging.Logger] = None,
        catalog: Optional[Catalog] = None,
        settings_manager: Optional[SettingsManager] = None,
        sound_player: Optional[SoundPlayer] = None,
        source_factory: Optional[SourceFactory] = None,
        dispatcher_factory: Optional[DispatcherFactory] = None,
        log_buffer: Optional[RecentLogHandler] = None
    ):
        """
        Initialize the watch engine.

        Args:
            config: Application configuration
            logger: Logger instance, defaults to the application logger
            catalog: Catalog to resolve selections against, loaded from config if None
            settings_manager: Settings store, defaults to SETTINGS_FILE
            sound_player: Player for the alert sound
            source_factory: Builds the inventory source from the loop's session
            dispatcher_factory: Builds the alert dispatcher from the loop's session
            log_buffer: Recent log lines shown by the front end
        """
        self.config = config
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.catalog = catalog or Catalog.load(config, self.logger)
        self.settings_manager = settings_manager or SettingsManager(self.logger, config.settings_file)
        self.sound_player = sound_player or SoundPlayer(
            sound_file=config.alert_sound_file,
            repeat=config.alert_sound_repeat,
            logger=self.logger,
        )
        self.source_factory = source_factory
        self.dispatcher_factory = dispatcher_factory
        self.log_buffer = log_buffer

        self.alert_memory = AlertMemory()
        self.watchlist = WatchList(self.catalog, self.alert_memory, self.logger)
        self.lifecycle = LifecycleController(RunState.PAUSED, self.logger)

        # Current selections of the front end, persisted with the watch list
        self.selected_area: Area = self.catalog.default_area()
        self.selected_store = ""
        self.selected_product = ""
        self.notify_url = config.default_notify_url

        self.poller: Optional[Poller] = None
        self.dispatcher: Optional[AlertDispatcher] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    # ------------------------------------------------------------------
    # Loop thread
    # ------------------------------------------------------------------

    @property
    def is_started(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, paused: Optional[bool] = None, ready_timeout: float = 10.0):
        """
        Start the poll loop on its background thread.

        The loop always runs; whether it queries is decided by the lifecycle,
        which is set to RUNNING here unless ``paused`` (or START_PAUSED) says
        otherwise.
        """
        if self.is_started:
            self.logger.debug("Watch engine already started")
            return

        self._ready.clear()
        self._thread = threading.Thread(
            target=self._run_loop_thread,
            name="watch-loop",
            daemon=True
        )
        self._thread.start()

        if not self._ready.wait(ready_timeout) or self.poller is None:
            raise RuntimeError("Watch loop failed to start")

        start_paused = self.config.start_paused if paused is None else paused
        self.lifecycle.set_state(RunState.PAUSED if start_paused else RunState.RUNNING)
        self.logger.info("Watch engine started")

    def stop(self, timeout: float = 10.0):
        """Stop the poll loop and wait for its thread to finish."""
        thread = self._thread
        if thread is None:
            return

        loop = self._loop
        if loop is not None and self.poller is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(self.poller.request_stop)
            except RuntimeError:
                # Loop closed between the check and the call
                pass

        thread.join(timeout)
        if thread.is_alive():
            self.logger.warning(f"Watch loop did not stop within {timeout}s")
        else:
            self._thread = None
            self.logger.info("Watch engine stopped")

    def _run_loop_thread(self):
        """Run the async watch loop in this thread."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop

        try:
            loop.run_until_complete(self._run_async())
        except Exception as e:
            self.logger.exception(f"Watch loop thread error: {e}")
        finally:
            self._ready.set()
            self._loop = None
            self.poller = None
            self.dispatcher = None
            loop.close()

    async def _run_async(self):
        session = self._create_session()
        try:
            self.poller = self._build_poller(session, MemoryMonitor())
            self._ready.set()
            await self.poller.run_continuous()
        finally:
            await session.close()
            # Give the connector a moment to close its transports
            await asyncio.sleep(0.25)

    def _create_session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(
            limit=max(self.config.max_concurrent_queries * 2, 10),
            limit_per_host=self.config.max_concurrent_queries,
            ttl_dns_cache=300,
            use_dns_cache=True,
        )
        timeout = aiohttp.ClientTimeout(total=self.config.query_timeout, connect=10)
        return aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={'User-Agent': self.config.user_agent}
        )

    def _build_dispatcher(self, session: Optional[aiohttp.ClientSession]) -> AlertDispatcher:
        if self.dispatcher_factory is not None and session is not None:
            return self.dispatcher_factory(session)

        notification_manager = None
        if session is not None:
            notification_manager = NotificationManager(session, self.logger, self.config)
        return AlertDispatcher(notification_manager, self.sound_player, self.logger, self.config)

    def _build_poller(
        self,
        session: aiohttp.ClientSession,
        memory_monitor: Optional[MemoryMonitor] = None,
        lifecycle: Optional[LifecycleController] = None
    ) -> Poller:
        if self.source_factory is not None:
            source = self.source_factory(session)
        else:
            source = AppleInventorySource(self.catalog, session, self.logger, self.config)

        self.dispatcher = self._build_dispatcher(session)
        return Poller(
            watchlist=self.watchlist,
            lifecycle=lifecycle or self.lifecycle,
            source=source,
            dispatcher=self.dispatcher,
            alert_memory=self.alert_memory,
            logger=self.logger,
            config=self.config,
            memory_monitor=memory_monitor,
        )

    def run_once(self) -> Optional[TickReport]:
        """
        Run a single tick on the calling thread, for one-shot use.

        The tick runs regardless of the watch status, which it leaves
        unchanged. Must not be called while the background loop is running.
        """
        if self.is_started:
            raise RuntimeError("run_once cannot be used while the watch loop is running")

        async def _single_tick():
            session = self._create_session()
            try:
                poller = self._build_poller(
                    session,
                    lifecycle=LifecycleController(RunState.RUNNING, self.logger)
                )
                report = await poller.run_tick()
                await poller.drain_dispatches()
                return report
            finally:
                await session.close()

        return asyncio.run(_single_tick())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def status(self) -> RunState:
        return self.lifecycle.state

    def start_watching(self) -> bool:
        return self.lifecycle.start()

    def pause(self) -> bool:
        return self.lifecycle.pause()

    def toggle(self) -> RunState:
        return self.lifecycle.toggle()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        return self.lifecycle.subscribe(listener)

    @property
    def last_report(self) -> Optional[TickReport]:
        return self.poller.last_report if self.poller else None

    # ------------------------------------------------------------------
    # Watch list
    # ------------------------------------------------------------------

    def select_area(self, area_title: str) -> Area:
        """
        Switch the current area. Changing area empties the watch list.

        Raises:
            NotFoundError: if the area is unknown
        """
        area = self.catalog.resolve_area(area_title)
        if area.code == self.selected_area.code:
            return area

        self.selected_area = area
        self.selected_store = ""
        self.selected_product = ""
        self.watchlist.clean()
        self.save_settings()
        self.logger.info(f"Area changed to {area.title}")
        return area

    def add(self, area_title: str, store_title: str, product_title: str, notify_url: str = "") -> WatchItem:
        """
        Add or update a watch item and persist the selection.

        Raises:
            ValidationError: store or product missing or unknown
            NotFoundError: area unknown
        """
        item = self.watchlist.add(area_title, store_title, product_title, notify_url)

        self.selected_area = self.catalog.get_area_by_code(item.area_code)
        self.selected_store = store_title
        self.selected_product = product_title
        self.notify_url = item.notify_url
        self.save_settings()
        return item

    def remove(self, key: ItemKey) -> bool:
        removed = self.watchlist.remove(key)
        if removed:
            poller = self.poller
            if poller is not None:
                poller.backoff.forget(key)
            self.save_settings()
        return removed

    def clean(self):
        """Empty the watch list, forget alerts and drop the saved settings."""
        self.watchlist.clean()
        self.settings_manager.clear_settings()

    def get_listen_items(self) -> List[WatchItem]:
        return self.watchlist.get_listen_items()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def settings_snapshot(self) -> UserSettings:
        return UserSettings(
            selected_area=self.selected_area.title,
            selected_store=self.selected_store,
            selected_product=self.selected_product,
            notify_url=self.notify_url,
            listen_items=self.watchlist.get_listen_items(),
        )

    def save_settings(self) -> bool:
        return self.settings_manager.save_settings(self.settings_snapshot())

    def load_settings(self) -> Optional[UserSettings]:
        """
        Restore the saved selections and watch list, best effort.

        Returns:
            The loaded settings, or None when defaults are kept
        """
        settings = self.settings_manager.load_settings()
        if settings is None:
            return None

        if settings.selected_area:
            try:
                self.selected_area = self.catalog.resolve_area(settings.selected_area)
            except NotFoundError:
                self.logger.warning(f"Saved area '{settings.selected_area}' is not in the catalog")
        self.selected_store = settings.selected_store
        self.selected_product = settings.selected_product
        self.notify_url = settings.notify_url or self.config.default_notify_url

        self.watchlist.set_listen_items(settings.listen_items)
        return settings

    # ------------------------------------------------------------------
    # Alert previews
    # ------------------------------------------------------------------

    def preview_sound(self) -> bool:
        """Play the alert sound once on the calling thread."""
        dispatcher = self.dispatcher or self._build_dispatcher(None)
        return dispatcher.preview_sound()

    def test_notification(self, notify_url: Optional[str] = None) -> bool:
        """
        Send a test push to ``notify_url`` or the current endpoint.

        Uses the loop's session when the engine is running, otherwise a
        short-lived one.
        """
        endpoint = self.notify_url if notify_url is None else notify_url
        wait_timeout = self.config.notification_timeout * 2 + 5

        loop = self._loop
        dispatcher = self.dispatcher
        if loop is not None and dispatcher is not None and self.is_started:
            future = asyncio.run_coroutine_threadsafe(dispatcher.test_notification(endpoint), loop)
            try:
                return future.result(wait_timeout)
            except concurrent.futures.TimeoutError:
                future.cancel()
                self.logger.warning("Test notification timed out")
                return False

        async def _send_standalone():
            session = self._create_session()
            try:
                return await self._build_dispatcher(session).test_notification(endpoint)
            finally:
                await session.close()

        return asyncio.run(_send_standalone())

    def log_lines(self) -> List[str]:
        return self.log_buffer.lines() if self.log_buffer else []
