"""Tests for the polling loop."""

import asyncio
import dataclasses
from unittest.mock import Mock

import pytest

from errors import NotificationDeliveryError, TransientQueryError
from lifecycle import RunState
from utils import BackoffTracker


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestPollerTicks:
    """Test single ticks of the poller."""

    @pytest.mark.asyncio
    async def test_paused_tick_makes_no_queries(self, make_poller, watchlist, lifecycle, fake_source):
        """No query is issued and nothing changes while paused."""
        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.set_results(("us", "R001", "P1"), True)
        lifecycle.set_state(RunState.PAUSED)
        poller = make_poller()

        report = await poller.run_tick()

        assert report is None
        assert fake_source.calls == []
        assert poller.tick_count == 0

    @pytest.mark.asyncio
    async def test_empty_watch_list(self, make_poller, fake_source):
        poller = make_poller()

        report = await poller.run_tick()

        assert report.tick_number == 1
        assert report.items_checked == 0
        assert report.ended_at is not None
        assert fake_source.calls == []

    @pytest.mark.asyncio
    async def test_available_twice_alerts_once(self, make_poller, watchlist, fake_source, fake_sound):
        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.set_results(("us", "R001", "P1"), True, True)
        poller = make_poller()

        first = await poller.run_tick()
        second = await poller.run_tick()
        await poller.drain_dispatches()

        assert first.alerts_fired == 1
        assert second.alerts_fired == 0
        assert second.items_available == 1
        assert fake_sound.plays == 1

    @pytest.mark.asyncio
    async def test_new_episode_alerts_again(self, make_poller, watchlist, fake_source, fake_sound, alert_memory):
        """available -> unavailable -> available fires two alerts."""
        key = ("us", "R001", "P1")
        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.set_results(key, True, False, True)
        poller = make_poller()

        reports = [await poller.run_tick() for _ in range(3)]
        await poller.drain_dispatches()

        assert [r.alerts_fired for r in reports] == [1, 0, 1]
        assert fake_sound.plays == 2
        assert key in alert_memory

    @pytest.mark.asyncio
    async def test_first_available_on_fourth_tick(
        self, make_poller, watchlist, fake_source, fake_sound, mock_notification_manager
    ):
        """Unavailable for three ticks then available: one alert on tick 4, sound but no push."""
        watchlist.add("United States", "Store A", "iPhone 16", notify_url="")
        fake_source.set_results(("us", "R001", "P1"), False, False, False, True)
        poller = make_poller()

        reports = [await poller.run_tick() for _ in range(4)]
        await poller.drain_dispatches()

        assert [r.alerts_fired for r in reports] == [0, 0, 0, 1]
        assert fake_sound.plays == 1
        mock_notification_manager.send_push.assert_not_called()

    @pytest.mark.asyncio
    async def test_push_sent_with_deep_link(self, make_poller, watchlist, fake_source, mock_notification_manager):
        watchlist.add("United States", "Store B", "iPhone 16 Pro", notify_url="https://api.day.app/k")
        fake_source.set_results(("us", "R002", "P2"), True)
        poller = make_poller()

        await poller.run_tick()
        await poller.drain_dispatches()

        mock_notification_manager.send_push.assert_awaited_once()
        endpoint, title, body, url = mock_notification_manager.send_push.call_args.args
        assert endpoint == "https://api.day.app/k"
        assert "iPhone 16 Pro" in body
        assert "Store B" in body
        assert url == "https://www.apple.com/shop/bag"

    @pytest.mark.asyncio
    async def test_push_failure_does_not_block_sound_or_other_items(
        self, make_poller, watchlist, fake_source, fake_sound, mock_notification_manager
    ):
        watchlist.add("United States", "Store A", "iPhone 16", notify_url="https://api.day.app/k")
        watchlist.add("United States", "Store B", "iPhone 16", notify_url="https://api.day.app/k")
        fake_source.set_results(("us", "R001", "P1"), True)
        fake_source.set_results(("us", "R002", "P1"), True)
        mock_notification_manager.send_push.side_effect = NotificationDeliveryError("HTTP 500")
        poller = make_poller()

        report = await poller.run_tick()
        await poller.drain_dispatches()

        assert report.alerts_fired == 2
        assert report.errors_encountered == 0
        assert fake_sound.plays == 2
        assert mock_notification_manager.send_push.await_count == 2

    @pytest.mark.asyncio
    async def test_query_error_is_isolated(self, make_poller, watchlist, fake_source, fake_sound):
        watchlist.add("United States", "Store A", "iPhone 16")
        watchlist.add("United States", "Store B", "iPhone 16")
        fake_source.set_results(("us", "R001", "P1"), TransientQueryError("throttled", status=541))
        fake_source.set_results(("us", "R002", "P1"), True)
        poller = make_poller()

        report = await poller.run_tick()
        await poller.drain_dispatches()

        assert report.items_checked == 2
        assert report.errors_encountered == 1
        assert report.alerts_fired == 1
        assert fake_sound.plays == 1
        assert poller.backoff.failures(("us", "R001", "P1")) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_isolated(self, make_poller, watchlist, fake_source, mock_logger):
        watchlist.add("United States", "Store A", "iPhone 16")
        watchlist.add("United States", "Store B", "iPhone 16")
        fake_source.set_results(("us", "R001", "P1"), RuntimeError("boom"))
        fake_source.set_results(("us", "R002", "P1"), False)
        poller = make_poller()

        report = await poller.run_tick()

        assert report.errors_encountered == 1
        assert report.items_checked == 2
        mock_logger.exception.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_item_backs_off(self, make_poller, watchlist, fake_source):
        key = ("us", "R001", "P1")
        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.set_results(key, TransientQueryError("HTTP 503"), False)
        clock = FakeClock()
        poller = make_poller(backoff=BackoffTracker(base=10, factor=2, max_delay=60, clock=clock))

        await poller.run_tick()
        skipped = await poller.run_tick()

        assert skipped.items_skipped == 1
        assert skipped.items_checked == 0
        assert fake_source.calls == [key]

        clock.now += 11
        retried = await poller.run_tick()

        assert retried.items_checked == 1
        assert retried.errors_encountered == 0
        assert poller.backoff.failures(key) == 0

    @pytest.mark.asyncio
    async def test_query_timeout(self, make_poller, watchlist, fake_source, test_config):
        key = ("us", "R001", "P1")
        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.delays[key] = 0.5
        poller = make_poller(config=dataclasses.replace(test_config, query_timeout=0.05))

        report = await poller.run_tick()

        assert report.errors_encountered == 1
        assert report.timed_out == 1
        assert poller.backoff.failures(key) == 1

    @pytest.mark.asyncio
    async def test_tick_timeout_abandons_stragglers(self, make_poller, watchlist, fake_source, test_config):
        watchlist.add("United States", "Store A", "iPhone 16")
        watchlist.add("United States", "Store B", "iPhone 16")
        fake_source.delays[("us", "R001", "P1")] = 0.5
        config = dataclasses.replace(test_config, query_timeout=5.0, tick_timeout=0.1)
        poller = make_poller(config=config)

        report = await poller.run_tick()

        assert report.items_checked == 2
        assert report.timed_out == 1
        assert report.errors_encountered == 1
        assert fake_source.in_flight == 0

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, make_poller, watchlist, fake_source):
        for store in ("Store A", "Store B"):
            for product in ("iPhone 16", "iPhone 16 Pro"):
                watchlist.add("United States", store, product)
        for key in [item.key for item in watchlist.get_listen_items()]:
            fake_source.delays[key] = 0.05
        poller = make_poller(max_concurrency=2)

        report = await poller.run_tick()

        assert report.items_checked == 4
        assert fake_source.max_in_flight == 2

    def test_invalid_concurrency(self, make_poller, test_config):
        with pytest.raises(ValueError):
            make_poller(config=dataclasses.replace(test_config, max_concurrent_queries=0))

    @pytest.mark.asyncio
    async def test_clean_during_tick_does_not_alert(
        self, make_poller, watchlist, fake_source, fake_sound, alert_memory
    ):
        key = ("us", "R001", "P1")
        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.set_results(key, True)
        fake_source.delays[key] = 0.1
        poller = make_poller()

        tick = asyncio.ensure_future(poller.run_tick())
        await asyncio.sleep(0.02)
        watchlist.clean()
        report = await tick

        assert report.alerts_fired == 0
        assert fake_sound.plays == 0
        assert len(alert_memory) == 0

    @pytest.mark.asyncio
    async def test_slow_push_outlives_tick_deadline(
        self, make_poller, watchlist, fake_source, mock_notification_manager, test_config
    ):
        delivered = []

        async def slow_push(endpoint, title, body, url):
            await asyncio.sleep(0.5)
            delivered.append(endpoint)
            return True

        key = ("us", "R001", "P1")
        watchlist.add("United States", "Store A", "iPhone 16", notify_url="https://api.day.app/k")
        fake_source.set_results(key, True)
        mock_notification_manager.send_push.side_effect = slow_push
        poller = make_poller(config=dataclasses.replace(test_config, tick_timeout=0.2))

        first = await poller.run_tick()

        assert first.items_checked == 1
        assert first.alerts_fired == 1
        assert first.errors_encountered == 0
        assert first.timed_out == 0
        assert poller.pending_dispatches == 1

        second = await poller.run_tick()
        await poller.drain_dispatches()

        assert second.alerts_fired == 0
        assert delivered == ["https://api.day.app/k"]
        assert poller.pending_dispatches == 0

    @pytest.mark.asyncio
    async def test_remove_during_tick_does_not_alert(
        self, make_poller, watchlist, fake_source, fake_sound, alert_memory
    ):
        key = ("us", "R001", "P1")
        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.set_results(key, True)
        fake_source.delays[key] = 0.1
        poller = make_poller()

        tick = asyncio.ensure_future(poller.run_tick())
        await asyncio.sleep(0.02)
        watchlist.remove(key)
        report = await tick
        await poller.drain_dispatches()

        assert report.alerts_fired == 0
        assert fake_sound.plays == 0
        assert key not in alert_memory

        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.delays[key] = 0
        again = await poller.run_tick()
        await poller.drain_dispatches()

        assert again.alerts_fired == 1
        assert fake_sound.plays == 1

    @pytest.mark.asyncio
    async def test_cleaned_and_readded_item_is_not_held_back(self, make_poller, watchlist, fake_source):
        key = ("us", "R001", "P1")
        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.set_results(key, TransientQueryError("HTTP 503"), False)
        poller = make_poller(backoff=BackoffTracker(base=10, factor=2, max_delay=60, clock=FakeClock()))

        await poller.run_tick()
        assert poller.backoff.failures(key) == 1

        watchlist.clean()
        watchlist.add("United States", "Store A", "iPhone 16")
        report = await poller.run_tick()

        assert report.items_skipped == 0
        assert report.items_checked == 1
        assert fake_source.calls == [key, key]

    @pytest.mark.asyncio
    async def test_backoff_dropped_for_removed_items(self, make_poller, watchlist, fake_source):
        key = ("us", "R001", "P1")
        watchlist.add("United States", "Store A", "iPhone 16")
        fake_source.set_results(key, TransientQueryError("HTTP 503"))
        poller = make_poller(backoff=BackoffTracker(base=10, factor=2, max_delay=60, clock=FakeClock()))

        await poller.run_tick()
        assert len(poller.backoff) == 1

        watchlist.remove(key)
        await poller.run_tick()

        assert len(poller.backoff) == 0

    @pytest.mark.asyncio
    async def test_added_item_is_checked_next_tick(self, make_poller, watchlist, fake_source):
        poller = make_poller()
        await poller.run_tick()

        watchlist.add("United States", "Store A", "iPhone 16")
        await poller.run_tick()

        assert fake_source.calls == [("us", "R001", "P1")]

    @pytest.mark.asyncio
    async def test_memory_logged_every_n_ticks(self, make_poller, test_config):
        monitor = Mock()
        poller = make_poller(
            config=dataclasses.replace(test_config, memory_log_every_n_ticks=2),
            memory_monitor=monitor
        )

        for _ in range(4):
            await poller.run_tick()

        assert monitor.log_memory_stats.call_count == 2


class TestPollerLoop:
    """Test the continuous loop."""

    @pytest.mark.asyncio
    async def test_run_continuous_until_stopped(self, make_poller, watchlist, fake_source):
        watchlist.add("United States", "Store A", "iPhone 16")
        poller = make_poller()

        loop_task = asyncio.ensure_future(poller.run_continuous())
        await asyncio.sleep(0.2)
        poller.request_stop()
        await asyncio.wait_for(loop_task, timeout=1.0)

        assert poller.running is False
        assert poller.tick_count >= 2
        assert len(fake_source.calls) == poller.tick_count

    @pytest.mark.asyncio
    async def test_stop_before_start(self, make_poller):
        poller = make_poller()
        poller.request_stop()

        await asyncio.wait_for(poller.run_continuous(), timeout=1.0)

        assert poller.tick_count == 0

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, make_poller, watchlist, lifecycle, fake_source):
        watchlist.add("United States", "Store A", "iPhone 16")
        lifecycle.set_state(RunState.PAUSED)
        poller = make_poller()

        loop_task = asyncio.ensure_future(poller.run_continuous())
        await asyncio.sleep(0.15)
        assert fake_source.calls == []

        lifecycle.start()
        await asyncio.sleep(0.15)
        poller.request_stop()
        await asyncio.wait_for(loop_task, timeout=1.0)

        assert len(fake_source.calls) >= 1
