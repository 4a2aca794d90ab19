import asyncio
import threading

import pytest

from conftest import OTHER_TOKEN, TOKEN
from leaderboard import Leaderboard
from models import UNKNOWN, UNKNOWN_BUYER, TokenMonitorState
from monitor import BuyMonitor, MonitorStateStore
from subscriptions import SubscriptionRegistry


class ScriptedCache:
    """Returns queued snapshots (or raises queued exceptions) per token."""

    def __init__(self):
        self.script = {}
        self.calls = []
        self.invalidated = []

    def push(self, token, *items):
        self.script.setdefault(token.lower(), []).extend(items)

    def fetch(self, token):
        self.calls.append(token)
        queue = self.script.get(token, [])
        if not queue:
            return None
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def invalidate(self, token):
        self.invalidated.append(token)


@pytest.fixture
def cache():
    return ScriptedCache()


@pytest.fixture
def registry():
    return SubscriptionRegistry(default_min_buy_usd=100)


@pytest.fixture
def board():
    return Leaderboard()


@pytest.fixture
def monitor(cache, registry, board, notifier):
    return BuyMonitor(cache, registry, board, notifier, default_min_buy_usd=100)


def run(coro):
    return asyncio.run(coro)


def test_first_observation_only_seeds_state(monitor, cache, registry, notifier, board, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=0)
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000, sells=4))

    assert run(monitor.run_batch()) == 0
    assert notifier.calls == []
    assert board.get_total_buyers(TOKEN) == 0

    state = monitor.states.get(TOKEN)
    assert (state.last_buy_count, state.last_sell_count, state.last_volume) == (10, 4, 1000)


def test_buy_delta_notifies_only_subscribers_under_their_threshold(monitor, cache, registry, notifier, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=150)
    registry.track(TOKEN, 2, min_buy_usd=250)
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000), snapshot_factory(buys=13, volume=1600))

    async def scenario():
        await monitor.run_batch()
        return await monitor.run_batch()

    assert run(scenario()) == 1
    assert len(notifier.calls) == 1
    sub, event = notifier.calls[0]
    assert sub.chat_id == 1
    assert event.amount_usd == 200
    assert event.buy_count == 3
    assert event.volume_usd == 600
    assert event.token_address == TOKEN


def test_threshold_is_inclusive(monitor, cache, registry, notifier, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=200)
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000), snapshot_factory(buys=13, volume=1600))

    async def scenario():
        await monitor.run_batch()
        await monitor.run_batch()

    run(scenario())
    assert len(notifier.calls) == 1


def test_rollover_emits_nothing_and_state_takes_raw_values(monitor, cache, registry, notifier, board, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=0)
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000, sells=7), snapshot_factory(buys=8, volume=1100, sells=2))

    async def scenario():
        await monitor.run_batch()
        return await monitor.run_batch()

    assert run(scenario()) == 0
    assert notifier.calls == []
    assert board.get_total_buyers(TOKEN) == 0

    state = monitor.states.get(TOKEN)
    assert (state.last_buy_count, state.last_sell_count, state.last_volume) == (8, 2, 1100)


def test_more_buys_with_lower_volume_is_absorbed(monitor, cache, registry, notifier, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=0)
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000), snapshot_factory(buys=12, volume=900))

    async def scenario():
        await monitor.run_batch()
        await monitor.run_batch()

    run(scenario())
    assert notifier.calls == []
    assert monitor.states.get(TOKEN).last_volume == 900


def test_missing_snapshot_leaves_state_untouched(monitor, cache, registry, notifier, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=0)
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000), None, snapshot_factory(buys=12, volume=1300))

    async def scenario():
        await monitor.run_batch()
        before = monitor.states.get(TOKEN)
        await monitor.run_batch()
        assert monitor.states.get(TOKEN) is before
        await monitor.run_batch()

    run(scenario())
    # the skipped cycle does not break the diff: 2 buys, 300 volume
    assert [e.amount_usd for _, e in notifier.calls] == [150]


def test_state_advances_every_cycle_so_deltas_are_not_double_counted(monitor, cache, registry, notifier, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=0)
    cache.push(
        TOKEN,
        snapshot_factory(buys=10, volume=1000),
        snapshot_factory(buys=12, volume=1400),
        snapshot_factory(buys=12, volume=1400),
        snapshot_factory(buys=15, volume=1700),
    )

    async def scenario():
        for _ in range(4):
            await monitor.run_batch()

    run(scenario())
    assert [e.amount_usd for _, e in notifier.calls] == [200, 100]


def test_leaderboard_records_once_per_token_per_cycle(monitor, cache, registry, board, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=0)
    registry.track(TOKEN, 2, min_buy_usd=0)
    registry.track(TOKEN, 3, min_buy_usd=10_000)
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000), snapshot_factory(buys=13, volume=1600))

    async def scenario():
        await monitor.run_batch()
        await monitor.run_batch()

    run(scenario())
    stats = board.get_buyer_stats(TOKEN, UNKNOWN_BUYER)
    assert stats.buy_count == 1
    assert stats.total_bought == 200
    assert cache.calls == [TOKEN, TOKEN]


def test_default_threshold_applies_when_unset(cache, board, notifier, snapshot_factory):
    registry = SubscriptionRegistry(default_min_buy_usd=100)
    registry.track(TOKEN, 1)
    monitor = BuyMonitor(cache, registry, board, notifier, default_min_buy_usd=500)
    grouped = registry.grouped_by_token()
    grouped[TOKEN][0].min_buy_usd = None
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000), snapshot_factory(buys=11, volume=1300))

    async def scenario():
        await monitor.check_token(TOKEN, grouped[TOKEN])
        return await monitor.check_token(TOKEN, grouped[TOKEN])

    assert run(scenario()) == []


def test_error_in_one_token_does_not_stop_the_batch(monitor, cache, registry, notifier, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=0)
    registry.track(OTHER_TOKEN, 1, min_buy_usd=0)
    cache.push(TOKEN, RuntimeError("boom"))
    cache.push(OTHER_TOKEN, snapshot_factory(token=OTHER_TOKEN, buys=1, volume=10))

    run(monitor.run_batch())
    assert monitor.states.get(TOKEN) is None
    assert monitor.states.get(OTHER_TOKEN).last_buy_count == 1
    assert monitor.batches_run == 1


def test_notifier_failure_does_not_affect_state(cache, registry, board, snapshot_factory):
    class BrokenNotifier:
        def notify(self, sub, event):
            raise RuntimeError("telegram down")

    registry.track(TOKEN, 1, min_buy_usd=0)
    monitor = BuyMonitor(cache, registry, board, BrokenNotifier(), default_min_buy_usd=0)
    cache.push(TOKEN, snapshot_factory(buys=1, volume=10), snapshot_factory(buys=2, volume=30))

    async def scenario():
        await monitor.run_batch()
        return await monitor.run_batch()

    assert run(scenario()) == 1
    assert monitor.states.get(TOKEN).last_buy_count == 2


def test_metadata_filled_from_first_snapshot(monitor, cache, registry, snapshot_factory):
    registry.track(TOKEN, 1)
    assert registry.list_tracked(1)[0].symbol == UNKNOWN
    cache.push(TOKEN, snapshot_factory(symbol="PEPE", name="Pepe"))

    run(monitor.run_batch())
    sub = registry.list_tracked(1)[0]
    assert (sub.symbol, sub.name) == ("PEPE", "Pepe")


def test_untracked_token_state_is_kept_harmlessly(monitor, cache, registry, notifier, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=0)
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000))
    run(monitor.run_batch())

    registry.untrack(TOKEN, 1)
    assert run(monitor.run_batch()) == 0
    assert monitor.states.get(TOKEN).last_buy_count == 10

    registry.track(TOKEN, 1, min_buy_usd=0)
    cache.push(TOKEN, snapshot_factory(buys=12, volume=1200))
    run(monitor.run_batch())
    assert [e.amount_usd for _, e in notifier.calls] == [100]


def test_overlapping_batch_is_skipped(registry, board, notifier, snapshot_factory):
    entered = threading.Event()
    release = threading.Event()

    class SlowCache:
        def fetch(self, token):
            entered.set()
            release.wait(5)
            return snapshot_factory()

    registry.track(TOKEN, 1)
    monitor = BuyMonitor(SlowCache(), registry, board, notifier, default_min_buy_usd=0)

    async def scenario():
        first = asyncio.create_task(monitor.run_batch())
        while not entered.is_set():
            await asyncio.sleep(0.01)
        skipped = await monitor.run_batch()
        release.set()
        return skipped, await first

    skipped, first = run(scenario())
    assert skipped is None
    assert first == 0
    assert monitor.batches_skipped == 1
    assert monitor.batches_run == 1


def test_state_store_is_case_insensitive():
    store = MonitorStateStore()
    assert store.get(TOKEN.upper()) is None
    store.put(TOKEN.upper(), TokenMonitorState(1, 2, 3.0, 0.0))
    assert store.get(TOKEN).last_volume == 3.0
    assert len(store) == 1
    store.discard(TOKEN)
    assert len(store) == 0


def test_stats_reports_counters(monitor, registry):
    registry.track(TOKEN, 1)
    monitor.start()
    stats = monitor.stats()
    assert stats["running"] is True
    assert stats["tracked_tokens"] == 1
    assert stats["batches_run"] == 0
    assert stats["chats"] == 1


def test_slow_fetch_does_not_block_other_tokens(registry, board, notifier, snapshot_factory):
    release = threading.Event()

    class SlowCache:
        def fetch(self, token):
            if token == TOKEN:
                release.wait(timeout=5)
            return snapshot_factory(token=token, buys=10, volume=1000)

    monitor = BuyMonitor(SlowCache(), registry, board, notifier, default_min_buy_usd=100)
    registry.track(TOKEN, 1)
    registry.track(OTHER_TOKEN, 1)

    async def scenario():
        batch = asyncio.create_task(monitor.run_batch())
        try:
            for _ in range(200):
                if monitor.states.get(OTHER_TOKEN) is not None:
                    break
                await asyncio.sleep(0.01)
            seeded_while_blocked = (
                monitor.states.get(OTHER_TOKEN) is not None,
                monitor.states.get(TOKEN) is None,
            )
        finally:
            release.set()
        await batch
        return seeded_while_blocked

    assert run(scenario()) == (True, True)
    assert monitor.states.get(TOKEN) is not None


def test_forget_resets_baseline(monitor, cache, registry, notifier, snapshot_factory):
    registry.track(TOKEN, 1, min_buy_usd=0)
    cache.push(TOKEN, snapshot_factory(buys=10, volume=1000), snapshot_factory(buys=20, volume=3000))
    run(monitor.run_batch())

    monitor.forget(TOKEN.upper())
    assert monitor.states.get(TOKEN) is None
    assert cache.invalidated == [TOKEN.upper()]

    # the next observation seeds again instead of reporting the gap
    assert run(monitor.run_batch()) == 0
    assert notifier.calls == []
    assert monitor.states.get(TOKEN).last_buy_count == 20
