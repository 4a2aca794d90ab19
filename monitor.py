"""Buy detection over DexScreener trailing-window statistics.

DexScreener only reports aggregated counters for the last 5 minutes (buys,
sells, volume). A buy is inferred when both the buy count and the volume grew
since the previous check; its size is estimated as volume delta / buy delta.

Per token the detector is a two-state machine:

    Uninitialized --first snapshot--> Tracking

The first snapshot only seeds the baseline. Every later check replaces the
baseline with the observed counters whether or not an event fired, so a
window rollover (counters going down) is absorbed instead of reported.
"""

import asyncio
import logging
import threading
import time
from typing import Dict, List, Optional

from leaderboard import Leaderboard
from models import UNKNOWN, UNKNOWN_BUYER, BuyEvent, Subscription, TokenMonitorState
from snapshot_cache import SnapshotCache
from subscriptions import SubscriptionRegistry

logger = logging.getLogger(__name__)


class MonitorStateStore:
    """Last observed counters per token address (lowercased)."""

    def __init__(self):
        self._states: Dict[str, TokenMonitorState] = {}
        self._lock = threading.Lock()

    def get(self, token_address: str) -> Optional[TokenMonitorState]:
        with self._lock:
            return self._states.get(token_address.lower())

    def put(self, token_address: str, state: TokenMonitorState):
        with self._lock:
            self._states[token_address.lower()] = state

    def discard(self, token_address: str):
        with self._lock:
            self._states.pop(token_address.lower(), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


class BuyMonitor:
    def __init__(
        self,
        cache: SnapshotCache,
        registry: SubscriptionRegistry,
        leaderboard: Leaderboard,
        notifier,
        default_min_buy_usd: float,
        states: Optional[MonitorStateStore] = None,
    ):
        self.cache = cache
        self.registry = registry
        self.leaderboard = leaderboard
        self.notifier = notifier
        self.default_min_buy_usd = default_min_buy_usd
        self.states = states if states is not None else MonitorStateStore()

        self._busy = asyncio.Lock()
        self.running = False
        self.batches_run = 0
        self.batches_skipped = 0
        self.events_emitted = 0
        self.last_batch_at: Optional[float] = None
        self.last_batch_seconds: Optional[float] = None

    def start(self):
        self.running = True
        logger.info("Buy monitor started")

    def stop(self):
        self.running = False
        logger.info("Buy monitor stopped")

    def forget(self, address: str):
        """Drop the baseline and cached snapshot of a token nobody tracks anymore.

        Tracking it again starts over from a fresh baseline.
        """
        self.states.discard(address)
        self.cache.invalidate(address)

    async def run_batch(self) -> Optional[int]:
        """Check every tracked token once.

        Returns the number of events emitted, or None when the previous batch
        is still running and this one was skipped.
        """
        if self._busy.locked():
            self.batches_skipped += 1
            logger.debug("Previous batch still running, skipping")
            return None

        async with self._busy:
            started = time.monotonic()
            grouped = self.registry.grouped_by_token()
            emitted = 0
            if grouped:
                results = await asyncio.gather(
                    *(self.check_token(address, subs) for address, subs in grouped.items()),
                    return_exceptions=True,
                )
                for address, res in zip(grouped, results):
                    if isinstance(res, BaseException):
                        logger.error("Check for %s failed: %r", address, res)
                    else:
                        emitted += len(res)

            self.batches_run += 1
            self.events_emitted += emitted
            self.last_batch_at = time.time()
            self.last_batch_seconds = time.monotonic() - started
            return emitted

    async def check_token(self, address: str, subscriptions: List[Subscription]) -> List[BuyEvent]:
        """One check of one token; never raises."""
        try:
            return await self._check_token(address.lower(), subscriptions)
        except Exception:
            logger.exception("Error checking token %s", address)
            return []

    async def _check_token(self, address: str, subscriptions: List[Subscription]) -> List[BuyEvent]:
        snapshot = await asyncio.to_thread(self.cache.fetch, address)
        if snapshot is None:
            return []

        if any(s.symbol == UNKNOWN for s in subscriptions):
            self.registry.update_metadata(address, snapshot.symbol, snapshot.name)

        previous = self.states.get(address)
        current = TokenMonitorState.from_snapshot(snapshot)

        if previous is None:
            self.states.put(address, current)
            logger.info("Baseline for %s (%s): buys=%d volume=%.2f", snapshot.symbol, address, current.last_buy_count, current.last_volume)
            return []

        delta_buys = current.last_buy_count - previous.last_buy_count
        delta_volume = current.last_volume - previous.last_volume
        self.states.put(address, current)

        if delta_buys <= 0 or delta_volume <= 0:
            return []

        estimate = delta_volume / delta_buys
        logger.info("%s: %d new buys, +$%.2f volume, ~$%.2f each", snapshot.symbol, delta_buys, delta_volume, estimate)

        self.leaderboard.record_buy(address, UNKNOWN_BUYER, estimate)

        events: List[BuyEvent] = []
        for sub in subscriptions:
            if estimate < self._threshold(sub):
                continue
            event = BuyEvent(
                token_address=address,
                amount_usd=estimate,
                buy_count=delta_buys,
                volume_usd=delta_volume,
                snapshot=snapshot,
            )
            events.append(event)
            try:
                self.notifier.notify(sub, event)
            except Exception:
                logger.exception("Failed to queue buy alert for chat %s", sub.chat_id)
        return events

    def _threshold(self, sub: Subscription) -> float:
        return sub.min_buy_usd if sub.min_buy_usd is not None else self.default_min_buy_usd

    def stats(self) -> Dict[str, object]:
        return {
            "running": self.running,
            "tracked_tokens": self.registry.token_count(),
            "chats": self.registry.chat_count(),
            "token_states": len(self.states),
            "batches_run": self.batches_run,
            "batches_skipped": self.batches_skipped,
            "events_emitted": self.events_emitted,
            "last_batch_at": self.last_batch_at,
            "last_batch_seconds": self.last_batch_seconds,
        }
