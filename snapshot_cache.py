"""
SNAPSHOT CACHE

Most-recent DexScreener snapshot per token (and per pair address), so the
polling interval does not translate 1:1 into upstream requests.

- fresh for ``ttl_seconds``: served without touching the network
- on upstream errors, the last snapshot is served until ``stale_seconds``
- never raises to the caller; None means "no data this cycle"
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from dexscreener import DexScreenerClient
from errors import NoData, UpstreamUnavailable
from models import Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Entry:
    snapshot: Snapshot
    stored_at: float


class SnapshotCache:
    def __init__(
        self,
        client: DexScreenerClient,
        ttl_seconds: float = 5.0,
        stale_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.stale_seconds = max(stale_seconds, ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

        self.hits = 0
        self.misses = 0
        self.stale_served = 0
        self.errors = 0

    def fetch(self, token_address: str) -> Optional[Snapshot]:
        """Best same-chain pair (by liquidity) for a token, or None."""
        token_address = token_address.strip().lower()
        return self._get_or_refresh(f"token:{token_address}", lambda: self._best_pair(token_address))

    def fetch_pair(self, pair_address: str) -> Optional[Snapshot]:
        pair_address = pair_address.strip()
        return self._get_or_refresh(f"pair:{pair_address.lower()}", lambda: self._single_pair(pair_address))

    def _best_pair(self, token_address: str) -> Snapshot:
        pairs = self.client.fetch_pairs(token_address)
        if not pairs:
            raise NoData(f"no {self.client.chain_id} pair for {token_address}")
        return max(pairs, key=lambda s: s.liquidity_usd)

    def _single_pair(self, pair_address: str) -> Snapshot:
        snapshot = self.client.fetch_pair_by_address(pair_address)
        if snapshot is None:
            raise NoData(f"pair {pair_address} not found on {self.client.chain_id}")
        return snapshot

    def _get_or_refresh(self, key: str, loader: Callable[[], Snapshot]) -> Optional[Snapshot]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry and now - entry.stored_at < self.ttl_seconds:
                self.hits += 1
                return entry.snapshot
            self.misses += 1

        try:
            snapshot = loader()
        except NoData as e:
            with self._lock:
                self._entries.pop(key, None)
            logger.info("No data for %s: %s", key, e)
            return None
        except UpstreamUnavailable as e:
            logger.warning("Upstream unavailable for %s: %s", key, e)
            return self._stale(key)
        except Exception:
            logger.exception("Unexpected error refreshing %s", key)
            return self._stale(key)

        with self._lock:
            self._entries[key] = _Entry(snapshot=snapshot, stored_at=self._clock())
        return snapshot

    def _stale(self, key: str) -> Optional[Snapshot]:
        with self._lock:
            self.errors += 1
            entry = self._entries.get(key)
            if entry and self._clock() - entry.stored_at < self.stale_seconds:
                self.stale_served += 1
                logger.info("Serving stale snapshot for %s", key)
                return entry.snapshot
        return None

    def invalidate(self, token_address: str):
        with self._lock:
            self._entries.pop(f"token:{token_address.strip().lower()}", None)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
            self.stale_served = 0
            self.errors = 0

    def stats(self) -> Dict[str, float]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate_pct": (self.hits / total * 100) if total else 0.0,
                "stale_served": self.stale_served,
                "errors": self.errors,
                "ttl_seconds": self.ttl_seconds,
            }
