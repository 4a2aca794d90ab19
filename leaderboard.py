import math
import threading
import time
from dataclasses import replace
from typing import Dict, List, Optional

from models import BuyerStats

NOT_RANKED = -1


class Leaderboard:
    """Per-token buyer statistics.

    Tokens are keyed by lowercased address, buyers by their identity as given.
    Reads return copies, so callers never see a half-applied update.
    """

    def __init__(self):
        self._buyers: Dict[str, Dict[str, BuyerStats]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(token_address: str) -> str:
        return token_address.strip().lower()

    def record_buy(self, token_address: str, buyer: str, amount_usd: float, timestamp: Optional[float] = None) -> BuyerStats:
        if not math.isfinite(amount_usd) or amount_usd < 0:
            raise ValueError(f"invalid buy amount: {amount_usd!r}")
        ts = timestamp if timestamp is not None else time.time()

        with self._lock:
            token_buyers = self._buyers.setdefault(self._key(token_address), {})
            stats = token_buyers.get(buyer)
            if stats is None:
                stats = BuyerStats(address=buyer)
                token_buyers[buyer] = stats
            stats.add(amount_usd, ts)
            return replace(stats)

    def _sorted(self, token_address: str) -> List[BuyerStats]:
        token_buyers = self._buyers.get(self._key(token_address))
        if not token_buyers:
            return []
        # sorted() is stable: equal totals keep insertion order
        return sorted(token_buyers.values(), key=lambda s: s.total_bought, reverse=True)

    def get_top_buyers(self, token_address: str, limit: int = 10) -> List[BuyerStats]:
        if limit <= 0:
            return []
        with self._lock:
            return [replace(s) for s in self._sorted(token_address)[:limit]]

    def get_buyer_rank(self, token_address: str, buyer: str) -> int:
        with self._lock:
            for i, stats in enumerate(self._sorted(token_address)):
                if stats.address == buyer:
                    return i + 1
        return NOT_RANKED

    def get_buyer_stats(self, token_address: str, buyer: str) -> Optional[BuyerStats]:
        with self._lock:
            stats = self._buyers.get(self._key(token_address), {}).get(buyer)
            return replace(stats) if stats else None

    def get_total_buyers(self, token_address: str) -> int:
        with self._lock:
            return len(self._buyers.get(self._key(token_address), {}))

    def get_total_volume(self, token_address: str) -> float:
        with self._lock:
            return sum(s.total_bought for s in self._buyers.get(self._key(token_address), {}).values())

    def clear_token_data(self, token_address: str):
        with self._lock:
            self._buyers.pop(self._key(token_address), None)

    def clear_all_data(self):
        with self._lock:
            self._buyers.clear()
