import threading
from dataclasses import replace
from typing import Dict, List, Optional

from models import UNKNOWN, Subscription


def normalize_address(token_address: str) -> str:
    return (token_address or "").strip().lower()


class SubscriptionRegistry:
    """In-memory (token, chat) registrations, each with its own buy threshold.

    The monitor reads ``grouped_by_token()`` once per batch; command handlers
    mutate the registry between batches.
    """

    def __init__(self, default_min_buy_usd: float):
        self.default_min_buy_usd = default_min_buy_usd
        self._by_chat: Dict[int, List[Subscription]] = {}
        self._chat_min: Dict[int, float] = {}
        self._lock = threading.Lock()

    def track(self, token_address: str, chat_id: int, min_buy_usd: Optional[float] = None) -> bool:
        """Register a token for a chat. Returns False if it was already tracked."""
        address = normalize_address(token_address)
        if not address:
            raise ValueError("token address is empty")
        if min_buy_usd is not None and min_buy_usd < 0:
            raise ValueError("minimum buy amount must not be negative")

        with self._lock:
            chat_subs = self._by_chat.setdefault(chat_id, [])
            if any(s.token_address == address for s in chat_subs):
                return False
            if min_buy_usd is None:
                min_buy_usd = self._chat_min.get(chat_id, self.default_min_buy_usd)
            chat_subs.append(Subscription(token_address=address, chat_id=chat_id, min_buy_usd=min_buy_usd))
            return True

    def untrack(self, token_address: str, chat_id: int) -> bool:
        address = normalize_address(token_address)
        with self._lock:
            chat_subs = self._by_chat.get(chat_id, [])
            kept = [s for s in chat_subs if s.token_address != address]
            if len(kept) == len(chat_subs):
                return False
            if kept:
                self._by_chat[chat_id] = kept
            else:
                self._by_chat.pop(chat_id, None)
            return True

    def set_min_buy_amount(self, chat_id: int, amount: float) -> int:
        """Apply a threshold to every token of a chat (and to tokens it tracks later)."""
        if amount < 0:
            raise ValueError("minimum buy amount must not be negative")
        with self._lock:
            self._chat_min[chat_id] = amount
            chat_subs = self._by_chat.get(chat_id, [])
            for s in chat_subs:
                s.min_buy_usd = amount
            return len(chat_subs)

    def list_tracked(self, chat_id: int) -> List[Subscription]:
        with self._lock:
            return [replace(s) for s in self._by_chat.get(chat_id, [])]

    def grouped_by_token(self) -> Dict[str, List[Subscription]]:
        with self._lock:
            grouped: Dict[str, List[Subscription]] = {}
            for chat_subs in self._by_chat.values():
                for s in chat_subs:
                    grouped.setdefault(s.token_address, []).append(replace(s))
            return grouped

    def update_metadata(self, token_address: str, symbol: str, name: str):
        """Fill in symbol/name for registrations still showing the placeholder."""
        address = normalize_address(token_address)
        with self._lock:
            for chat_subs in self._by_chat.values():
                for s in chat_subs:
                    if s.token_address == address and s.symbol == UNKNOWN:
                        s.symbol = symbol
                        s.name = name

    def token_count(self) -> int:
        with self._lock:
            return len({s.token_address for subs in self._by_chat.values() for s in subs})

    def chat_count(self) -> int:
        with self._lock:
            return len(self._by_chat)

    def is_tracked(self, token_address: str) -> bool:
        address = normalize_address(token_address)
        with self._lock:
            return any(s.token_address == address for subs in self._by_chat.values() for s in subs)
