from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

UNKNOWN = "Unknown"

# DexScreener pair statistics carry no wallet addresses, so estimated buys are
# attributed to this placeholder identity.
UNKNOWN_BUYER = "unknown"


@dataclass(frozen=True)
class Snapshot:
    """One read of a pair's market statistics.

    The ``buys_m5`` / ``sells_m5`` / ``volume_m5`` counters cover the trailing
    5 minute window reported by DexScreener.
    """

    token_address: str
    pair_address: str
    chain_id: str
    buys_m5: int
    sells_m5: int
    volume_m5: float
    symbol: str = UNKNOWN
    name: str = UNKNOWN
    quote_symbol: str = ""
    dex_id: str = ""
    url: str = ""
    price_usd: Optional[float] = None
    liquidity_usd: float = 0.0
    market_cap: float = 0.0
    fdv: float = 0.0
    volume_h24: float = 0.0
    price_change_h24: float = 0.0
    image_url: Optional[str] = None
    fetched_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TokenMonitorState:
    last_buy_count: int
    last_sell_count: int
    last_volume: float
    last_checked_at: float

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, checked_at: Optional[float] = None) -> "TokenMonitorState":
        return cls(
            last_buy_count=snapshot.buys_m5,
            last_sell_count=snapshot.sells_m5,
            last_volume=snapshot.volume_m5,
            last_checked_at=checked_at if checked_at is not None else time.time(),
        )


@dataclass(frozen=True)
class BuyEvent:
    """Estimated buy derived from two consecutive snapshots.

    ``amount_usd`` is the average size of the ``buy_count`` new buys, not the
    value of any single transaction.
    """

    token_address: str
    amount_usd: float
    buy_count: int
    volume_usd: float
    snapshot: Snapshot
    buyer: str = UNKNOWN_BUYER
    timestamp: float = field(default_factory=time.time)


@dataclass
class BuyerStats:
    address: str
    total_bought: float = 0.0
    buy_count: int = 0
    avg_buy_size: float = 0.0
    first_buy_time: Optional[float] = None
    last_buy_time: Optional[float] = None

    def add(self, amount_usd: float, timestamp: float):
        self.total_bought += amount_usd
        self.buy_count += 1
        self.avg_buy_size = self.total_bought / self.buy_count
        if self.first_buy_time is None:
            self.first_buy_time = timestamp
        self.last_buy_time = timestamp


@dataclass
class Subscription:
    token_address: str
    chat_id: int
    min_buy_usd: Optional[float] = None
    symbol: str = UNKNOWN
    name: str = UNKNOWN
