import pytest

from models import Snapshot

TOKEN = "0xabc0000000000000000000000000000000000001"
OTHER_TOKEN = "0xdef0000000000000000000000000000000000002"


def pair_payload(
    token=TOKEN,
    chain="monad",
    buys=10,
    sells=5,
    volume_m5=1000.0,
    liquidity=50_000.0,
    pair_address="0xpair1",
    symbol="PEPE",
    image=None,
):
    p = {
        "chainId": chain,
        "dexId": "uniswap",
        "url": f"https://dexscreener.com/{chain}/{pair_address}",
        "pairAddress": pair_address,
        "baseToken": {"address": token, "name": "Pepe", "symbol": symbol},
        "quoteToken": {"address": "0xquote", "name": "Wrapped Monad", "symbol": "WMON"},
        "priceNative": "0.0001",
        "priceUsd": "0.00012",
        "txns": {
            "m5": {"buys": buys, "sells": sells},
            "h1": {"buys": buys * 4, "sells": sells * 4},
            "h6": {"buys": buys * 20, "sells": sells * 20},
            "h24": {"buys": buys * 50, "sells": sells * 50},
        },
        "volume": {"m5": volume_m5, "h1": volume_m5 * 4, "h6": volume_m5 * 20, "h24": 80_000.0},
        "priceChange": {"m5": 1.0, "h1": 2.0, "h6": 3.0, "h24": 12.5},
        "liquidity": {"usd": liquidity, "base": 1, "quote": 1},
        "fdv": 1_500_000,
        "marketCap": 1_200_000,
    }
    if image:
        p["info"] = {"imageUrl": image}
    return p


def make_snapshot(buys=10, volume=1000.0, sells=5, token=TOKEN, **kw):
    kw.setdefault("pair_address", "0xpair1")
    kw.setdefault("chain_id", "monad")
    kw.setdefault("symbol", "PEPE")
    kw.setdefault("name", "Pepe")
    return Snapshot(token_address=token, buys_m5=buys, sells_m5=sells, volume_m5=volume, **kw)


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def pair_factory():
    return pair_payload


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, sub, event):
        self.calls.append((sub, event))


@pytest.fixture
def notifier():
    return RecordingNotifier()
