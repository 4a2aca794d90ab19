import logging
from typing import Any, Dict, List, Optional

import requests

from errors import MalformedSnapshot, UpstreamUnavailable
from models import UNKNOWN, Snapshot

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "Mozilla/5.0",
    "Accept": "application/json",
}


def safe_float(x: Any) -> float:
    try:
        if isinstance(x, str):
            x = x.strip()
        return float(x)
    except (TypeError, ValueError):
        return 0.0


def _counter(x: Any) -> Optional[float]:
    if isinstance(x, bool) or x is None:
        return None
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    return v if v >= 0 else None


def parse_pair(p: Dict[str, Any]) -> Snapshot:
    """Build a Snapshot from a DexScreener pair payload.

    Raises MalformedSnapshot when the trailing 5m counters or volume are missing.
    """
    if not isinstance(p, dict):
        raise MalformedSnapshot("pair payload is not an object")

    txns = p.get("txns")
    m5 = txns.get("m5") if isinstance(txns, dict) else None
    volume = p.get("volume")
    if not isinstance(m5, dict) or not isinstance(volume, dict):
        raise MalformedSnapshot(f"pair {p.get('pairAddress')} has no m5 txns/volume")

    buys = _counter(m5.get("buys"))
    sells = _counter(m5.get("sells"))
    vol_m5 = _counter(volume.get("m5"))
    if buys is None or sells is None or vol_m5 is None:
        raise MalformedSnapshot(f"pair {p.get('pairAddress')} has invalid m5 counters")

    base = p.get("baseToken") or {}
    quote = p.get("quoteToken") or {}
    token_address = (base.get("address") or "").strip().lower()
    if not token_address:
        raise MalformedSnapshot(f"pair {p.get('pairAddress')} has no base token")

    liq = p.get("liquidity")
    change = p.get("priceChange")
    info = p.get("info")
    price = safe_float(p.get("priceUsd"))

    return Snapshot(
        token_address=token_address,
        pair_address=(p.get("pairAddress") or "").strip(),
        chain_id=(p.get("chainId") or "").lower(),
        buys_m5=int(buys),
        sells_m5=int(sells),
        volume_m5=vol_m5,
        symbol=(base.get("symbol") or UNKNOWN).strip(),
        name=(base.get("name") or UNKNOWN).strip(),
        quote_symbol=(quote.get("symbol") or "").strip(),
        dex_id=p.get("dexId") or "",
        url=p.get("url") or "",
        price_usd=price if price > 0 else None,
        liquidity_usd=safe_float(liq.get("usd")) if isinstance(liq, dict) else 0.0,
        market_cap=safe_float(p.get("marketCap")),
        fdv=safe_float(p.get("fdv")),
        volume_h24=safe_float(volume.get("h24")),
        price_change_h24=safe_float(change.get("h24")) if isinstance(change, dict) else 0.0,
        image_url=(info.get("imageUrl") or None) if isinstance(info, dict) else None,
    )


class DexScreenerClient:
    """Thin DexScreener HTTP client restricted to one chain.

    Every method raises UpstreamUnavailable on transport, HTTP or JSON errors.
    """

    def __init__(self, base_url: str, chain_id: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id.lower()
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(HEADERS)
        self.request_count = 0

    def close(self):
        self.session.close()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        self.request_count += 1
        try:
            res = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"GET {url} failed: {type(e).__name__}: {e}") from e

        if res.status_code == 429:
            raise UpstreamUnavailable(f"GET {url} rate limited")
        if res.status_code != 200:
            raise UpstreamUnavailable(f"GET {url} status={res.status_code}")

        try:
            js = res.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"GET {url} returned invalid JSON") from e
        if not isinstance(js, dict):
            raise UpstreamUnavailable(f"GET {url} returned {type(js).__name__}, expected object")
        return js

    def _same_chain(self, pairs: Any) -> List[Snapshot]:
        if not isinstance(pairs, list):
            return []
        out: List[Snapshot] = []
        for p in pairs:
            if not isinstance(p, dict) or (p.get("chainId") or "").lower() != self.chain_id:
                continue
            try:
                out.append(parse_pair(p))
            except MalformedSnapshot as e:
                logger.warning("Skipping malformed pair: %s", e)
        return out

    def fetch_pairs(self, token_address: str) -> List[Snapshot]:
        js = self._get(f"/dex/tokens/{token_address}")
        return self._same_chain(js.get("pairs"))

    def fetch_pair_by_address(self, pair_address: str) -> Optional[Snapshot]:
        js = self._get(f"/dex/pairs/{self.chain_id}/{pair_address}")
        pair = js.get("pair")
        if pair is None and isinstance(js.get("pairs"), list) and js["pairs"]:
            pair = js["pairs"][0]
        found = self._same_chain([pair]) if pair else []
        return found[0] if found else None

    def search_pairs(self, query: str) -> List[Snapshot]:
        js = self._get("/dex/search", params={"q": query})
        return self._same_chain(js.get("pairs"))
