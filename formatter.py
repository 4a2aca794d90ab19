"""Buy bot message formatting.

Buy alert layout:

🔔 PEPE Buy!
💰 ~$200.00 avg over 3 buys
💵 Price $0.000123
🟢 24h +12.50%
💸 Market Cap $1.20M
🌊 Liquidity $250.00K
📊 Volume 24h $80.00K

And one button:
📊 DexScreener
"""

from __future__ import annotations

import html
from typing import List, Optional, Tuple

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from models import BuyerStats, BuyEvent, Subscription

MEDALS = ["🥇", "🥈", "🥉"]


def format_number(v: Optional[float], decimals: int = 2) -> str:
    if v is None:
        return "—"
    v = float(v)
    if abs(v) >= 1e9:
        return f"{v / 1e9:.{decimals}f}B"
    if abs(v) >= 1e6:
        return f"{v / 1e6:.{decimals}f}M"
    if abs(v) >= 1e3:
        return f"{v / 1e3:.{decimals}f}K"
    return f"{v:.{decimals}f}"


def usd(v: Optional[float], decimals: int = 2) -> str:
    if v is None:
        return "—"
    return f"${format_number(v, decimals)}"


def pct(v: float, decimals: int = 2) -> str:
    sign = "+" if v >= 0 else ""
    return f"{sign}{v:.{decimals}f}%"


def price(v: Optional[float]) -> str:
    if v is None or v <= 0:
        return "—"
    if v >= 1:
        return f"${v:,.4f}"
    return "$" + f"{v:.10f}".rstrip("0").rstrip(".")


def short_addr(a: str, left: int = 6, right: int = 4) -> str:
    if not a:
        return ""
    a = str(a)
    if len(a) <= left + right:
        return a
    return f"{a[:left]}...{a[-right:]}"


def build_buy_message(sub: Subscription, event: BuyEvent) -> Tuple[str, Optional[InlineKeyboardMarkup]]:
    """Return (html_text, InlineKeyboardMarkup)"""
    snap = event.snapshot
    symbol = html.escape(snap.symbol or sub.symbol)
    quote = html.escape(snap.quote_symbol)
    pair_line = f"{symbol}/{quote}" if quote else symbol

    change = snap.price_change_h24
    change_emoji = "🟢" if change >= 0 else "🔴"
    mcap = snap.market_cap or snap.fdv

    buys_txt = "1 buy" if event.buy_count == 1 else f"{event.buy_count} buys"

    text = (
        f"🔔 <b>{pair_line} Buy!</b>\n\n"
        f"💰 <b>~{usd(event.amount_usd)}</b> avg over {buys_txt}\n"
        f"💵 Price <b>{price(snap.price_usd)}</b>\n"
        f"{change_emoji} 24h <b>{pct(change)}</b>\n\n"
        f"💸 Market Cap <b>{usd(mcap)}</b>\n"
        f"🌊 Liquidity <b>{usd(snap.liquidity_usd)}</b>\n"
        f"📊 Volume 24h <b>{usd(snap.volume_h24)}</b>\n\n"
        f"<code>{html.escape(event.token_address)}</code>"
    )

    buttons = None
    if snap.url:
        buttons = InlineKeyboardMarkup([[InlineKeyboardButton("📊 DexScreener", url=snap.url)]])

    return text, buttons


def format_leaderboard(symbol: str, buyers: List[BuyerStats], total_buyers: int, total_volume: float) -> str:
    symbol = html.escape(symbol)
    if not buyers:
        return f"📊 <b>{symbol} Leaderboard</b>\n\nNo buyers tracked yet."

    text = f"🏆 <b>{symbol} Top Buyers</b>\n\n"
    for i, b in enumerate(buyers):
        medal = MEDALS[i] if i < len(MEDALS) else f"{i + 1}."
        text += (
            f"{medal} <code>{html.escape(short_addr(b.address))}</code>\n"
            f"   💰 Total: {usd(b.total_bought)} | Avg: {usd(b.avg_buy_size)}\n"
            f"   📊 Buys: {b.buy_count}\n\n"
        )
    text += f"👥 Buyers: <b>{total_buyers}</b> | Volume: <b>{usd(total_volume)}</b>"
    return text
