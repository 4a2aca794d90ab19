import asyncio
import html
import logging
import math

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from formatter import format_leaderboard, short_addr, usd
from models import UNKNOWN
from subscriptions import normalize_address

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "<b>Buy Bot Commands</b>\n\n"
    "📊 <b>Tracking</b>\n"
    "/track &lt;token_address&gt; - Start tracking token buys (pair addresses work too)\n"
    "/untrack &lt;token_address&gt; - Stop tracking a token\n"
    "/list - Show all tracked tokens\n"
    "/leaderboard &lt;token_address&gt; - Top buyers for a token\n"
    "/search &lt;query&gt; - Find pairs on the tracked chain\n\n"
    "⚙️ <b>Settings</b>\n"
    "/setmin &lt;amount&gt; - Set minimum buy notification (USD)\n\n"
    "/status - Monitor status"
)


def _services(context: ContextTypes.DEFAULT_TYPE):
    return context.application.bot_data


def _arg(context: ContextTypes.DEFAULT_TYPE) -> str:
    return " ".join(context.args or []).strip()


# ===================== COMMANDS =====================
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    chain = _services(context)["chain_id"]
    await update.message.reply_text(
        f"🤖 <b>Buy Bot</b>\n\nBuy notifications for tokens on <b>{html.escape(chain)}</b>.\n\n" + HELP_TEXT,
        parse_mode="HTML",
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(HELP_TEXT, parse_mode="HTML")


async def _resolve_token(cache, address: str):
    """Map a token or pair address to (token_address, snapshot or None)."""
    snapshot = await asyncio.to_thread(cache.fetch, address)
    if snapshot is not None:
        return address, snapshot
    pair = await asyncio.to_thread(cache.fetch_pair, address)
    if pair is not None and pair.token_address:
        return normalize_address(pair.token_address), pair
    return address, None


async def track(update: Update, context: ContextTypes.DEFAULT_TYPE):
    address = normalize_address(_arg(context))
    if not address:
        await update.message.reply_text("❌ Please provide a token address.\nUsage: /track <token_address>")
        return

    services = _services(context)
    registry = services["registry"]
    chat_id = update.effective_chat.id
    address, snapshot = await _resolve_token(services["cache"], address)
    if not registry.track(address, chat_id):
        await update.message.reply_text("⚠️ This token is already being tracked.")
        return
    if snapshot is not None:
        registry.update_metadata(address, snapshot.symbol, snapshot.name)

    label = f"<b>{html.escape(snapshot.symbol)}</b> " if snapshot is not None else ""
    threshold = next(s.min_buy_usd for s in registry.list_tracked(chat_id) if s.token_address == address)
    await update.message.reply_text(
        f"✅ Now tracking: {label}<code>{html.escape(address)}</code>\n\n"
        f"You'll receive notifications for buys over {usd(threshold)}",
        parse_mode="HTML",
    )


async def untrack(update: Update, context: ContextTypes.DEFAULT_TYPE):
    address = normalize_address(_arg(context))
    if not address:
        await update.message.reply_text("❌ Please provide a token address.\nUsage: /untrack <token_address>")
        return

    services = _services(context)
    registry = services["registry"]
    if not registry.untrack(address, update.effective_chat.id):
        await update.message.reply_text("⚠️ This token is not being tracked.")
        return
    if not registry.is_tracked(address):
        services["monitor"].forget(address)
    await update.message.reply_text(f"✅ Stopped tracking: <code>{html.escape(address)}</code>", parse_mode="HTML")


async def list_tokens(update: Update, context: ContextTypes.DEFAULT_TYPE):
    subs = _services(context)["registry"].list_tracked(update.effective_chat.id)
    if not subs:
        await update.message.reply_text(
            "📭 No tokens are currently being tracked.\n\nUse /track <token_address> to start tracking."
        )
        return

    lines = [
        f"{i}. {html.escape(s.symbol)} - <code>{html.escape(s.token_address)}</code> (min {usd(s.min_buy_usd)})"
        for i, s in enumerate(subs, start=1)
    ]
    await update.message.reply_text(
        f"📊 <b>Tracked Tokens ({len(subs)})</b>\n\n" + "\n".join(lines),
        parse_mode="HTML",
    )


async def setmin(update: Update, context: ContextTypes.DEFAULT_TYPE):
    raw = _arg(context)
    if not raw:
        await update.message.reply_text("❌ Please provide an amount.\nUsage: /setmin <amount>")
        return
    try:
        amount = float(raw)
    except ValueError:
        amount = -1.0
    if not math.isfinite(amount) or amount < 0:
        await update.message.reply_text("❌ Please provide a valid non-negative number.")
        return

    _services(context)["registry"].set_min_buy_amount(update.effective_chat.id, amount)
    await update.message.reply_text(f"✅ Minimum buy notification set to ${amount:,.2f}")


async def leaderboard(update: Update, context: ContextTypes.DEFAULT_TYPE):
    address = normalize_address(_arg(context))
    if not address:
        await update.message.reply_text("❌ Please provide a token address.\nUsage: /leaderboard <token_address>")
        return

    services = _services(context)
    board = services["leaderboard"]
    symbol = next(
        (s.symbol for s in services["registry"].list_tracked(update.effective_chat.id)
         if s.token_address == address and s.symbol != UNKNOWN),
        short_addr(address),
    )
    text = format_leaderboard(
        symbol,
        board.get_top_buyers(address, services["leaderboard_size"]),
        board.get_total_buyers(address),
        board.get_total_volume(address),
    )
    await update.message.reply_text(text, parse_mode="HTML")


async def search(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = _arg(context)
    if not query:
        await update.message.reply_text("❌ Please provide a search query.\nUsage: /search <query>")
        return

    client = _services(context)["client"]
    try:
        pairs = await asyncio.to_thread(client.search_pairs, query)
    except Exception as e:
        logger.warning("Search for %r failed: %s", query, e)
        await update.message.reply_text("⚠️ Search is unavailable right now, try again later.")
        return

    if not pairs:
        await update.message.reply_text("🔍 No pairs found.")
        return

    pairs = sorted(pairs, key=lambda s: s.liquidity_usd, reverse=True)[:10]
    lines = [
        f"• <b>{html.escape(s.symbol)}</b>/{html.escape(s.quote_symbol)} "
        f"liq {usd(s.liquidity_usd)}\n   <code>{html.escape(s.token_address)}</code>"
        for s in pairs
    ]
    await update.message.reply_text("🔍 <b>Results</b>\n\n" + "\n".join(lines), parse_mode="HTML")


async def status(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = _services(context)
    stats = services["monitor"].stats()
    cache = services["cache"].stats()
    notifier = services["notifier"]
    await update.message.reply_text(
        f"Running: {'YES' if stats['running'] else 'NO'}\n"
        f"Tracked tokens: {stats['tracked_tokens']} across {stats['chats']} chats\n"
        f"Batches run: {stats['batches_run']} (skipped {stats['batches_skipped']})\n"
        f"Buy events: {stats['events_emitted']}\n"
        f"Alerts sent: {notifier.sent} (failed {notifier.failed}, dropped {notifier.dropped})\n"
        f"Cache: {cache['size']} entries, hit rate {cache['hit_rate_pct']:.0f}%, stale served {cache['stale_served']}\n"
        f"DexScreener requests: {services['client'].request_count}\n",
    )


# ===================== JOBS =====================
async def monitor_job(context: ContextTypes.DEFAULT_TYPE):
    monitor = _services(context)["monitor"]
    if not monitor.running:
        return
    await monitor.run_batch()


def register_handlers(app: Application):
    app.add_handler(CommandHandler("start", start))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("track", track))
    app.add_handler(CommandHandler("untrack", untrack))
    app.add_handler(CommandHandler("list", list_tokens))
    app.add_handler(CommandHandler("setmin", setmin))
    app.add_handler(CommandHandler("leaderboard", leaderboard))
    app.add_handler(CommandHandler("search", search))
    app.add_handler(CommandHandler("status", status))
