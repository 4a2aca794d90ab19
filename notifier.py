import asyncio
import logging
from typing import Optional, Tuple

from telegram.error import TelegramError

from errors import DeliveryFailure
from formatter import build_buy_message
from models import BuyEvent, Subscription

logger = logging.getLogger(__name__)


class BuyNotifier:
    """Outbound buy alert queue.

    ``notify`` only enqueues, so a slow Telegram API never stretches a
    monitor batch. A single worker task drains the queue; failed deliveries
    are logged and dropped.
    """

    def __init__(self, bot, max_queue: int = 1000):
        self.bot = bot
        self.queue: "asyncio.Queue[Tuple[Subscription, BuyEvent]]" = asyncio.Queue(maxsize=max_queue)
        self._worker: Optional[asyncio.Task] = None
        self.sent = 0
        self.failed = 0
        self.dropped = 0

    def notify(self, sub: Subscription, event: BuyEvent):
        try:
            self.queue.put_nowait((sub, event))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Notification queue full, dropping alert for chat %s", sub.chat_id)

    async def start(self):
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self, drain_timeout: float = 5.0):
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self.queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Dropping %d undelivered alerts on shutdown", self.queue.qsize())
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _run(self):
        while True:
            sub, event = await self.queue.get()
            try:
                await self.deliver(sub, event)
                self.sent += 1
            except DeliveryFailure as e:
                self.failed += 1
                logger.warning("%s", e)
            except Exception:
                self.failed += 1
                logger.exception("Unexpected error delivering alert to chat %s", sub.chat_id)
            finally:
                self.queue.task_done()

    async def deliver(self, sub: Subscription, event: BuyEvent):
        text, keyboard = build_buy_message(sub, event)
        image = event.snapshot.image_url
        try:
            if image:
                await self.bot.send_photo(
                    chat_id=sub.chat_id,
                    photo=image,
                    caption=text,
                    parse_mode="HTML",
                    reply_markup=keyboard,
                )
            else:
                await self.bot.send_message(
                    chat_id=sub.chat_id,
                    text=text,
                    parse_mode="HTML",
                    reply_markup=keyboard,
                    disable_web_page_preview=True,
                )
        except TelegramError as e:
            raise DeliveryFailure(sub.chat_id, f"{type(e).__name__}: {e}") from e
