"""Exceptions raised between the market-data, cache, detector and delivery layers.

None of these are fatal: the snapshot cache absorbs the upstream ones, the
notifier absorbs delivery failures.
"""


class BuyBotError(Exception):
    pass


class UpstreamUnavailable(BuyBotError):
    """Network, HTTP or decoding failure talking to the market-data API."""


class NoData(BuyBotError):
    """The token has no usable pair on the configured chain."""


class MalformedSnapshot(NoData):
    """A pair payload is missing the trailing-window counters or volume."""


class DeliveryFailure(BuyBotError):
    """A buy alert could not be delivered to a chat."""

    def __init__(self, chat_id: int, reason: str):
        super().__init__(f"delivery to chat {chat_id} failed: {reason}")
        self.chat_id = chat_id
        self.reason = reason
