from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Protocol, Sequence

from telegram import Bot
from telegram.error import TelegramError

from .models import Fare, Route, format_price
from .price_change import PriceChange

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def deliver(self, title: str, body: str, route_id: uuid.UUID) -> None: ...


class LogSink:
    """Writes alerts to the log; the default when nothing else is set up."""

    def deliver(self, title: str, body: str, route_id: uuid.UUID) -> None:
        logger.warning("%s [%s]\n%s", title, route_id, body)


class TelegramSink:
    """Sends alerts to a Telegram chat."""

    def __init__(self, token: str, chat_id: str) -> None:
        self.token = token
        self.chat_id = chat_id

    async def _send(self, text: str) -> None:
        async with Bot(token=self.token) as bot:
            await bot.send_message(chat_id=self.chat_id, text=text)

    def deliver(self, title: str, body: str, route_id: uuid.UUID) -> None:
        asyncio.run(self._send(f"{title}\n{body}"))


@dataclass(frozen=True, slots=True)
class PriceDropNotification:
    route_id: uuid.UUID
    origin: str
    destination: str
    destination_name: str
    previous_price: float
    current_price: float
    currency: str
    drop_percent: float

    @property
    def title(self) -> str:
        return "Flight price drop 🎉"

    @property
    def body(self) -> str:
        return (
            f"{self.origin} → {self.destination} ({self.destination_name})\n"
            f"Down {self.drop_percent:.1f}%\n"
            f"{format_price(self.previous_price, self.currency)} → "
            f"{format_price(self.current_price, self.currency)}"
        )


class Notifier:
    """Raises one alert per route whose price dropped significantly."""

    def __init__(self, sinks: Optional[Iterable[NotificationSink]] = None) -> None:
        self.sinks: List[NotificationSink] = list(sinks) if sinks else [LogSink()]

    def check_and_notify(
        self,
        routes: Sequence[Route],
        current: Mapping[uuid.UUID, Fare],
        previous: Mapping[uuid.UUID, Optional[Fare]],
    ) -> List[PriceDropNotification]:
        sent: List[PriceDropNotification] = []
        for route in routes:
            if not route.enabled:
                continue
            now, before = current.get(route.id), previous.get(route.id)
            if now is None or before is None:
                continue

            change = PriceChange(current_price=now.price, previous_price=before.price)
            if not change.is_significant_drop:
                continue

            note = PriceDropNotification(
                route_id=route.id,
                origin=route.origin,
                destination=route.destination,
                destination_name=route.destination_name,
                previous_price=before.price,
                current_price=now.price,
                currency=now.currency,
                drop_percent=abs(change.change_percent),
            )
            self._deliver(note)
            sent.append(note)

        logger.info("Sent %d price-drop notification(s)", len(sent))
        return sent

    def _deliver(self, note: PriceDropNotification) -> None:
        for sink in self.sinks:
            try:
                sink.deliver(note.title, note.body, note.route_id)
            except (TelegramError, OSError, RuntimeError) as exc:
                logger.warning(
                    "Delivery via %s failed for %s: %s",
                    type(sink).__name__,
                    note.route_id,
                    exc,
                )


__all__ = [
    "NotificationSink",
    "LogSink",
    "TelegramSink",
    "PriceDropNotification",
    "Notifier",
]
