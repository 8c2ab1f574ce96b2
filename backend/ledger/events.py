"""In-process broadcast of payment completions.

Delivery is at least once: every completion is published immediately and
again after a short delay, so a listener that registers late still hears
about it. Listeners must treat repeated events as the same event.
"""

import asyncio
import logging
import os
from typing import Callable

import schemas

logger = logging.getLogger(__name__)

NOTIFICATION_ECHO_DELAY = float(os.getenv("NOTIFICATION_ECHO_DELAY", "1.0"))

Listener = Callable[[schemas.PaymentCompleted], None]


class PaymentEventBus:
    def __init__(self, echo_delay: float = NOTIFICATION_ECHO_DELAY):
        self.echo_delay = echo_delay
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: schemas.PaymentCompleted) -> None:
        """Deliver to every current listener. A failing listener does not stop the others."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Payment listener failed for payment {event.payment_id}")

    def publish_completed(self, payment_id: str, group_id: str, amount: str) -> None:
        """Publish now, and once more after echo_delay if an event loop is running."""
        event = schemas.PaymentCompleted(payment_id=payment_id, group_id=group_id, amount=amount)
        self.publish(event)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        delayed = event.model_copy(update={"delayed": True})
        loop.call_later(self.echo_delay, self.publish, delayed)


# Shared bus for the process
payment_events = PaymentEventBus()
