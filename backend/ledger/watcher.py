"""Keeps a creator's view of their groups fresh.

The view is re-derived from storage on a fixed interval and whenever a
payment completion is announced. Both are best effort; nothing here makes
reads more consistent than a plain reload.
"""

import asyncio
import logging
import os
from typing import Callable, Optional

import schemas
from ledger.events import PaymentEventBus
from ledger.store import LedgerStore

logger = logging.getLogger(__name__)

REFRESH_INTERVAL_SECONDS = float(os.getenv("REFRESH_INTERVAL_SECONDS", "10"))


class GroupWatcher:
    def __init__(
        self,
        ledger: LedgerStore,
        creator_address: str,
        on_refresh: Callable[[list[schemas.Group]], None],
        events: Optional[PaymentEventBus] = None,
        interval: float = REFRESH_INTERVAL_SECONDS,
    ):
        self.ledger = ledger
        self.creator_address = creator_address
        self.on_refresh = on_refresh
        self.events = events
        self.interval = interval
        self.groups: list[schemas.Group] = []
        self._wake = asyncio.Event()
        self._stopped = False

    def refresh(self) -> list[schemas.Group]:
        self.groups = self.ledger.get_user_groups(self.creator_address)
        self.on_refresh(self.groups)
        return self.groups

    def _on_payment_completed(self, event: schemas.PaymentCompleted) -> None:
        # Duplicates and other creators' payments just cause one extra reload
        self._wake.set()

    async def run(self) -> None:
        """Refresh until stop() is called."""
        if self.events:
            self.events.subscribe(self._on_payment_completed)
        try:
            while not self._stopped:
                self.refresh()
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
                self._wake.clear()
        finally:
            if self.events:
                self.events.unsubscribe(self._on_payment_completed)
            logger.info(f"Stopped watching groups for {self.creator_address}")

    def stop(self) -> None:
        self._stopped = True
        self._wake.set()
