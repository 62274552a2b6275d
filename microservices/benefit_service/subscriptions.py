"""
Benefit Service Subscriptions

Best-effort push of benefit list changes. A subscription recomputes its
list on every change notification and hands it to the callback; cancelling
simply stops delivery.
"""

import asyncio
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .models import Benefit

logger = logging.getLogger(__name__)

BenefitLoader = Callable[[], Awaitable[List[Benefit]]]
BenefitCallback = Callable[[List[Benefit]], Any]


class Subscription:
    """Handle returned to subscribers"""

    def __init__(
        self,
        notifier: "BenefitChangeNotifier",
        loader: BenefitLoader,
        callback: BenefitCallback,
        label: str,
    ):
        self.subscription_id = str(uuid.uuid4())
        self.label = label
        self._notifier = notifier
        self._loader = loader
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._notifier.remove(self.subscription_id)
        logger.debug(f"Subscription {self.subscription_id} ({self.label}) cancelled")

    async def deliver(self) -> bool:
        """Recompute and deliver once. Returns False when nothing was delivered."""
        if not self._active:
            return False
        try:
            benefits = await self._loader()
        except Exception as e:
            logger.warning(f"Subscription {self.label} refresh failed, skipping delivery: {e}")
            return False
        # Cancelled while loading
        if not self._active:
            return False
        try:
            result = self._callback(benefits)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Subscription {self.label} callback raised: {e}")
            return False
        return True


class BenefitChangeNotifier:
    """Registry of live subscriptions"""

    def __init__(self):
        self._subscriptions: Dict[str, Subscription] = {}

    async def subscribe(
        self,
        loader: BenefitLoader,
        callback: BenefitCallback,
        label: str = "",
        deliver_initial: bool = True,
    ) -> Subscription:
        subscription = Subscription(self, loader, callback, label)
        self._subscriptions[subscription.subscription_id] = subscription
        if deliver_initial:
            await subscription.deliver()
        return subscription

    def remove(self, subscription_id: str) -> Optional[Subscription]:
        return self._subscriptions.pop(subscription_id, None)

    async def notify_changed(self) -> int:
        """Refresh every live subscription; returns how many deliveries succeeded"""
        subscriptions = list(self._subscriptions.values())
        if not subscriptions:
            return 0
        delivered = await asyncio.gather(*(s.deliver() for s in subscriptions))
        return sum(1 for ok in delivered if ok)

    def cancel_all(self) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.cancel()

    def __len__(self) -> int:
        return len(self._subscriptions)
