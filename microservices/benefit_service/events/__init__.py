"""
Benefit Service Event Package

Event-driven architecture for benefit service:
- Publishing: Benefit lifecycle and redemption events
- Subscription: Profile and benefit events that invalidate cached listings
"""

from .models import (
    BenefitCreatedEventData,
    BenefitEventType,
    BenefitExhaustedEventData,
    BenefitExpiredEventData,
    BenefitRedeemedEventData,
    BenefitSubscribedEventType,
    BenefitUpdatedEventData,
)

from .publishers import (
    publish_benefit_created,
    publish_benefit_exhausted,
    publish_benefit_expired,
    publish_benefit_redeemed,
    publish_benefit_updated,
)

from .handlers import get_event_handlers, subscribe_event_handlers

__all__ = [
    # Event models
    "BenefitEventType",
    "BenefitSubscribedEventType",
    "BenefitCreatedEventData",
    "BenefitUpdatedEventData",
    "BenefitRedeemedEventData",
    "BenefitExhaustedEventData",
    "BenefitExpiredEventData",
    # Publishers
    "publish_benefit_created",
    "publish_benefit_updated",
    "publish_benefit_redeemed",
    "publish_benefit_exhausted",
    "publish_benefit_expired",
    # Handlers
    "get_event_handlers",
    "subscribe_event_handlers",
]
