"""
Benefit Service Event Publishers

Publish events for benefit lifecycle and redemptions.
Publishing is best-effort: failures are logged, never raised.
"""

import logging
from typing import List

from core.nats_client import Event, ServiceSource

from ..models import Benefit, Redemption
from .models import (
    BenefitCreatedEventData,
    BenefitEventType,
    BenefitExhaustedEventData,
    BenefitExpiredEventData,
    BenefitRedeemedEventData,
    BenefitUpdatedEventData,
)

logger = logging.getLogger(__name__)


async def _publish(event_bus, event_type: BenefitEventType, data) -> bool:
    event = Event(
        event_type=event_type.value,
        source=ServiceSource.BENEFIT_SERVICE,
        data=data.model_dump(mode="json"),
    )
    try:
        published = await event_bus.publish_event(event)
    except Exception as e:
        logger.error(f"Failed to publish {event_type.value}: {e}")
        return False
    if not published:
        logger.warning(f"Event bus rejected {event_type.value} [{event.id}]")
    return bool(published)


async def publish_benefit_created(event_bus, benefit: Benefit) -> bool:
    """Publish benefit.created event"""
    data = BenefitCreatedEventData(
        benefit_id=benefit.benefit_id,
        business_id=benefit.business_id,
        association_ids=list(benefit.association_ids),
        access_mode=benefit.access_mode.value,
        created_by=benefit.created_by,
    )
    return await _publish(event_bus, BenefitEventType.BENEFIT_CREATED, data)


async def publish_benefit_updated(event_bus, benefit: Benefit, changed_fields: List[str]) -> bool:
    """Publish benefit.updated event"""
    data = BenefitUpdatedEventData(
        benefit_id=benefit.benefit_id,
        business_id=benefit.business_id,
        state=benefit.state.value,
        changed_fields=changed_fields,
    )
    return await _publish(event_bus, BenefitEventType.BENEFIT_UPDATED, data)


async def publish_benefit_redeemed(event_bus, redemption: Redemption, benefit: Benefit) -> bool:
    """
    Publish benefit.redeemed event

    Args:
        event_bus: NATS event bus instance
        redemption: Committed redemption record
        benefit: Benefit state after the commit
    """
    data = BenefitRedeemedEventData(
        redemption_id=redemption.redemption_id,
        benefit_id=redemption.benefit_id,
        member_id=redemption.member_id,
        business_id=redemption.business_id,
        association_id=redemption.association_id,
        discount_amount=redemption.discount_amount,
        redemption_count=benefit.redemption_count,
        global_cap=benefit.global_cap,
    )
    return await _publish(event_bus, BenefitEventType.BENEFIT_REDEEMED, data)


async def publish_benefit_exhausted(event_bus, benefit: Benefit) -> bool:
    """Publish benefit.exhausted event"""
    data = BenefitExhaustedEventData(
        benefit_id=benefit.benefit_id,
        business_id=benefit.business_id,
        redemption_count=benefit.redemption_count,
        global_cap=benefit.global_cap or benefit.redemption_count,
    )
    return await _publish(event_bus, BenefitEventType.BENEFIT_EXHAUSTED, data)


async def publish_benefit_expired(event_bus, benefit: Benefit) -> bool:
    """Publish benefit.expired event"""
    data = BenefitExpiredEventData(
        benefit_id=benefit.benefit_id,
        business_id=benefit.business_id,
        end_at=benefit.end_at,
    )
    return await _publish(event_bus, BenefitEventType.BENEFIT_EXPIRED, data)
