"""
Benefit Service Event Handlers

Handle events that may change what members are entitled to see.
"""

import logging
from typing import Any, Callable, Dict, Union

logger = logging.getLogger(__name__)


def extract_event_data(event_or_data: Union[Dict[str, Any], Any]) -> Dict[str, Any]:
    """
    Extract data from either an Event object or a raw dict.

    Handles both:
    - Event objects with .data attribute (from NATS)
    - Raw dict (for testing or direct calls)
    """
    if hasattr(event_or_data, "data"):
        return event_or_data.data or {}
    return event_or_data or {}


async def handle_benefit_changed(event_or_data, benefit_service=None):
    """
    Handle benefit.* events from any service instance

    Drops cached listings and refreshes subscribers.
    """
    event_data = extract_event_data(event_or_data)
    benefit_id = event_data.get("benefit_id")
    if not benefit_service:
        return
    logger.debug(f"Benefit change observed for {benefit_id}")
    await benefit_service.handle_external_change(reason=f"benefit:{benefit_id}")


async def handle_member_updated(event_or_data, benefit_service=None):
    """
    Handle member.updated event

    Affiliation may have changed (association or direct business links).
    """
    event_data = extract_event_data(event_or_data)
    member_id = event_data.get("member_id")
    if not member_id:
        logger.warning("member.updated event missing member_id")
        return
    if benefit_service:
        await benefit_service.handle_external_change(reason=f"member:{member_id}")


async def handle_business_updated(event_or_data, benefit_service=None):
    """
    Handle business.updated event

    Association links or business state may have changed.
    """
    event_data = extract_event_data(event_or_data)
    business_id = event_data.get("business_id")
    if not business_id:
        logger.warning("business.updated event missing business_id")
        return
    if benefit_service:
        await benefit_service.handle_external_change(reason=f"business:{business_id}")


async def handle_association_updated(event_or_data, benefit_service=None):
    """Handle association.updated event"""
    event_data = extract_event_data(event_or_data)
    association_id = event_data.get("association_id")
    if not association_id:
        logger.warning("association.updated event missing association_id")
        return
    if benefit_service:
        await benefit_service.handle_external_change(reason=f"association:{association_id}")


def get_event_handlers(benefit_service=None) -> Dict[str, Callable]:
    """
    Return a mapping of event patterns to handler functions

    Events subscribed:
        - benefit.*: changes made by other instances
        - member.updated / business.updated / association.updated: affiliation changes
    """
    return {
        "benefit.*": lambda event: handle_benefit_changed(event, benefit_service),
        "member.updated": lambda event: handle_member_updated(event, benefit_service),
        "business.updated": lambda event: handle_business_updated(event, benefit_service),
        "association.updated": lambda event: handle_association_updated(event, benefit_service),
    }


async def subscribe_event_handlers(event_bus, benefit_service) -> int:
    """
    Subscribe every handler on its own ephemeral consumer.

    These events only invalidate per-instance caches, so each instance
    must receive all of them. A shared durable consumer would be bound to
    the first instance only.
    """
    subscribed = 0
    for pattern, handler in get_event_handlers(benefit_service).items():
        result = await event_bus.subscribe_to_events(pattern=pattern, handler=handler, new_only=True)
        if result is None:
            logger.warning(f"Subscription to {pattern} failed")
            continue
        subscribed += 1
    return subscribed
