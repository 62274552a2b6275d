"""
Benefit Service Event Models

Event data models for benefit lifecycle and redemption events.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models import utcnow


# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class BenefitEventType(str, Enum):
    """
    Events published by benefit_service.

    Stream: benefit-stream
    Subjects: benefit.>
    """
    BENEFIT_CREATED = "benefit.created"
    BENEFIT_UPDATED = "benefit.updated"
    BENEFIT_REDEEMED = "benefit.redeemed"
    BENEFIT_EXHAUSTED = "benefit.exhausted"
    BENEFIT_EXPIRED = "benefit.expired"


class BenefitSubscribedEventType(str, Enum):
    """Events that benefit_service subscribes to from other services."""
    MEMBER_UPDATED = "member.updated"
    BUSINESS_UPDATED = "business.updated"
    ASSOCIATION_UPDATED = "association.updated"


# ============================================================================
# Benefit Lifecycle Event Models
# ============================================================================


class BenefitCreatedEventData(BaseModel):
    """
    Event: benefit.created
    Triggered when a business or association publishes a benefit
    """
    benefit_id: str = Field(..., description="Benefit ID")
    business_id: str = Field(..., description="Owning business")
    association_ids: List[str] = Field(default_factory=list)
    access_mode: str
    created_by: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class BenefitUpdatedEventData(BaseModel):
    """
    Event: benefit.updated
    Triggered on edits and state transitions
    """
    benefit_id: str
    business_id: str
    state: str
    changed_fields: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


class BenefitRedeemedEventData(BaseModel):
    """
    Event: benefit.redeemed
    Triggered after a redemption is committed
    """
    redemption_id: str
    benefit_id: str
    member_id: str
    business_id: str
    association_id: Optional[str] = None
    discount_amount: Decimal = Decimal("0.00")
    redemption_count: int = Field(..., description="Benefit redemption count after this use")
    global_cap: Optional[int] = None
    timestamp: datetime = Field(default_factory=utcnow)


class BenefitExhaustedEventData(BaseModel):
    """
    Event: benefit.exhausted
    Triggered when a redemption reaches the global cap
    """
    benefit_id: str
    business_id: str
    redemption_count: int
    global_cap: int
    timestamp: datetime = Field(default_factory=utcnow)


class BenefitExpiredEventData(BaseModel):
    """
    Event: benefit.expired
    Triggered by the expiry sweep
    """
    benefit_id: str
    business_id: str
    end_at: datetime
    timestamp: datetime = Field(default_factory=utcnow)
