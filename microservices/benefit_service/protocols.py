"""
Benefit Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .models import (
    AccessMode,
    AssociationProfile,
    Benefit,
    BenefitState,
    BusinessProfile,
    MemberProfile,
    Redemption,
)

# The backing store rejects "value in set" filters with more values than this
MAX_IN_FILTER_VALUES = 10


# ====================
# Repository Protocol
# ====================


class BenefitRepositoryProtocol(Protocol):
    """Protocol for benefit data repository"""

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    # Benefit reads
    async def get_benefit(self, benefit_id: str) -> Optional[Benefit]:
        """Get benefit by ID"""
        ...

    async def list_active_benefits_by_association(
        self,
        association_id: str,
        limit: Optional[int] = None,
    ) -> List[Benefit]:
        """Active benefits whose association list contains the id, newest first"""
        ...

    async def list_active_benefits_by_businesses(
        self,
        business_ids: Sequence[str],
        access_modes: Optional[Sequence[AccessMode]] = None,
    ) -> List[Benefit]:
        """Active benefits owned by any of the businesses (at most MAX_IN_FILTER_VALUES ids)"""
        ...

    async def list_active_benefits_by_access(
        self,
        access_modes: Sequence[AccessMode],
        limit: Optional[int] = None,
    ) -> List[Benefit]:
        """Active benefits with one of the access modes, newest first"""
        ...

    async def list_benefits(
        self,
        business_id: Optional[str] = None,
        association_id: Optional[str] = None,
        state: Optional[BenefitState] = None,
        limit: Optional[int] = None,
    ) -> List[Benefit]:
        """List benefits in any state, newest first"""
        ...

    async def list_expired_active_benefits(self, now: datetime) -> List[Benefit]:
        """Active benefits whose window ended at or before now"""
        ...

    async def list_categories(self) -> List[str]:
        """Distinct benefit categories"""
        ...

    # Benefit writes
    async def create_benefit(self, benefit: Benefit) -> Benefit:
        """Insert a new benefit"""
        ...

    async def update_benefit(self, benefit_id: str, changes: Dict[str, Any]) -> Optional[Benefit]:
        """Apply a partial update, returning the updated benefit"""
        ...

    # Counters
    async def count_active_benefits(self, business_id: str) -> int:
        """Count active benefits owned by a business"""
        ...

    async def set_business_active_count(self, business_id: str, count: int) -> None:
        """Persist the derived active benefit count on a business"""
        ...

    async def list_business_ids(self) -> List[str]:
        """All business ids"""
        ...

    # Profiles
    async def get_member_profile(self, member_id: str) -> Optional[MemberProfile]:
        """Get member profile"""
        ...

    async def get_business_profile(self, business_id: str) -> Optional[BusinessProfile]:
        """Get business profile"""
        ...

    async def get_association_profile(self, association_id: str) -> Optional[AssociationProfile]:
        """Get association profile"""
        ...

    async def list_businesses_linked_to_association(
        self,
        association_id: str,
        active_only: bool = True,
    ) -> List[BusinessProfile]:
        """Businesses whose link list contains the association"""
        ...

    # Redemptions
    async def count_member_redemptions(self, benefit_id: str, member_id: str) -> int:
        """Count a member's successful redemptions of a benefit"""
        ...

    async def commit_redemption(self, redemption: Redemption) -> Benefit:
        """
        Atomically record a redemption.

        Inserts the redemption, increments the benefit's redemption count and
        flips it to exhausted when the global cap is reached. The stored state
        and both caps are re-verified inside the same unit of work; raises
        GlobalCapReachedError or MemberCapReachedError if another redemption
        won the race.
        """
        ...

    async def list_redemptions(
        self,
        member_id: Optional[str] = None,
        business_id: Optional[str] = None,
        association_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Redemption]:
        """List redemptions, newest first"""
        ...


# ====================
# Event Bus Protocol
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event publishing"""

    async def publish_event(self, event: Any) -> bool:
        """Publish an event"""
        ...


# ====================
# Custom Exceptions
# ====================


class BenefitServiceError(Exception):
    """Base exception for benefit service errors"""
    pass


class ResourceNotFoundError(BenefitServiceError):
    """A benefit, member or business does not exist"""
    pass


class BenefitNotFoundError(ResourceNotFoundError):
    """Benefit not found"""

    def __init__(self, benefit_id: str):
        super().__init__(f"Benefit not found: {benefit_id}")
        self.benefit_id = benefit_id


class BusinessNotFoundError(ResourceNotFoundError):
    """Business not found"""

    def __init__(self, business_id: str):
        super().__init__(f"Business not found: {business_id}")
        self.business_id = business_id


class BenefitUnavailableError(BenefitServiceError):
    """Benefit is not in a redeemable state"""

    def __init__(self, message: str, state: Optional[str] = None):
        super().__init__(message)
        self.state = state


class BenefitWindowError(BenefitServiceError):
    """Now falls outside the benefit's validity window"""

    def __init__(self, message: str, start_at: Optional[datetime] = None, end_at: Optional[datetime] = None):
        super().__init__(message)
        self.start_at = start_at
        self.end_at = end_at


class BenefitExpiredError(BenefitWindowError):
    """Benefit window has ended"""
    pass


class BenefitNotStartedError(BenefitWindowError):
    """Benefit window has not started yet"""
    pass


class BenefitCapReachedError(BenefitServiceError):
    """A redemption cap is exhausted"""

    def __init__(self, message: str, cap: Optional[int] = None, used: Optional[int] = None):
        super().__init__(message)
        self.cap = cap
        self.used = used


class GlobalCapReachedError(BenefitCapReachedError):
    """Benefit-wide cap reached"""
    pass


class MemberCapReachedError(BenefitCapReachedError):
    """Per-member cap reached"""
    pass


class BenefitAccessDeniedError(BenefitServiceError):
    """Member is not entitled to the benefit"""
    pass


class BusinessMismatchError(BenefitAccessDeniedError):
    """Redemption was requested at a business that does not offer the benefit"""

    def __init__(self, benefit_id: str, business_id: str, owner_id: str):
        super().__init__(
            f"Benefit {benefit_id} is offered by business {owner_id}, not {business_id}"
        )
        self.benefit_id = benefit_id
        self.business_id = business_id
        self.owner_id = owner_id


class BenefitValidationError(BenefitServiceError):
    """Malformed create/update input"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class BenefitStorageError(BenefitServiceError):
    """Backing store failure; transient"""

    retryable = True

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
