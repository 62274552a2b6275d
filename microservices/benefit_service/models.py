"""
Benefit Service Data Models

Pydantic models for benefits, redemptions, affiliation profiles and reporting.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so they compare with the aware clock"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


_CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    """Quantize an amount to cents"""
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


# ====================
# Enum Types
# ====================

class BenefitState(str, Enum):
    """Benefit lifecycle state"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class AccessMode(str, Enum):
    """Who may see and redeem a benefit"""
    PUBLIC = "public"
    ASSOCIATION = "association"
    DIRECT = "direct"


class DiscountKind(str, Enum):
    """Discount computation kinds"""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_ITEM = "free_item"


class RedemptionState(str, Enum):
    """Redemption outcome"""
    USED = "used"
    PENDING = "pending"
    CANCELLED = "cancelled"
    VALIDATED = "validated"


class BenefitOrigin(str, Enum):
    """Catalog source a benefit was found through"""
    ASSOCIATION = "association"
    AFFILIATED_BUSINESS = "affiliated_business"
    PUBLIC = "public"
    DIRECT = "direct"


class ActorRole(str, Enum):
    """Who is creating a benefit"""
    BUSINESS = "business"
    ASSOCIATION = "association"


class ProfileState(str, Enum):
    """Member/business/association record state"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


BENEFIT_CATEGORIES = [
    "Food & Drink",
    "Retail & Fashion",
    "Health & Beauty",
    "Sports & Fitness",
    "Entertainment",
    "Technology",
    "Travel & Tourism",
    "Education",
    "Automotive",
    "Home & Garden",
    "Professional Services",
    "Pets",
    "Kids & Family",
    "Culture",
    "Other",
]


# ====================
# Discount Variants
# ====================

class PercentageDiscount(BaseModel):
    """Percentage off the original amount"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["percentage"] = "percentage"
    rate: Decimal = Field(..., gt=0, le=100, description="Percent off, 0-100")

    def apply(self, original: Decimal) -> Decimal:
        return to_money(original * self.rate / Decimal(100))


class FixedAmountDiscount(BaseModel):
    """Fixed amount off, never more than the original amount"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["fixed_amount"] = "fixed_amount"
    amount: Decimal = Field(..., gt=0)

    def apply(self, original: Decimal) -> Decimal:
        return to_money(min(self.amount, original))


class FreeItemDiscount(BaseModel):
    """The item is free: the whole original amount is discounted"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["free_item"] = "free_item"

    def apply(self, original: Decimal) -> Decimal:
        return to_money(original)


Discount = Annotated[
    Union[PercentageDiscount, FixedAmountDiscount, FreeItemDiscount],
    Field(discriminator="kind"),
]


# ====================
# Core Data Models
# ====================

class Benefit(BaseModel):
    """Benefit (discount offer) entity model"""
    benefit_id: str = Field(..., description="Unique benefit ID")
    title: str
    description: str = ""
    discount: Discount
    category: str = "Other"

    # Validity window [start_at, end_at)
    start_at: datetime
    end_at: datetime

    state: BenefitState = BenefitState.ACTIVE
    access_mode: AccessMode = AccessMode.PUBLIC

    # Ownership
    business_id: str
    business_name: Optional[str] = None
    business_logo: Optional[str] = None
    association_ids: List[str] = Field(default_factory=list)

    # Caps
    per_member_cap: Optional[int] = Field(default=None, gt=0)
    global_cap: Optional[int] = Field(default=None, gt=0)
    redemption_count: int = Field(default=0, ge=0)

    # Presentation
    conditions: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    featured: bool = False
    image_url: Optional[str] = None

    # Audit
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("start_at", "end_at", "created_at", "updated_at")
    @classmethod
    def _aware(cls, v):
        return as_utc(v)


class MemberIdentity(BaseModel):
    """Denormalized member identity captured on a redemption"""
    name: Optional[str] = None
    email: Optional[str] = None


class Redemption(BaseModel):
    """Benefit use record. Append-only."""
    model_config = ConfigDict(frozen=True)

    redemption_id: str = Field(..., description="Unique redemption ID")
    benefit_id: str
    benefit_title: str

    member_id: str
    member_name: Optional[str] = None
    member_email: Optional[str] = None

    business_id: str
    business_name: Optional[str] = None
    association_id: Optional[str] = None
    association_name: Optional[str] = None

    redeemed_at: datetime = Field(default_factory=utcnow)
    discount_amount: Decimal = Decimal("0.00")
    original_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None
    state: RedemptionState = RedemptionState.USED

    @field_validator("redeemed_at")
    @classmethod
    def _aware(cls, v):
        return as_utc(v)


class MemberProfile(BaseModel):
    """Member fields needed to resolve affiliation"""
    member_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    association_id: Optional[str] = None
    affiliated_business_ids: List[str] = Field(default_factory=list)
    state: ProfileState = ProfileState.ACTIVE


class BusinessProfile(BaseModel):
    """Business fields needed by the engine"""
    business_id: str
    name: str
    logo_url: Optional[str] = None
    linked_association_ids: List[str] = Field(default_factory=list)
    state: ProfileState = ProfileState.ACTIVE
    active_benefit_count: int = 0


class AssociationProfile(BaseModel):
    """Association fields needed by the engine"""
    association_id: str
    name: str
    state: ProfileState = ProfileState.ACTIVE


class Affiliation(BaseModel):
    """Business ids a member can reach, grouped by source"""
    model_config = ConfigDict(frozen=True)

    member_id: str
    association_id: Optional[str] = None
    direct_business_ids: FrozenSet[str] = frozenset()
    association_business_ids: FrozenSet[str] = frozenset()
    open_business_ids: FrozenSet[str] = frozenset()
    degraded: bool = False

    @property
    def business_ids(self) -> FrozenSet[str]:
        return self.direct_business_ids | self.association_business_ids | self.open_business_ids


class CatalogEntry(BaseModel):
    """A candidate benefit tagged with the source it was read from"""
    model_config = ConfigDict(frozen=True)

    benefit: Benefit
    origin: BenefitOrigin


class BenefitFilter(BaseModel):
    """Optional query filter applied by the eligibility filter"""
    category: Optional[str] = None
    business_id: Optional[str] = None
    access_mode: Optional[AccessMode] = None
    featured_only: bool = False
    search: Optional[str] = None
    new_only: bool = False
    expiring_soon: bool = False


# ====================
# Statistics Models
# ====================

class StatsScope(BaseModel):
    """Reporting scope; all fields optional and combinable"""
    business_id: Optional[str] = None
    association_id: Optional[str] = None
    member_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, v):
        return as_utc(v)


class MonthlyUsage(BaseModel):
    month: str = Field(..., description="YYYY-MM")
    redemptions: int = 0
    savings: Decimal = Decimal("0.00")


class TopBenefit(BaseModel):
    benefit_id: str
    title: str
    redemptions: int = 0
    savings: Decimal = Decimal("0.00")


class CategoryBreakdown(BaseModel):
    category: str
    benefits: int = 0
    redemptions: int = 0


class BusinessBreakdown(BaseModel):
    business_id: str
    business_name: Optional[str] = None
    benefits: int = 0
    redemptions: int = 0


class StatsSummary(BaseModel):
    """Derived reporting metrics"""
    total_benefits: int = 0
    active_benefits: int = 0
    inactive_benefits: int = 0
    expired_benefits: int = 0
    exhausted_benefits: int = 0
    total_redemptions: int = 0
    total_savings: Decimal = Decimal("0.00")
    month_savings: Decimal = Decimal("0.00")
    usage_by_month: List[MonthlyUsage] = Field(default_factory=list)
    top_benefits: List[TopBenefit] = Field(default_factory=list)
    categories: List[CategoryBreakdown] = Field(default_factory=list)
    businesses: List[BusinessBreakdown] = Field(default_factory=list)


# ====================
# Request Models
# ====================

class BenefitDraft(BaseModel):
    """Fields supplied when creating a benefit"""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    discount: Discount
    category: str = "Other"
    start_at: datetime
    end_at: datetime
    business_id: Optional[str] = Field(default=None, description="Required when an association creates the benefit")
    association_ids: Optional[List[str]] = None
    access_mode: Optional[AccessMode] = None
    per_member_cap: Optional[int] = None
    global_cap: Optional[int] = None
    conditions: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    featured: bool = False
    image_url: Optional[str] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, v):
        return as_utc(v)


class CreateBenefitRequest(BenefitDraft):
    """Create benefit request"""
    actor_id: str = Field(..., description="Business or association creating the benefit")
    actor_role: ActorRole


class BenefitUpdate(BaseModel):
    """Partial benefit update; only fields that are set are applied"""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    discount: Optional[Discount] = None
    category: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    business_id: Optional[str] = None
    association_ids: Optional[List[str]] = None
    access_mode: Optional[AccessMode] = None
    per_member_cap: Optional[int] = None
    global_cap: Optional[int] = None
    conditions: Optional[str] = None
    tags: Optional[List[str]] = None
    featured: Optional[bool] = None
    image_url: Optional[str] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, v):
        return as_utc(v)


class SetBenefitStateRequest(BaseModel):
    """Benefit state transition request"""
    state: BenefitState


class RedeemBenefitRequest(BaseModel):
    """Redeem benefit request"""
    member_id: str = Field(..., description="Member redeeming the benefit")
    member_name: Optional[str] = None
    member_email: Optional[str] = None
    business_id: str = Field(..., description="Business where the benefit is redeemed")
    association_id: Optional[str] = None
    original_amount: Optional[Decimal] = Field(default=None, ge=0)


# ====================
# Response Models
# ====================

class BenefitListResponse(BaseModel):
    """Benefit list response"""
    benefits: List[Benefit] = Field(default_factory=list)
    count: int = 0


class CatalogResponse(BaseModel):
    """Origin-tagged benefit list response"""
    entries: List[CatalogEntry] = Field(default_factory=list)
    count: int = 0


class RedemptionResponse(BaseModel):
    """Redemption response"""
    success: bool = True
    message: str = "Benefit redeemed"
    redemption: Redemption


class RedemptionHistoryResponse(BaseModel):
    """Member redemption history response"""
    redemptions: List[Redemption] = Field(default_factory=list)
    count: int = 0


class AvailableAssociation(BaseModel):
    association_id: str
    name: str


class ExpirySweepResponse(BaseModel):
    """Expiry sweep summary"""
    expired_count: int = 0
    failed: List[str] = Field(default_factory=list)
    processed_at: datetime = Field(default_factory=utcnow)


class CounterResyncResponse(BaseModel):
    """Counter resynchronization summary"""
    processed: int = 0
    synchronized: int = 0
    failed: List[str] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ServiceInfo(BaseModel):
    """Service information"""
    service: str
    version: str
    description: str
    capabilities: List[str]
    routes: Dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error response body"""
    success: bool = False
    error: str
    detail: Dict[str, Any] = Field(default_factory=dict)
