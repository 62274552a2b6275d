"""
Benefit Service Redemption Transactor

Validates a single benefit use and records it atomically.
Every failed precondition raises a specific BenefitServiceError.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from .affiliation import AffiliationResolver
from .cache import TTLCache
from .counters import CounterSynchronizer
from .events.publishers import publish_benefit_exhausted, publish_benefit_redeemed
from .models import (
    AccessMode,
    Benefit,
    BenefitState,
    MemberIdentity,
    Redemption,
    RedemptionState,
    to_money,
)
from .protocols import (
    BenefitAccessDeniedError,
    BenefitExpiredError,
    BenefitNotFoundError,
    BenefitNotStartedError,
    BenefitRepositoryProtocol,
    BenefitServiceError,
    BenefitUnavailableError,
    BusinessMismatchError,
    EventBusProtocol,
    GlobalCapReachedError,
    MemberCapReachedError,
)

logger = logging.getLogger(__name__)


def compute_amounts(benefit: Benefit, original_amount: Optional[Decimal]):
    """Return (discount_amount, final_amount); final is None without an original amount"""
    if original_amount is None:
        return benefit.discount.apply(Decimal("0")), None
    original = Decimal(original_amount)
    discount = benefit.discount.apply(original)
    return discount, to_money(max(Decimal("0"), original - discount))


class RedemptionTransactor:
    """Runs the redemption preconditions and the atomic write"""

    def __init__(
        self,
        repository: BenefitRepositoryProtocol,
        affiliation_resolver: AffiliationResolver,
        counters: CounterSynchronizer,
        cache: Optional[TTLCache] = None,
        event_bus: Optional[EventBusProtocol] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repository = repository
        self.affiliation_resolver = affiliation_resolver
        self.counters = counters
        self.cache = cache
        self.event_bus = event_bus
        self._clock = clock

    async def redeem(
        self,
        benefit_id: str,
        member_id: str,
        identity: Optional[MemberIdentity],
        business_id: str,
        association_id: Optional[str] = None,
        original_amount: Optional[Decimal] = None,
    ) -> Redemption:
        """
        Redeem a benefit for a member.

        Raises:
            BenefitNotFoundError: Benefit does not exist
            BenefitUnavailableError: Benefit is inactive
            BenefitExpiredError / BenefitNotStartedError: Outside the validity window
            GlobalCapReachedError / MemberCapReachedError: A cap is exhausted
            BenefitAccessDeniedError: Member is not entitled
            BusinessMismatchError: business_id is not the benefit's owner
            BenefitStorageError: Backing store failure
        """
        now = self._clock()
        identity = identity or MemberIdentity()

        # 1. exists and active
        benefit = await self.repository.get_benefit(benefit_id)
        if benefit is None:
            raise BenefitNotFoundError(benefit_id)
        self._check_state(benefit)

        # 2. window
        if now < benefit.start_at:
            raise BenefitNotStartedError(
                f"Benefit {benefit_id} starts at {benefit.start_at.isoformat()}",
                start_at=benefit.start_at, end_at=benefit.end_at,
            )
        if now >= benefit.end_at:
            raise BenefitExpiredError(
                f"Benefit {benefit_id} ended at {benefit.end_at.isoformat()}",
                start_at=benefit.start_at, end_at=benefit.end_at,
            )

        # 3. global cap
        if benefit.global_cap is not None and benefit.redemption_count >= benefit.global_cap:
            raise GlobalCapReachedError(
                f"Benefit {benefit_id} reached its limit of {benefit.global_cap} uses",
                cap=benefit.global_cap, used=benefit.redemption_count,
            )

        # 4. per-member cap
        if benefit.per_member_cap is not None:
            used = await self.repository.count_member_redemptions(benefit_id, member_id)
            if used >= benefit.per_member_cap:
                raise MemberCapReachedError(
                    f"Member {member_id} already used benefit {benefit_id} {used} times",
                    cap=benefit.per_member_cap, used=used,
                )

        # 5. access
        await self._check_access(benefit, member_id, business_id, association_id)

        discount_amount, final_amount = compute_amounts(benefit, original_amount)
        redemption = Redemption(
            redemption_id=f"red_{uuid.uuid4().hex[:16]}",
            benefit_id=benefit.benefit_id,
            benefit_title=benefit.title,
            member_id=member_id,
            member_name=identity.name,
            member_email=identity.email,
            business_id=benefit.business_id,
            business_name=benefit.business_name,
            association_id=association_id,
            association_name=await self._association_name(association_id),
            redeemed_at=now,
            discount_amount=discount_amount,
            original_amount=None if original_amount is None else to_money(Decimal(original_amount)),
            final_amount=final_amount,
            state=RedemptionState.USED,
        )

        # Caps are re-checked inside the write
        updated = await self.repository.commit_redemption(redemption)
        logger.info(
            f"Benefit {benefit_id} redeemed by member {member_id}: "
            f"discount={discount_amount}, uses={updated.redemption_count}"
        )

        if self.cache is not None:
            self.cache.clear()

        if updated.state == BenefitState.EXHAUSTED:
            logger.info(f"Benefit {benefit_id} exhausted at {updated.redemption_count} uses")
            try:
                await self.counters.sync_business(updated.business_id)
            except BenefitServiceError as e:
                # Derived counter; the next resync repairs it
                logger.error(f"Counter sync after exhaustion failed for {updated.business_id}: {e}")

        if self.event_bus:
            await publish_benefit_redeemed(self.event_bus, redemption, updated)
            if updated.state == BenefitState.EXHAUSTED:
                await publish_benefit_exhausted(self.event_bus, updated)

        return redemption

    @staticmethod
    def _check_state(benefit: Benefit) -> None:
        if benefit.state == BenefitState.ACTIVE:
            return
        if benefit.state == BenefitState.EXHAUSTED:
            raise GlobalCapReachedError(
                f"Benefit {benefit.benefit_id} is exhausted",
                cap=benefit.global_cap, used=benefit.redemption_count,
            )
        if benefit.state == BenefitState.EXPIRED:
            raise BenefitExpiredError(
                f"Benefit {benefit.benefit_id} has expired",
                start_at=benefit.start_at, end_at=benefit.end_at,
            )
        raise BenefitUnavailableError(
            f"Benefit {benefit.benefit_id} is not active", state=benefit.state.value
        )

    async def _check_access(
        self,
        benefit: Benefit,
        member_id: str,
        business_id: str,
        association_id: Optional[str],
    ) -> None:
        # The redeeming business must be the one offering the benefit
        if business_id and business_id != benefit.business_id:
            raise BusinessMismatchError(benefit.benefit_id, business_id, benefit.business_id)
        if association_id and association_id in benefit.association_ids:
            return
        if benefit.access_mode == AccessMode.PUBLIC:
            return
        affiliation = await self.affiliation_resolver.resolve(member_id, association_id)
        if benefit.business_id in affiliation.business_ids:
            return
        if affiliation.association_id and affiliation.association_id in benefit.association_ids:
            return
        raise BenefitAccessDeniedError(
            f"Member {member_id} is not entitled to benefit {benefit.benefit_id}"
        )

    async def _association_name(self, association_id: Optional[str]) -> Optional[str]:
        if not association_id:
            return None
        try:
            association = await self.repository.get_association_profile(association_id)
        except BenefitServiceError as e:
            logger.warning(f"Association lookup failed for {association_id}: {e}")
            return None
        return association.name if association else None
