"""
Benefit Service Affiliation Resolver

Computes the set of business ids a member can reach:
direct affiliations, businesses linked to the member's association,
and (for members without an association) businesses offering open benefits.
"""

import logging
from typing import Optional

from .cache import TTLCache
from .models import AccessMode, Affiliation, ProfileState
from .protocols import BenefitRepositoryProtocol, BenefitStorageError

logger = logging.getLogger(__name__)

OPEN_ACCESS_MODES = (AccessMode.PUBLIC, AccessMode.DIRECT)


class AffiliationResolver:
    """Resolves a member's affiliation set. Never raises on lookup failure."""

    def __init__(self, repository: BenefitRepositoryProtocol, cache: Optional[TTLCache] = None):
        self.repository = repository
        self.cache = cache

    async def resolve(self, member_id: str, association_id: Optional[str] = None) -> Affiliation:
        """
        Resolve the businesses a member may access.

        Args:
            member_id: Member ID
            association_id: Known association, overrides the profile's

        Returns:
            Affiliation; degraded and empty when the profile cannot be read
        """
        key = None
        if self.cache is not None:
            key = TTLCache.make_key("affiliation", member_id=member_id, association_id=association_id)
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        affiliation = await self._resolve(member_id, association_id)

        # Degraded results are not cached so the next request retries
        if key is not None and not affiliation.degraded:
            self.cache.set(key, affiliation)
        return affiliation

    async def _resolve(self, member_id: str, association_id: Optional[str]) -> Affiliation:
        try:
            profile = await self.repository.get_member_profile(member_id)
        except BenefitStorageError as e:
            logger.warning(f"Member profile lookup failed for {member_id}: {e}")
            profile = None

        if profile is None:
            logger.warning(f"No profile for member {member_id}, affiliation degrades to empty")
            return Affiliation(member_id=member_id, association_id=association_id, degraded=True)

        association_id = association_id or profile.association_id
        direct_ids = frozenset(profile.affiliated_business_ids)
        linked_ids: frozenset = frozenset()
        open_ids: frozenset = frozenset()
        degraded = False

        if association_id:
            try:
                linked = await self.repository.list_businesses_linked_to_association(association_id, active_only=True)
                linked_ids = frozenset(
                    b.business_id for b in linked if b.state == ProfileState.ACTIVE
                )
            except BenefitStorageError as e:
                logger.warning(f"Linked business lookup failed for association {association_id}: {e}")
                degraded = True
        else:
            try:
                open_benefits = await self.repository.list_active_benefits_by_access(OPEN_ACCESS_MODES)
                open_ids = frozenset(b.business_id for b in open_benefits)
            except BenefitStorageError as e:
                logger.warning(f"Open benefit lookup failed for member {member_id}: {e}")
                degraded = True

        affiliation = Affiliation(
            member_id=member_id,
            association_id=association_id,
            direct_business_ids=direct_ids,
            association_business_ids=linked_ids,
            open_business_ids=open_ids,
            degraded=degraded,
        )
        logger.debug(f"Resolved {len(affiliation.business_ids)} businesses for member {member_id}")
        return affiliation
