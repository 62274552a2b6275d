"""
Benefit Service Counter Synchronizer

Recomputes each business's derived active benefit count from the
authoritative benefit records. Idempotent; last write wins.
"""

import logging
from typing import Iterable, Optional

from .models import CounterResyncResponse
from .protocols import BenefitRepositoryProtocol, BenefitServiceError

logger = logging.getLogger(__name__)


class CounterSynchronizer:
    """Keeps business.active_benefit_count in line with benefit state"""

    def __init__(self, repository: BenefitRepositoryProtocol):
        self.repository = repository

    async def sync_business(self, business_id: str) -> int:
        """Recount active benefits for one business and persist the count"""
        count = await self.repository.count_active_benefits(business_id)
        await self.repository.set_business_active_count(business_id, count)
        logger.info(f"Business {business_id} active benefit count synchronized: {count}")
        return count

    async def sync_all(self, business_ids: Optional[Iterable[str]] = None) -> CounterResyncResponse:
        """
        Resynchronize many businesses, logging and skipping failures.

        Args:
            business_ids: Businesses to sync (all known businesses if not provided)
        """
        if business_ids is None:
            business_ids = await self.repository.list_business_ids()

        summary = CounterResyncResponse()
        for business_id in business_ids:
            summary.processed += 1
            try:
                summary.counts[business_id] = await self.sync_business(business_id)
                summary.synchronized += 1
            except BenefitServiceError as e:
                logger.error(f"Failed to synchronize counter for business {business_id}: {e}")
                summary.failed.append(business_id)

        logger.info(
            f"Counter resync complete: {summary.synchronized}/{summary.processed} synchronized, "
            f"{len(summary.failed)} failed"
        )
        return summary
