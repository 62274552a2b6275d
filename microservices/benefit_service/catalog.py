"""
Benefit Service Catalog Reader

Reads candidate benefits for a member along independent access paths,
tags each with the path it came from and deduplicates by benefit id.
Only active benefits are read; window and cap checks happen downstream.
"""

import asyncio
import logging
from typing import Awaitable, Iterable, List, Optional, Sequence, Tuple

from .models import AccessMode, Affiliation, Benefit, BenefitOrigin, CatalogEntry
from .protocols import MAX_IN_FILTER_VALUES, BenefitRepositoryProtocol

logger = logging.getLogger(__name__)


def chunked(ids: Iterable[str], size: int = MAX_IN_FILTER_VALUES) -> List[List[str]]:
    """Split ids into sorted batches small enough for one "in" filter"""
    ordered = sorted(set(ids))
    return [ordered[i:i + size] for i in range(0, len(ordered), size)]


def dedupe_entries(entries: Iterable[CatalogEntry]) -> List[CatalogEntry]:
    """Keep the first entry seen for each benefit id"""
    seen = set()
    unique = []
    for entry in entries:
        if entry.benefit.benefit_id in seen:
            continue
        seen.add(entry.benefit.benefit_id)
        unique.append(entry)
    return unique


class BenefitCatalogReader:
    """Composes the candidate benefit list for a member"""

    def __init__(
        self,
        repository: BenefitRepositoryProtocol,
        public_limit: int = 20,
        batch_size: int = MAX_IN_FILTER_VALUES,
    ):
        self.repository = repository
        self.public_limit = public_limit
        self.batch_size = max(1, min(batch_size, MAX_IN_FILTER_VALUES))

    async def read(self, affiliation: Affiliation, limit: Optional[int] = None) -> List[CatalogEntry]:
        """
        Read candidate benefits for an affiliation.

        With an association: association-scoped, affiliated businesses, then a
        bounded public supplement. Without: public, direct access, then
        directly affiliated businesses.
        """
        if affiliation.association_id:
            sources = [
                (BenefitOrigin.ASSOCIATION,
                 self.repository.list_active_benefits_by_association(affiliation.association_id, limit=limit)),
                (BenefitOrigin.AFFILIATED_BUSINESS,
                 self._read_businesses(affiliation.direct_business_ids | affiliation.association_business_ids)),
                (BenefitOrigin.PUBLIC,
                 self.repository.list_active_benefits_by_access([AccessMode.PUBLIC], limit=self.public_limit)),
            ]
        else:
            sources = [
                (BenefitOrigin.PUBLIC,
                 self.repository.list_active_benefits_by_access([AccessMode.PUBLIC], limit=limit)),
                (BenefitOrigin.DIRECT,
                 self.repository.list_active_benefits_by_access([AccessMode.DIRECT], limit=limit)),
                (BenefitOrigin.AFFILIATED_BUSINESS,
                 self._read_businesses(
                     affiliation.direct_business_ids,
                     access_modes=[AccessMode.PUBLIC, AccessMode.DIRECT],
                 )),
            ]

        results = await self._gather(sources, affiliation.member_id)

        entries = [
            CatalogEntry(benefit=benefit, origin=origin)
            for origin, benefits in results
            for benefit in benefits
        ]
        unique = dedupe_entries(entries)
        logger.debug(
            f"Catalog for member {affiliation.member_id}: {len(entries)} candidates, {len(unique)} unique"
        )
        return unique

    async def _gather(
        self,
        sources: Sequence[Tuple[BenefitOrigin, Awaitable[List[Benefit]]]],
        member_id: str,
    ) -> List[Tuple[BenefitOrigin, List[Benefit]]]:
        outcomes = await asyncio.gather(*(coro for _, coro in sources), return_exceptions=True)
        results = []
        for (origin, _), outcome in zip(sources, outcomes):
            if isinstance(outcome, Exception):
                # A failed source shrinks the catalog instead of failing the request
                logger.warning(f"Catalog source {origin.value} failed for member {member_id}: {outcome}")
                outcome = []
            elif isinstance(outcome, BaseException):
                raise outcome
            results.append((origin, outcome))
        return results

    async def _read_businesses(
        self,
        business_ids: Iterable[str],
        access_modes: Optional[Sequence[AccessMode]] = None,
    ) -> List[Benefit]:
        batches = chunked(business_ids, self.batch_size)
        if not batches:
            return []
        outcomes = await asyncio.gather(
            *(self.repository.list_active_benefits_by_businesses(batch, access_modes=access_modes) for batch in batches),
            return_exceptions=True,
        )
        benefits: List[Benefit] = []
        for batch, outcome in zip(batches, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Business batch read failed ({len(batch)} ids): {outcome}")
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            benefits.extend(outcome)
        return benefits
