"""
Benefit Service Eligibility Filter

Pure predicates over candidate benefits. Same inputs and the same
``now`` always produce the same output.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from .models import AccessMode, Benefit, BenefitFilter, BenefitOrigin, CatalogEntry

NEW_WINDOW = timedelta(days=7)
EXPIRING_WINDOW = timedelta(days=7)


def is_expired(benefit: Benefit, now: datetime) -> bool:
    return benefit.end_at <= now


def is_not_started(benefit: Benefit, now: datetime) -> bool:
    return benefit.start_at > now


def is_within_window(benefit: Benefit, now: datetime) -> bool:
    """start_at <= now < end_at"""
    return not is_not_started(benefit, now) and not is_expired(benefit, now)


def is_capped(benefit: Benefit) -> bool:
    return benefit.global_cap is not None and benefit.redemption_count >= benefit.global_cap


def matches_search(benefit: Benefit, term: Optional[str]) -> bool:
    """Case-insensitive substring match on title, description, business, category and tags"""
    if not term or not term.strip():
        return True
    needle = term.strip().lower()
    haystacks = [benefit.title, benefit.description, benefit.business_name or "", benefit.category, *benefit.tags]
    return any(needle in text.lower() for text in haystacks if text)


def is_new(benefit: Benefit, now: datetime, window: timedelta = NEW_WINDOW) -> bool:
    return benefit.created_at >= now - window


def is_expiring_soon(benefit: Benefit, now: datetime, window: timedelta = EXPIRING_WINDOW) -> bool:
    return now < benefit.end_at <= now + window


def matches_filter(benefit: Benefit, benefit_filter: BenefitFilter) -> bool:
    if benefit_filter.category and benefit.category != benefit_filter.category:
        return False
    if benefit_filter.business_id and benefit.business_id != benefit_filter.business_id:
        return False
    if benefit_filter.access_mode and benefit.access_mode != benefit_filter.access_mode:
        return False
    if benefit_filter.featured_only and not benefit.featured:
        return False
    return True


def sort_key(entry: CatalogEntry):
    """Featured first, then newest created first"""
    return (not entry.benefit.featured, -entry.benefit.created_at.timestamp())


def apply_eligibility(
    entries: Iterable[CatalogEntry],
    benefit_filter: Optional[BenefitFilter],
    now: datetime,
    limit: Optional[int] = None,
    new_window: timedelta = NEW_WINDOW,
    expiring_window: timedelta = EXPIRING_WINDOW,
) -> List[CatalogEntry]:
    """
    Filter, rank and truncate catalog entries.

    Order: expiry, not started, global cap, search, new/expiring windows,
    then explicit category/business/access/featured filters.
    """
    benefit_filter = benefit_filter or BenefitFilter()
    kept = []
    for entry in entries:
        benefit = entry.benefit
        if is_expired(benefit, now):
            continue
        if is_not_started(benefit, now):
            continue
        if is_capped(benefit):
            continue
        if not matches_search(benefit, benefit_filter.search):
            continue
        if benefit_filter.new_only and not is_new(benefit, now, new_window):
            continue
        if benefit_filter.expiring_soon and not is_expiring_soon(benefit, now, expiring_window):
            continue
        if not matches_filter(benefit, benefit_filter):
            continue
        kept.append(entry)

    # sorted() is stable, so ties keep catalog order
    ranked = sorted(kept, key=sort_key)
    if limit is not None:
        ranked = ranked[:max(limit, 0)]
    return ranked


def origin_for(benefit: Benefit) -> BenefitOrigin:
    """Origin to tag a benefit with when it was not read through the catalog"""
    return {
        AccessMode.PUBLIC: BenefitOrigin.PUBLIC,
        AccessMode.DIRECT: BenefitOrigin.DIRECT,
        AccessMode.ASSOCIATION: BenefitOrigin.ASSOCIATION,
    }[benefit.access_mode]


def filter_benefits(
    benefits: Sequence[Benefit],
    benefit_filter: Optional[BenefitFilter],
    now: datetime,
    limit: Optional[int] = None,
) -> List[Benefit]:
    """apply_eligibility for plain benefit lists"""
    entries = [CatalogEntry(benefit=b, origin=origin_for(b)) for b in benefits]
    return [entry.benefit for entry in apply_eligibility(entries, benefit_filter, now, limit)]
