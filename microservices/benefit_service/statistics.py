"""
Benefit Service Statistics Aggregator

Pure reduction over benefit and redemption records.
"""

from collections import Counter, defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Sequence

from .models import (
    Benefit,
    BenefitState,
    BusinessBreakdown,
    CategoryBreakdown,
    MonthlyUsage,
    Redemption,
    RedemptionState,
    StatsSummary,
    TopBenefit,
    to_money,
)


def month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def aggregate_stats(
    benefits: Sequence[Benefit],
    redemptions: Sequence[Redemption],
    now: datetime,
    top_n: int = 10,
) -> StatsSummary:
    """
    Derive reporting metrics for already-scoped records.

    Cancelled redemptions are ignored; savings are the summed discount amounts.
    """
    counted = [r for r in redemptions if r.state != RedemptionState.CANCELLED]
    states = Counter(b.state for b in benefits)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    total_savings = sum((r.discount_amount for r in counted), Decimal("0"))
    month_savings = sum((r.discount_amount for r in counted if r.redeemed_at >= month_start), Decimal("0"))

    # usage by month
    monthly: Dict[str, MonthlyUsage] = {}
    for r in counted:
        key = month_key(r.redeemed_at)
        bucket = monthly.setdefault(key, MonthlyUsage(month=key))
        bucket.redemptions += 1
        bucket.savings = to_money(bucket.savings + r.discount_amount)

    # per-benefit usage
    per_benefit: Dict[str, List[Decimal]] = defaultdict(list)
    for r in counted:
        per_benefit[r.benefit_id].append(r.discount_amount)

    top = [
        TopBenefit(
            benefit_id=b.benefit_id,
            title=b.title,
            redemptions=len(per_benefit.get(b.benefit_id, [])),
            savings=to_money(sum(per_benefit.get(b.benefit_id, []), Decimal("0"))),
        )
        for b in benefits
    ]
    top.sort(key=lambda t: t.redemptions, reverse=True)

    # categories
    by_id = {b.benefit_id: b for b in benefits}
    categories: Dict[str, CategoryBreakdown] = {}
    for b in benefits:
        categories.setdefault(b.category, CategoryBreakdown(category=b.category)).benefits += 1
    for r in counted:
        benefit = by_id.get(r.benefit_id)
        if benefit is not None:
            categories[benefit.category].redemptions += 1

    # businesses
    businesses: Dict[str, BusinessBreakdown] = {}
    for b in benefits:
        row = businesses.setdefault(
            b.business_id, BusinessBreakdown(business_id=b.business_id, business_name=b.business_name)
        )
        row.benefits += 1
    for r in counted:
        row = businesses.setdefault(
            r.business_id, BusinessBreakdown(business_id=r.business_id, business_name=r.business_name)
        )
        row.redemptions += 1

    return StatsSummary(
        total_benefits=len(benefits),
        active_benefits=states[BenefitState.ACTIVE],
        inactive_benefits=states[BenefitState.INACTIVE],
        expired_benefits=states[BenefitState.EXPIRED],
        exhausted_benefits=states[BenefitState.EXHAUSTED],
        total_redemptions=len(counted),
        total_savings=to_money(total_savings),
        month_savings=to_money(month_savings),
        usage_by_month=[monthly[key] for key in sorted(monthly)],
        top_benefits=top[:top_n],
        categories=list(categories.values()),
        businesses=list(businesses.values()),
    )
