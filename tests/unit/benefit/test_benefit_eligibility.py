"""
Unit Tests for the Eligibility Filter

Tests window boundaries, caps, search, windows, filters and ranking.
"""

import pytest
from datetime import timedelta

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.benefit_service.eligibility import (
    apply_eligibility,
    filter_benefits,
    is_expiring_soon,
    is_new,
    matches_search,
)
from microservices.benefit_service.models import (
    AccessMode,
    BenefitFilter,
    BenefitOrigin,
    CatalogEntry,
)


def entry(benefit, origin=BenefitOrigin.PUBLIC):
    return CatalogEntry(benefit=benefit, origin=origin)


def ids(entries):
    return [e.benefit.benefit_id for e in entries]


class TestWindowBoundaries:
    """Tests for the [start_at, end_at) validity window"""

    def test_end_equal_to_now_is_excluded(self, factory, now):
        benefit = factory.make_benefit(end_at=now)
        assert apply_eligibility([entry(benefit)], None, now) == []

    def test_start_equal_to_now_is_included(self, factory, now):
        benefit = factory.make_benefit(start_at=now)
        assert ids(apply_eligibility([entry(benefit)], None, now)) == [benefit.benefit_id]

    def test_not_started_is_excluded(self, factory, now):
        benefit = factory.make_benefit(start_at=now + timedelta(seconds=1))
        assert apply_eligibility([entry(benefit)], None, now) == []

    def test_capped_is_excluded(self, factory, now):
        capped = factory.make_benefit(global_cap=3, redemption_count=3)
        open_ = factory.make_benefit(global_cap=3, redemption_count=2)
        assert ids(apply_eligibility([entry(capped), entry(open_)], None, now)) == [open_.benefit_id]


class TestSearch:
    """Tests for matches_search"""

    def test_blank_term_matches_everything(self, factory):
        assert matches_search(factory.make_benefit(), "   ")
        assert matches_search(factory.make_benefit(), None)

    def test_matches_any_text_field_case_insensitive(self, factory):
        benefit = factory.make_benefit(
            title="Espresso deal", description="Morning only", business_name="Bean Bar",
            category="Food & Drink", tags=["Vegan"],
        )
        for term in ("ESPRESSO", "morning", "bean bar", "food &", "vegan"):
            assert matches_search(benefit, term)
        assert not matches_search(benefit, "pizza")


class TestTimeWindows:
    """Tests for the new and expiring-soon windows"""

    def test_new_window_is_inclusive(self, factory, now):
        assert is_new(factory.make_benefit(created_at=now - timedelta(days=7)), now)
        assert not is_new(factory.make_benefit(created_at=now - timedelta(days=7, seconds=1)), now)

    def test_expiring_soon_window(self, factory, now):
        assert is_expiring_soon(factory.make_benefit(end_at=now + timedelta(days=7)), now)
        assert not is_expiring_soon(factory.make_benefit(end_at=now + timedelta(days=7, seconds=1)), now)

    def test_window_filters_applied(self, factory, now):
        fresh = factory.make_benefit(created_at=now - timedelta(days=1))
        old = factory.make_benefit(created_at=now - timedelta(days=30))
        ending = factory.make_benefit(end_at=now + timedelta(days=2), created_at=now - timedelta(days=30))

        new_only = apply_eligibility([entry(fresh), entry(old)], BenefitFilter(new_only=True), now)
        assert ids(new_only) == [fresh.benefit_id]

        expiring = apply_eligibility([entry(fresh), entry(ending)], BenefitFilter(expiring_soon=True), now)
        assert ids(expiring) == [ending.benefit_id]


class TestExplicitFilters:
    """Tests for category/business/access/featured filters"""

    def test_category_and_business(self, factory, now):
        a = factory.make_benefit(category="Pets")
        b = factory.make_benefit(category="Culture")
        result = apply_eligibility([entry(a), entry(b)], BenefitFilter(category="Pets"), now)
        assert ids(result) == [a.benefit_id]

        result = apply_eligibility([entry(a), entry(b)], BenefitFilter(business_id=b.business_id), now)
        assert ids(result) == [b.benefit_id]

    def test_access_mode_and_featured(self, factory, now):
        public = factory.make_benefit(access_mode=AccessMode.PUBLIC, featured=True)
        direct = factory.make_benefit(access_mode=AccessMode.DIRECT)
        result = apply_eligibility([entry(public), entry(direct)], BenefitFilter(access_mode=AccessMode.DIRECT), now)
        assert ids(result) == [direct.benefit_id]

        result = apply_eligibility([entry(public), entry(direct)], BenefitFilter(featured_only=True), now)
        assert ids(result) == [public.benefit_id]


class TestRanking:
    """Tests for ordering and truncation"""

    def test_featured_first_then_newest(self, factory, now):
        old_featured = factory.make_benefit(featured=True, created_at=now - timedelta(days=40))
        newest = factory.make_benefit(created_at=now - timedelta(days=1))
        older = factory.make_benefit(created_at=now - timedelta(days=5))
        result = apply_eligibility([entry(older), entry(newest), entry(old_featured)], None, now)
        assert ids(result) == [old_featured.benefit_id, newest.benefit_id, older.benefit_id]

    def test_ties_keep_catalog_order(self, factory, now):
        created = now - timedelta(days=3)
        first = factory.make_benefit(created_at=created)
        second = factory.make_benefit(created_at=created)
        assert ids(apply_eligibility([entry(first), entry(second)], None, now)) == [first.benefit_id, second.benefit_id]
        assert ids(apply_eligibility([entry(second), entry(first)], None, now)) == [second.benefit_id, first.benefit_id]

    def test_limit_truncates_after_sorting(self, factory, now):
        benefits = [factory.make_benefit(created_at=now - timedelta(days=d)) for d in range(1, 6)]
        result = apply_eligibility([entry(b) for b in reversed(benefits)], None, now, limit=2)
        assert ids(result) == [benefits[0].benefit_id, benefits[1].benefit_id]
        assert apply_eligibility([entry(b) for b in benefits], None, now, limit=0) == []

    def test_same_inputs_same_output(self, factory, now):
        entries = [entry(factory.make_benefit(created_at=now - timedelta(hours=h))) for h in range(10)]
        assert ids(apply_eligibility(entries, None, now)) == ids(apply_eligibility(entries, None, now))

    def test_filter_benefits_plain_list(self, factory, now):
        kept = factory.make_benefit(title="Yoga class")
        dropped = factory.make_benefit(title="Yoga retreat", end_at=now - timedelta(days=1))
        assert [b.benefit_id for b in filter_benefits([kept, dropped], BenefitFilter(search="yoga"), now)] == [kept.benefit_id]
