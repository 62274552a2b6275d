"""
Component Tests for Listing and Discovery API

Tests available benefits, catalog, search, categories and owner listings.
"""

import pytest
from datetime import timedelta

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.benefit_service.models import AccessMode, BenefitState

BASE = "/api/v1/benefits"


def association_benefit(repository, seed, factory, **overrides):
    data = {
        "business_id": seed.linked_business.business_id,
        "access_mode": AccessMode.ASSOCIATION,
        "association_ids": [seed.association.association_id],
    }
    data.update(overrides)
    return repository.add_benefit(factory.make_benefit(**data))


class TestAvailableEndpoint:
    """Tests for GET /api/v1/benefits/available"""

    def test_association_member(self, client, mock_repository, seed, factory, now):
        scoped = association_benefit(mock_repository, seed, factory)
        public = mock_repository.add_benefit(factory.make_benefit(created_at=now - timedelta(days=30)))
        association_benefit(mock_repository, seed, factory, end_at=now - timedelta(days=1))

        response = client.get(f"{BASE}/available", params={"member_id": seed.member.member_id})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [b["benefit_id"] for b in data["benefits"]] == [scoped.benefit_id, public.benefit_id]

    def test_outsider_only_sees_public(self, client, mock_repository, seed, factory):
        association_benefit(mock_repository, seed, factory)
        public = mock_repository.add_benefit(factory.make_benefit())

        data = client.get(f"{BASE}/available", params={"member_id": seed.outsider.member_id}).json()

        assert [b["benefit_id"] for b in data["benefits"]] == [public.benefit_id]

    def test_filters(self, client, mock_repository, seed, factory):
        featured = mock_repository.add_benefit(factory.make_benefit(featured=True, category="Pets"))
        mock_repository.add_benefit(factory.make_benefit(category="Pets"))
        mock_repository.add_benefit(factory.make_benefit(category="Culture", featured=True))

        data = client.get(
            f"{BASE}/available",
            params={"member_id": seed.outsider.member_id, "category": "Pets", "featured_only": "true"},
        ).json()

        assert [b["benefit_id"] for b in data["benefits"]] == [featured.benefit_id]

    def test_limit(self, client, mock_repository, seed, factory):
        for _ in range(3):
            mock_repository.add_benefit(factory.make_benefit())
        data = client.get(f"{BASE}/available", params={"member_id": seed.outsider.member_id, "limit": 2}).json()
        assert data["count"] == 2

    def test_member_id_required(self, client):
        assert client.get(f"{BASE}/available").status_code == 422

    def test_invalid_access_mode(self, client, seed):
        response = client.get(
            f"{BASE}/available", params={"member_id": seed.member.member_id, "access_mode": "vip"}
        )
        assert response.status_code == 422


class TestCatalogEndpoint:
    """Tests for GET /api/v1/benefits/catalog"""

    def test_entries_carry_origin(self, client, mock_repository, seed, factory):
        scoped = association_benefit(mock_repository, seed, factory, featured=True)
        public = mock_repository.add_benefit(factory.make_benefit())

        data = client.get(f"{BASE}/catalog", params={"member_id": seed.member.member_id}).json()

        origins = {e["benefit"]["benefit_id"]: e["origin"] for e in data["entries"]}
        assert origins == {scoped.benefit_id: "association", public.benefit_id: "public"}


class TestDiscoveryEndpoints:
    """Tests for search and categories"""

    def test_search(self, client, mock_repository, factory):
        hit = mock_repository.add_benefit(factory.make_benefit(title="Vinyl records", tags=["music"]))
        tagged = mock_repository.add_benefit(factory.make_benefit(title="Concert", tags=["Music"]))
        mock_repository.add_benefit(factory.make_benefit(title="Bakery"))

        data = client.get(f"{BASE}/search", params={"q": "music"}).json()

        assert {b["benefit_id"] for b in data["benefits"]} == {hit.benefit_id, tagged.benefit_id}

    def test_search_requires_term(self, client):
        assert client.get(f"{BASE}/search", params={"q": ""}).status_code == 422

    def test_categories(self, client, mock_repository, factory):
        mock_repository.add_benefit(factory.make_benefit(category="Wellness"))
        mock_repository.add_benefit(factory.make_benefit(category="Books"))
        assert client.get(f"{BASE}/categories").json() == ["Books", "Wellness"]


class TestOwnerListings:
    """Tests for business and association listings"""

    def test_business_benefits_include_inactive(self, client, mock_repository, seed, factory):
        active = association_benefit(mock_repository, seed, factory)
        inactive = association_benefit(mock_repository, seed, factory, state=BenefitState.INACTIVE)

        data = client.get(f"{BASE}/businesses/{seed.linked_business.business_id}").json()

        assert {b["benefit_id"] for b in data["benefits"]} == {active.benefit_id, inactive.benefit_id}

    def test_association_benefits(self, client, mock_repository, seed, factory):
        scoped = association_benefit(mock_repository, seed, factory)
        mock_repository.add_benefit(factory.make_benefit())

        data = client.get(f"{BASE}/associations/{seed.association.association_id}").json()

        assert [b["benefit_id"] for b in data["benefits"]] == [scoped.benefit_id]

    def test_available_associations(self, client, seed):
        response = client.get(f"{BASE}/businesses/{seed.linked_business.business_id}/associations")
        assert response.status_code == 200
        assert response.json() == [
            {"association_id": seed.association.association_id, "name": "Harbour Traders"}
        ]

    def test_available_associations_unknown_business(self, client):
        assert client.get(f"{BASE}/businesses/biz_missing/associations").status_code == 404
